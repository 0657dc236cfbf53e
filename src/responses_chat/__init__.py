"""
Responses Chat - a streaming turn engine for tool-augmented chat.

This package sends a conversation to the Responses API, reduces the streamed
events into conversation state, runs local function tools and continues the
turn automatically once their results are available.
"""

__version__ = "0.1.0"

from .conversation import ConversationStore
from .driver import TurnDriver, TurnState
from .reconciler import TurnReconciler
from .tool_registry import ToolRegistry, callable_to_tool_schema

__all__ = [
    "ConversationStore",
    "ToolRegistry",
    "TurnDriver",
    "TurnReconciler",
    "TurnState",
    "callable_to_tool_schema",
]
