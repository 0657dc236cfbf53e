"""Builds the list of tools offered to the model on each turn."""

import logging
from typing import Any, Dict, List

from .config import ToolsConfig
from .models import is_research_model
from .tool_registry import ToolRegistry

logger = logging.getLogger(__name__)


def build_tools(config: ToolsConfig, model: str, registry: ToolRegistry) -> List[Dict[str, Any]]:
    """Return the tool list for ``model`` given the enabled tool families.

    Parameters
    ----------
    config : ToolsConfig
        Which tool families are enabled.
    model : str
        The selected model; research models only accept ``web_search_preview``.
    registry : ToolRegistry
        Local function handlers, contributed as function tools.
    """
    tools: List[Dict[str, Any]] = []

    if config.web_search_enabled:
        web_search_type = "web_search_preview" if is_research_model(model) else "web_search"
        web_search: Dict[str, Any] = {"type": web_search_type}
        # user_location is only accepted by the non-preview tool
        if web_search_type == "web_search" and config.web_search_location:
            web_search["user_location"] = {"type": "approximate", **config.web_search_location}
        tools.append(web_search)

    if config.file_search_enabled:
        if config.vector_store_id:
            tools.append({"type": "file_search", "vector_store_ids": [config.vector_store_id]})
        else:
            logger.warning("File search enabled without a vector store id; skipping it")

    if config.code_interpreter_enabled:
        tools.append({"type": "code_interpreter", "container": {"type": "auto"}})

    if config.functions_enabled:
        tools.extend(registry.get_schemas())

    if config.mcp.enabled:
        mcp_tool: Dict[str, Any] = {
            "type": "mcp",
            "server_label": config.mcp.server_label,
            "server_url": config.mcp.server_url,
        }
        if config.mcp.skip_approval:
            mcp_tool["require_approval"] = "never"
        allowed = config.mcp.allowed_tool_names()
        if allowed:
            mcp_tool["allowed_tools"] = allowed
        tools.append(mcp_tool)

    logger.debug(f"Active tools for {model}: {[t['type'] for t in tools]}")
    return tools
