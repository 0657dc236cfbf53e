"""
Tool registry for local function calls.

Maps invocation names to handlers and generates the function tool schemas sent
with each turn request. Handlers are plain callables (sync or async) taking
keyword arguments; they are registered at runtime, so new capabilities never
require engine changes.
"""

import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, get_type_hints

from .errors import DispatchError, UnknownCapability

logger = logging.getLogger(__name__)


_JSON_TYPES = {str: "string", int: "integer", float: "number", bool: "boolean"}


def callable_to_tool_schema(
    callable_func: Callable,
    name: str,
    description: Optional[str] = None,
    strict: bool = True,
) -> Dict[str, Any]:
    """
    Convert a Python callable (function or method) to a Responses API function tool.

    Args:
        callable_func: The callable to convert
        name: Tool name
        description: Optional description
        strict: Emit a strict schema. Every parameter is then listed as
            required and parameters with a default also accept null.

    Returns:
        Function tool dictionary
    """
    sig = inspect.signature(callable_func)
    type_hints = get_type_hints(callable_func)

    # Get description from docstring if not provided
    if description is None:
        doc = inspect.getdoc(callable_func)
        description = doc.strip() if doc else f"Execute {name}"

    parameters = {"type": "object", "properties": {}, "required": []}
    if strict:
        parameters["additionalProperties"] = False

    for param_name, param in sig.parameters.items():
        if param_name == "self" or param.kind in (
            inspect.Parameter.VAR_POSITIONAL,
            inspect.Parameter.VAR_KEYWORD,
        ):
            continue

        json_type = _JSON_TYPES.get(type_hints.get(param_name, str), "string")
        has_default = param.default is not inspect.Parameter.empty
        if strict and has_default:
            json_type = [json_type, "null"]

        parameters["properties"][param_name] = {
            "type": json_type,
            "description": f"The {param_name} parameter",
        }
        if strict or not has_default:
            parameters["required"].append(param_name)

    schema = {
        "type": "function",
        "name": name,
        "description": description,
        "parameters": parameters,
    }
    if strict:
        schema["strict"] = True
    return schema


class ToolRegistry:
    """Registry for managing local tools and their schemas."""

    def __init__(self):
        self.tools: Dict[str, Callable] = {}  # name -> callable
        self.schemas: Dict[str, Dict[str, Any]] = {}  # name -> function tool

    def register_callable(
        self,
        callable_func: Callable,
        name: Optional[str] = None,
        description: Optional[str] = None,
        strict: bool = True,
    ) -> None:
        """
        Register a callable and auto-generate its function tool schema.

        Registering a name again replaces the earlier handler.

        Args:
            callable_func: The callable to register
            name: Optional name override (defaults to callable name)
            description: Optional description
            strict: Whether to emit a strict schema
        """
        tool_name = name or callable_func.__name__
        self.tools[tool_name] = callable_func
        self.schemas[tool_name] = callable_to_tool_schema(
            callable_func, tool_name, description, strict=strict
        )

    def unregister(self, name: str) -> None:
        self.tools.pop(name, None)
        self.schemas.pop(name, None)

    def get_schemas(self) -> List[Dict[str, Any]]:
        """Get all function tool schemas, in registration order."""
        return list(self.schemas.values())

    def get_tool_names(self) -> List[str]:
        return list(self.tools.keys())

    def has_tool(self, name: str) -> bool:
        return name in self.tools

    async def invoke(self, name: Optional[str], arguments: Any) -> Any:
        """
        Execute a registered tool by name.

        Args:
            name: Tool name
            arguments: Decoded call arguments; must be a JSON object

        Returns:
            The handler's result

        Raises:
            UnknownCapability: If no tool is registered under ``name``
            DispatchError: If the arguments are not an object or the handler fails
        """
        if name not in self.tools:
            raise UnknownCapability(name)
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise DispatchError(name, f"arguments must be an object, got {type(arguments).__name__}")

        callable_func = self.tools[name]
        try:
            # Execute the callable (handle both sync and async)
            if inspect.iscoroutinefunction(callable_func):
                return await callable_func(**arguments)
            result = callable_func(**arguments)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as e:
            logger.info(f"TOOL ERROR: {name} - {str(e)}")
            raise DispatchError(name, str(e)) from e

    def __len__(self) -> int:
        return len(self.tools)
