"""
Local function handlers offered to the model.

Each handler takes keyword arguments and returns a JSON-serializable value.
``default_registry`` registers them; add more with
``ToolRegistry.register_callable``.
"""

import logging

import httpx

from .tool_registry import ToolRegistry

logger = logging.getLogger(__name__)

JOKE_API_URL = "https://official-joke-api.appspot.com/random_joke"


async def get_joke() -> dict:
    """Fetch a random programming-friendly joke."""
    async with httpx.AsyncClient(timeout=10.0) as client:
        response = await client.get(JOKE_API_URL)
        response.raise_for_status()
        joke = response.json()
    logger.debug(f"Fetched joke {joke.get('id')}")
    return {"setup": joke.get("setup", ""), "punchline": joke.get("punchline", "")}


def default_registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register_callable(get_joke)
    return registry
