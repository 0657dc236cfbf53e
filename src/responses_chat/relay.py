"""
Relay between a turn request and the upstream Responses API.

The upstream event stream is republished verbatim, one SSE record per event::

    data: {"event": "<event.type>", "data": <event as JSON>}

followed by ``data: [DONE]``. An upstream failure after streaming has started
is reported as a single ``error`` record and the stream ends without
``[DONE]``.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, AsyncIterator, Dict, List, Optional

from openai import AsyncOpenAI

from .sse import DONE_SENTINEL

logger = logging.getLogger(__name__)


@dataclass
class TurnRequest:
    """Everything needed to request one response."""

    input: List[Dict[str, Any]]
    model: str
    tools: List[Dict[str, Any]] = field(default_factory=list)
    reasoning: Optional[Dict[str, Any]] = None
    previous_response_id: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        """JSON body for the relay endpoint."""
        payload = {"input": self.input, "tools": self.tools, "model": self.model}
        if self.reasoning:
            payload["reasoning"] = self.reasoning
        if self.previous_response_id:
            payload["previous_response_id"] = self.previous_response_id
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TurnRequest":
        return cls(
            input=list(payload.get("input") or []),
            model=payload["model"],
            tools=list(payload.get("tools") or []),
            reasoning=payload.get("reasoning"),
            previous_response_id=payload.get("previous_response_id"),
        )

    def create_args(self) -> Dict[str, Any]:
        """Keyword arguments for ``AsyncOpenAI.responses.create``."""
        args: Dict[str, Any] = {
            "model": self.model,
            "input": self.input,
            "stream": True,
        }
        if self.tools:
            args["tools"] = self.tools
            args["parallel_tool_calls"] = True
        if self.reasoning:
            args["reasoning"] = self.reasoning
        if self.previous_response_id:
            args["previous_response_id"] = self.previous_response_id
        return args


def format_event(kind: str, data: Dict[str, Any]) -> str:
    envelope = {"event": kind, "data": data}
    return f"data: {json.dumps(envelope, ensure_ascii=False)}\n\n"


def _dump(event: Any) -> Dict[str, Any]:
    if hasattr(event, "model_dump"):
        return event.model_dump(mode="json", exclude_none=True)
    return dict(event)


async def open_upstream(client: AsyncOpenAI, request: TurnRequest) -> AsyncIterable[Any]:
    """Start a streamed response; raises the SDK's errors if the request is rejected."""
    logger.debug(f"Requesting response from {request.model} with {len(request.input)} input items")
    return await client.responses.create(**request.create_args())


async def frame_events(events: AsyncIterable[Any]) -> AsyncIterator[str]:
    """Republish upstream events as SSE records."""
    try:
        async for event in events:
            yield format_event(event.type, _dump(event))
    except Exception as e:
        logger.error(f"Error in streaming loop: {e}")
        yield format_event("error", {"message": str(e)})
        return
    yield f"data: {DONE_SENTINEL}\n\n"
