"""
Transports that turn a ``TurnRequest`` into a stream of SSE chunks.

``RelayTransport`` posts to a relay endpoint over HTTP. ``DirectTransport``
calls the upstream API in-process and frames its events the same way the relay
does, so the rest of the engine cannot tell them apart.

Neither transport bounds how long the stream may stall between chunks.
"""

import logging
from typing import AsyncIterator, Optional, Protocol, Union

import httpx
import openai

from .errors import TransportError
from .relay import TurnRequest, frame_events, open_upstream

logger = logging.getLogger(__name__)

Chunk = Union[str, bytes]


class Transport(Protocol):
    async def open(self, request: TurnRequest) -> AsyncIterator[Chunk]:
        """Issue the request and return its chunk stream.

        Raises TransportError if the request is rejected; the returned
        iterator raises TransportError if the stream aborts.
        """
        ...


class RelayTransport:
    """POST the request to a relay endpoint and stream the response body."""

    def __init__(
        self,
        url: str,
        client: Optional[httpx.AsyncClient] = None,
        connect_timeout: float = 10.0,
    ):
        self.url = url
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(None, connect=connect_timeout)
        )

    async def open(self, request: TurnRequest) -> AsyncIterator[Chunk]:
        http_request = self.client.build_request("POST", self.url, json=request.to_payload())
        try:
            response = await self.client.send(http_request, stream=True)
        except httpx.HTTPError as e:
            raise TransportError(f"Request to {self.url} failed: {e}") from e

        if response.is_error:
            body = await response.aread()
            await response.aclose()
            raise TransportError(
                f"Relay returned {response.status_code}: {body.decode('utf-8', 'replace')[:200]}"
            )
        return self._iter_body(response)

    async def _iter_body(self, response: httpx.Response) -> AsyncIterator[Chunk]:
        try:
            async for chunk in response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as e:
            raise TransportError(f"Stream from {self.url} aborted: {e}") from e
        finally:
            await response.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


class DirectTransport:
    """Call the upstream API in-process, framing events like the relay."""

    def __init__(self, client: openai.AsyncOpenAI):
        self.client = client

    async def open(self, request: TurnRequest) -> AsyncIterator[Chunk]:
        try:
            events = await open_upstream(self.client, request)
        except openai.OpenAIError as e:
            raise TransportError(f"Upstream request failed: {e}") from e
        return frame_events(events)
