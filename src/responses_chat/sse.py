"""
Server-sent event framing.

The relay republishes every upstream event as one SSE record::

    data: {"event": "<kind>", "data": {...}}\\n\\n

``FrameDecoder`` turns arbitrarily split chunks of that stream back into one
decoded envelope per record, and ``iter_events`` wraps it as an async
generator over a chunk source.
"""

import codecs
import json
import logging
from typing import AsyncIterable, AsyncIterator, Callable, Dict, List, Optional, Union

from .errors import DecodeError

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
RECORD_SEPARATOR = "\n\n"


class FrameDecoder:
    """Incremental decoder for ``data:`` records separated by blank lines.

    Malformed records are dropped. ``on_error`` receives the ``DecodeError``
    for each dropped record; by default it is logged.
    """

    def __init__(self, on_error: Optional[Callable[[DecodeError], None]] = None):
        self._buffer = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")()
        self._on_error = on_error or _log_decode_error
        self.done = False

    def feed(self, chunk: Union[str, bytes]) -> List[Dict]:
        """Add a chunk and return the events of every record it completes."""
        if self.done:
            return []
        if isinstance(chunk, bytes):
            chunk = self._utf8.decode(chunk)
        self._buffer = (self._buffer + chunk).replace("\r\n", "\n")

        *records, self._buffer = self._buffer.split(RECORD_SEPARATOR)
        return self._decode_records(records)

    def close(self) -> List[Dict]:
        """Flush whatever the transport left in the buffer when it closed."""
        if self.done:
            return []
        self._buffer += self._utf8.decode(b"", final=True)
        records, self._buffer = [self._buffer], ""
        events = self._decode_records(records)
        self.done = True
        return events

    def _decode_records(self, records: List[str]) -> List[Dict]:
        events = []
        for record in records:
            payload = _record_payload(record)
            if payload is None:
                continue
            if payload == DONE_SENTINEL:
                self.done = True
                self._buffer = ""
                break
            try:
                events.append(decode_payload(payload))
            except DecodeError as e:
                self._on_error(e)
        return events


def decode_payload(payload: str) -> Dict:
    """Decode the JSON payload of one record into an event envelope."""
    try:
        event = json.loads(payload)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Malformed event record: {e}") from e
    if not isinstance(event, dict):
        raise DecodeError(f"Event record is not an object: {payload[:80]!r}")
    return event


def _record_payload(record: str) -> Optional[str]:
    """Join the ``data:`` lines of a record; None when it has none."""
    data_lines = []
    for line in record.split("\n"):
        if not line.startswith("data:"):
            # comments, event/id/retry fields and stray blank lines
            continue
        value = line[5:]
        if value.startswith(" "):
            value = value[1:]
        data_lines.append(value)
    if not data_lines:
        return None
    return "\n".join(data_lines)


def _log_decode_error(error: DecodeError) -> None:
    logger.warning(f"STREAM: dropping record - {error}")


async def iter_events(
    chunks: AsyncIterable[Union[str, bytes]],
    on_error: Optional[Callable[[DecodeError], None]] = None,
) -> AsyncIterator[Dict]:
    """Yield decoded event envelopes from a stream of text or byte chunks.

    Stops at the ``[DONE]`` sentinel or when ``chunks`` is exhausted.
    """
    decoder = FrameDecoder(on_error=on_error)
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
        if decoder.done:
            return
    for event in decoder.close():
        yield event
