"""Shared fakes for the upstream Responses API client."""

import pytest


class FakeEvent:
    """Stands in for an SDK stream event: a ``type`` plus ``model_dump``."""

    def __init__(self, fields: dict):
        self.type = fields["type"]
        self.fields = fields

    def model_dump(self, mode="python", exclude_none=False):
        return dict(self.fields)


async def _aiter(items):
    for item in items:
        if isinstance(item, Exception):
            raise item
        yield item


class FakeResponses:
    def __init__(self, events=(), error=None):
        self.events = [e if isinstance(e, Exception) else FakeEvent(e) for e in events]
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return _aiter(self.events)


class FakeOpenAI:
    def __init__(self, events=(), error=None):
        self.responses = FakeResponses(events, error)


@pytest.fixture
def fake_openai():
    """Build a fake client whose streamed events are given as plain dicts."""
    return FakeOpenAI
