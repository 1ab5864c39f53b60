"""
Pytest configuration and shared fakes for the test suite.

The fakes stand in for the pieces of the OpenAI SDK the relay touches:
`client.chat.completions.create(...)` and the async stream it returns.
"""

import asyncio
import os
from types import SimpleNamespace

import httpx
import openai
import pytest

# Keep the developer's environment out of settings-dependent tests.
for _var in ("TOGETHER_API_KEY", "UPSTREAM_BASE_URL", "CHAT_MODEL", "CHAT_SYSTEM_PROMPT", "UPSTREAM_TIMEOUT_SECONDS"):
    os.environ.pop(_var, None)

UPSTREAM_URL = "https://api.together.xyz/v1/chat/completions"


def make_chunk(content=None, finish_reason=None):
    """Build an object shaped like a streaming ChatCompletionChunk."""
    return SimpleNamespace(
        choices=[SimpleNamespace(delta=SimpleNamespace(content=content), finish_reason=finish_reason)]
    )


def api_status_error(status: int, message: str) -> openai.APIStatusError:
    request = httpx.Request("POST", UPSTREAM_URL)
    return openai.APIStatusError(message, response=httpx.Response(status, request=request), body=None)


def api_error(message: str) -> openai.APIError:
    return openai.APIError(message, httpx.Request("POST", UPSTREAM_URL), body=None)


class FakeStream:
    """Stand-in for the SDK's AsyncStream.

    Items are yielded in order; a float means "sleep this long", an exception
    instance is raised when reached.
    """

    def __init__(self, items):
        self.items = list(items)
        self.consumed = 0
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for item in self.items:
            if isinstance(item, float):
                await asyncio.sleep(item)
                continue
            if isinstance(item, BaseException):
                raise item
            self.consumed += 1
            yield item

    async def close(self):
        self.closed = True


class FakeCompletions:
    def __init__(self, stream=None, error=None, delay=0.0):
        self.stream = stream
        self.error = error
        self.delay = delay
        self.calls = []
        self.cancelled = False

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return self.stream


class FakeOpenAI:
    def __init__(self, completions: FakeCompletions):
        self.chat = SimpleNamespace(completions=completions)

    @property
    def completions(self) -> FakeCompletions:
        return self.chat.completions


@pytest.fixture
def make_client():
    """Factory for a fake upstream client serving one scripted stream."""

    def _make(items=(), error=None, delay=0.0) -> FakeOpenAI:
        return FakeOpenAI(FakeCompletions(stream=FakeStream(items), error=error, delay=delay))

    return _make
