"""Streaming chat completions against an OpenAI-compatible upstream service."""

from __future__ import annotations

import logging
import time
from typing import Any, AsyncIterator, Optional, Sequence

from openai import APIError, AsyncOpenAI

from models.chat_models import UpstreamMessage
from services.chat.cancellation import RelayCancellation
from services.chat.errors import UpstreamError
from services.chat.response_parser import extract_delta


class DeltaStream:
    """Single-pass, finite sequence of text deltas from one completion stream.

    The upstream HTTP response can be read only once, so iterating a
    `DeltaStream` a second time raises `RuntimeError`. Empty deltas are
    dropped, and the sequence stops right after a chunk that carries a
    finish reason. The upstream response is closed on every exit path.

    Iteration may raise:
        StreamCancelled: The request's cancellation context fired.
        UpstreamError: The upstream reported an error or sent a malformed chunk.
    """

    def __init__(self, stream: Any, cancellation: RelayCancellation) -> None:
        self._stream = stream
        self._cancellation = cancellation
        self._iterated = False
        self._closed = False
        self.finish_reason: Optional[str] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> AsyncIterator[str]:
        if self._iterated:
            raise RuntimeError("DeltaStream is single-pass and has already been iterated.")
        self._iterated = True
        return self._deltas()

    async def _deltas(self) -> AsyncIterator[str]:
        chunks = self._stream.__aiter__()
        try:
            while True:
                try:
                    chunk = await self._cancellation.guard(chunks.__anext__())
                except StopAsyncIteration:
                    return
                delta, finish_reason = extract_delta(chunk)
                if delta:
                    yield delta
                if finish_reason:
                    self.finish_reason = finish_reason
                    logging.info("Upstream stream finished with reason: %s", finish_reason)
                    return
        except APIError as exc:
            logging.error("Error while reading from upstream stream: %s", exc)
            raise UpstreamError.from_exception(exc) from exc
        except ValueError as exc:
            logging.error("Malformed chunk in upstream stream: %s", exc)
            raise UpstreamError(message=f"Malformed response from the AI service: {exc}") from exc
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        """Close the upstream response. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        close = getattr(self._stream, "close", None)
        if close is not None:
            await close()


class UpstreamStreamClient:
    """Open streaming completion requests for normalized message lists."""

    def __init__(self, client: AsyncOpenAI, model: str) -> None:
        if client is None:
            raise ValueError("AsyncOpenAI client is required.")
        self.client = client
        self.model = model

    async def open(
        self, messages: Sequence[UpstreamMessage], cancellation: RelayCancellation
    ) -> DeltaStream:
        """Issue one streaming completion request under `cancellation`.

        Raises:
            StreamCancelled: The deadline or a disconnect fired before the
                upstream accepted the request; the request is aborted.
            UpstreamError: The upstream rejected the request.
        """
        logging.info("Making streaming request to upstream model %s...", self.model)
        start = time.monotonic()
        try:
            stream = await cancellation.guard(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[message.as_dict() for message in messages],
                    stream=True,
                )
            )
        except APIError as exc:
            logging.error(
                "Upstream API error: status %s, message: %s",
                getattr(exc, "status_code", None),
                getattr(exc, "message", exc),
            )
            raise UpstreamError.from_exception(exc) from exc

        logging.info("Upstream stream request initiated in %.0fms.", (time.monotonic() - start) * 1000)
        return DeltaStream(stream, cancellation)
