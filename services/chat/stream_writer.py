"""Caller-facing chunked byte stream for relayed completions."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import AsyncIterator, Awaitable, Callable, Optional

from fastapi.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from models.chat_models import RelayOutcome
from services.chat.cancellation import RelayCancellation
from services.chat.errors import CancelReason, StreamCancelled, UpstreamError


class OutputStreamWriter:
	"""Encode deltas for the caller and record exactly one termination.

	`close` and `fail` are the two terminal actions. Whichever runs first sets
	`outcome` and releases the cancellation context; any later call returns
	False and has no effect.
	"""

	def __init__(
		self,
		cancellation: RelayCancellation,
		*,
		started_at: Optional[float] = None,
		encoding: str = "utf-8",
	) -> None:
		self.cancellation = cancellation
		self.encoding = encoding
		self.outcome: Optional[RelayOutcome] = None
		self.error: Optional[BaseException] = None
		self.bytes_written = 0
		self._started_at = started_at if started_at is not None else time.monotonic()

	@property
	def terminated(self) -> bool:
		return self.outcome is not None

	def close(self, outcome: RelayOutcome = RelayOutcome.COMPLETED) -> bool:
		"""End the stream gracefully."""
		if self.outcome is not None:
			return False
		self.outcome = outcome
		self.cancellation.release()
		logging.info(
			"Relay stream finished (%s) after %d bytes. Total request processing time: %.0fms.",
			outcome.value,
			self.bytes_written,
			(time.monotonic() - self._started_at) * 1000,
		)
		return True

	def fail(self, error: BaseException) -> bool:
		"""End the stream with an error that propagates to the transport."""
		if self.outcome is not None:
			return False
		self.outcome = RelayOutcome.UPSTREAM_ERROR if isinstance(error, UpstreamError) else RelayOutcome.FAILED
		self.error = error
		self.cancellation.release()
		logging.error("Relay stream failed after %d bytes: %s", self.bytes_written, error)
		return True

	async def stream(self, deltas: AsyncIterator[str], first: Optional[str] = None) -> AsyncIterator[bytes]:
		"""Yield encoded deltas as they arrive, starting with an already-read `first`."""
		try:
			if first:
				yield self._encode(first)
			async for delta in deltas:
				yield self._encode(delta)
		except StreamCancelled as exc:
			if exc.reason is CancelReason.DEADLINE:
				logging.warning("Deadline elapsed mid-stream; closing truncated stream.")
				self.close(RelayOutcome.TIMED_OUT)
			else:
				self.close(RelayOutcome.CLIENT_CANCELLED)
		except (asyncio.CancelledError, GeneratorExit):
			logging.warning("Client disconnected or cancelled the stream.")
			self.cancellation.cancel(CancelReason.CLIENT_DISCONNECT)
			self.close(RelayOutcome.CLIENT_CANCELLED)
			raise
		except Exception as exc:
			self.fail(exc)
			raise
		else:
			self.close(RelayOutcome.COMPLETED)
		finally:
			aclose = getattr(deltas, "aclose", None)
			if aclose is not None:
				await asyncio.shield(aclose())

	async def abandon(self, deltas: AsyncIterator[str]) -> None:
		"""Close the upstream once the response is over, even if its body was never read."""
		if self.outcome is None:
			self.cancellation.cancel(CancelReason.CLIENT_DISCONNECT)
			self.close(RelayOutcome.CLIENT_CANCELLED)
		aclose = getattr(deltas, "aclose", None)
		if aclose is not None:
			await aclose()

	def _encode(self, delta: str) -> bytes:
		data = delta.encode(self.encoding)
		self.bytes_written += len(data)
		return data


class RelayStreamingResponse(StreamingResponse):
	"""StreamingResponse that runs `on_close` however the response ends.

	Background tasks are skipped when sending fails, so the hook runs from
	`__call__` itself.
	"""

	def __init__(self, content, *, on_close: Callable[[], Awaitable[None]], **kwargs) -> None:
		super().__init__(content, **kwargs)
		self.on_close = on_close

	async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
		try:
			await super().__call__(scope, receive, send)
		finally:
			await asyncio.shield(self.on_close())
