"""Per-request cancellation context for the chat relay."""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from services.chat.errors import CancelReason, StreamCancelled

T = TypeVar("T")

Receive = Callable[[], Awaitable[dict]]


class RelayCancellation:
	"""Funnel the deadline timer and the caller disconnect into one signal.

	The first trigger to fire wins and is kept as `reason`; later triggers are
	ignored. Every upstream await goes through `guard`, which races it against
	the signal and cancels it when the signal fires first.
	"""

	def __init__(self) -> None:
		self.reason: Optional[CancelReason] = None
		self._fired = asyncio.Event()
		self._timer: Optional[asyncio.TimerHandle] = None
		self._watcher: Optional[asyncio.Task] = None
		self._released = False

	@property
	def cancelled(self) -> bool:
		return self.reason is not None

	@property
	def released(self) -> bool:
		return self._released

	def start_deadline(self, seconds: float) -> None:
		"""Arm the deadline timer on the running loop."""
		loop = asyncio.get_running_loop()
		self._timer = loop.call_later(seconds, self.cancel, CancelReason.DEADLINE)

	def watch_disconnect(self, receive: Receive) -> None:
		"""Listen on the ASGI receive channel for the caller going away."""
		self._watcher = asyncio.create_task(self._wait_for_disconnect(receive))

	async def _wait_for_disconnect(self, receive: Receive) -> None:
		while True:
			message = await receive()
			if message.get("type") == "http.disconnect":
				self.cancel(CancelReason.CLIENT_DISCONNECT)
				return

	def cancel(self, reason: CancelReason) -> bool:
		"""Fire the signal. Returns False when it already fired or was released."""
		if self._released or self.reason is not None:
			return False
		self.reason = reason
		self._fired.set()
		if self._timer is not None:
			self._timer.cancel()
		logging.warning("Relay cancellation triggered by %s.", reason.value)
		return True

	async def guard(self, awaitable: Awaitable[T]) -> T:
		"""Await `awaitable` unless the signal fires first.

		Raises:
			StreamCancelled: When the deadline or disconnect wins the race. The
				pending awaitable is cancelled before this is raised.
		"""
		if self.reason is not None:
			if inspect.iscoroutine(awaitable):
				awaitable.close()
			raise StreamCancelled(self.reason)

		task = asyncio.ensure_future(awaitable)
		waiter = asyncio.ensure_future(self._fired.wait())
		try:
			done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
		finally:
			waiter.cancel()
			if not task.done():
				task.cancel()

		if task in done:
			return task.result()

		await asyncio.wait({task})
		if not task.cancelled() and task.exception() is not None:
			logging.debug("Upstream await failed while being cancelled: %r", task.exception())
		raise StreamCancelled(self.reason)

	def release(self) -> None:
		"""Disarm the timer and stop the disconnect watcher. Idempotent."""
		if self._released:
			return
		self._released = True
		if self._timer is not None:
			self._timer.cancel()
		watcher: Any = self._watcher
		if watcher is not None and not watcher.done() and watcher is not asyncio.current_task():
			watcher.cancel()
