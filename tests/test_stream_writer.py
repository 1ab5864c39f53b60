"""Tests for the caller-facing output stream writer."""

import asyncio

import pytest

from models.chat_models import RelayOutcome
from services.chat.cancellation import RelayCancellation
from services.chat.errors import CancelReason, StreamCancelled, UpstreamError
from services.chat.stream_writer import OutputStreamWriter


async def _deltas(*items, state=None):
    try:
        for item in items:
            if isinstance(item, BaseException):
                raise item
            yield item
    finally:
        if state is not None:
            state["closed"] = True


async def _drain(iterator):
    return [chunk async for chunk in iterator]


class TestTermination:
    @pytest.mark.asyncio
    async def test_close_is_idempotent(self) -> None:
        writer = OutputStreamWriter(RelayCancellation())
        assert writer.close() is True
        assert writer.close(RelayOutcome.TIMED_OUT) is False
        assert writer.fail(RuntimeError("late")) is False
        assert writer.outcome is RelayOutcome.COMPLETED
        assert writer.error is None

    @pytest.mark.asyncio
    async def test_fail_is_idempotent(self) -> None:
        cancellation = RelayCancellation()
        writer = OutputStreamWriter(cancellation)
        error = UpstreamError(502, "bad gateway")
        assert writer.fail(error) is True
        assert writer.fail(RuntimeError("second")) is False
        assert writer.close() is False
        assert writer.outcome is RelayOutcome.UPSTREAM_ERROR
        assert writer.error is error
        assert cancellation.released


class TestStream:
    @pytest.mark.asyncio
    async def test_bytes_match_deltas_in_order(self) -> None:
        writer = OutputStreamWriter(RelayCancellation())
        chunks = await _drain(writer.stream(_deltas(" there", "!", " ¿qué?"), first="Hi"))
        assert chunks == [b"Hi", b" there", b"!", " ¿qué?".encode("utf-8")]
        assert writer.outcome is RelayOutcome.COMPLETED
        assert writer.bytes_written == sum(len(c) for c in chunks)

    @pytest.mark.asyncio
    async def test_no_deltas_closes_cleanly(self) -> None:
        writer = OutputStreamWriter(RelayCancellation())
        assert await _drain(writer.stream(_deltas())) == []
        assert writer.outcome is RelayOutcome.COMPLETED

    @pytest.mark.asyncio
    async def test_deadline_mid_stream_truncates_without_error(self) -> None:
        writer = OutputStreamWriter(RelayCancellation())
        chunks = await _drain(writer.stream(_deltas(StreamCancelled(CancelReason.DEADLINE)), first="partial"))
        assert chunks == [b"partial"]
        assert writer.outcome is RelayOutcome.TIMED_OUT

    @pytest.mark.asyncio
    async def test_upstream_error_mid_stream_propagates(self) -> None:
        writer = OutputStreamWriter(RelayCancellation())
        received = []
        with pytest.raises(UpstreamError):
            async for chunk in writer.stream(_deltas("a", UpstreamError(500, "broken"))):
                received.append(chunk)
        assert received == [b"a"]
        assert writer.outcome is RelayOutcome.UPSTREAM_ERROR

    @pytest.mark.asyncio
    async def test_internal_error_mid_stream_is_failed(self) -> None:
        writer = OutputStreamWriter(RelayCancellation())
        with pytest.raises(KeyError):
            await _drain(writer.stream(_deltas("a", KeyError("boom"))))
        assert writer.outcome is RelayOutcome.FAILED
        assert isinstance(writer.error, KeyError)

    @pytest.mark.asyncio
    async def test_caller_disconnect_signals_cancellation(self) -> None:
        cancellation = RelayCancellation()
        writer = OutputStreamWriter(cancellation)
        state = {}
        body = writer.stream(_deltas("a", "b", "c", state=state))
        assert await body.__anext__() == b"a"
        await body.aclose()
        assert cancellation.reason is CancelReason.CLIENT_DISCONNECT
        assert writer.outcome is RelayOutcome.CLIENT_CANCELLED
        assert state["closed"] is True

    @pytest.mark.asyncio
    async def test_task_cancellation_is_a_disconnect(self) -> None:
        cancellation = RelayCancellation()
        writer = OutputStreamWriter(cancellation)
        started = asyncio.Event()

        async def slow_deltas():
            yield "first"
            started.set()
            await asyncio.sleep(5)
            yield "never"

        async def consume():
            return await _drain(writer.stream(slow_deltas()))

        task = asyncio.create_task(consume())
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert cancellation.reason is CancelReason.CLIENT_DISCONNECT
        assert writer.outcome is RelayOutcome.CLIENT_CANCELLED


class TestAbandon:
    @pytest.mark.asyncio
    async def test_unread_body_still_closes_upstream(self) -> None:
        cancellation = RelayCancellation()
        writer = OutputStreamWriter(cancellation)
        state = {}
        deltas = _deltas("Hi", " there", state=state)
        assert await deltas.__anext__() == "Hi"

        await writer.abandon(deltas)
        assert state["closed"] is True
        assert writer.outcome is RelayOutcome.CLIENT_CANCELLED
        assert cancellation.reason is CancelReason.CLIENT_DISCONNECT
        assert cancellation.released

    @pytest.mark.asyncio
    async def test_keeps_outcome_of_finished_stream(self) -> None:
        cancellation = RelayCancellation()
        writer = OutputStreamWriter(cancellation)
        deltas = _deltas(" there")
        await _drain(writer.stream(deltas, first="Hi"))

        await writer.abandon(deltas)
        assert writer.outcome is RelayOutcome.COMPLETED
        assert cancellation.reason is None
