"""Tests for the cancellable streaming-apply engine."""

import asyncio

import pytest

from nbassist.services.stream_apply import (
    SessionStatus,
    StreamApplyEngine,
    StreamSession,
    _strip_code_fences,
)
from tests.fakes.fake_providers import FakeCompletionProvider, RecordingSurface, wait_until


def _session(surface=None):
    return StreamSession(target="c1", original_code="x = 1", surface=surface or RecordingSurface())


def _stream(provider):
    return provider(None)


@pytest.mark.asyncio
async def test_chunks_are_applied_in_order_then_completed():
    surface = RecordingSurface()
    session = _session(surface)
    provider = FakeCompletionProvider(["x = ", "2", "\n"])

    status = await StreamApplyEngine().run(session, _stream(provider))

    assert status is SessionStatus.COMPLETED
    assert surface.updates == ["x = ", "x = 2", "x = 2\n"]
    assert surface.completed == ["x = 2\n"]
    assert session.proposed_code == "x = 2\n"
    assert provider.closed == 1


@pytest.mark.asyncio
async def test_completion_strips_wrapping_code_fence():
    surface = RecordingSurface()
    session = _session(surface)
    provider = FakeCompletionProvider(["```python\n", "y = 2\n", "```"])

    await StreamApplyEngine().run(session, _stream(provider))

    assert session.proposed_code == "y = 2"
    assert surface.completed == ["y = 2"]


def test_strip_code_fences_leaves_unfenced_text():
    assert _strip_code_fences("a = 1\nb = 2") == "a = 1\nb = 2"
    assert _strip_code_fences("```\nz = 3\n```\n") == "z = 3"
    assert _strip_code_fences("x = 1\n```py\ny\n```") == "x = 1\n```py\ny\n```"


@pytest.mark.asyncio
async def test_no_chunk_is_applied_after_cancel():
    surface = RecordingSurface()
    session = _session(surface)
    provider = FakeCompletionProvider(["a", "b", "c"])
    provider.gates[1] = asyncio.Event()

    task = asyncio.create_task(StreamApplyEngine().run(session, _stream(provider)))
    await wait_until(lambda: surface.updates == ["a"])

    assert session.cancel() is True
    provider.gates[1].set()
    status = await task

    assert status is SessionStatus.CANCELLED
    assert session.proposed_code == "a"
    assert surface.updates == ["a"]
    assert surface.completed == []
    assert surface.cancelled == 1
    assert provider.closed == 1


@pytest.mark.asyncio
async def test_cancel_is_idempotent_and_ignored_after_completion():
    surface = RecordingSurface()
    session = _session(surface)

    assert session.cancel() is True
    assert session.cancel() is False
    assert surface.cancelled == 1

    done = _session(RecordingSurface())
    await StreamApplyEngine().run(done, _stream(FakeCompletionProvider(["z"])))
    assert done.cancel() is False
    assert done.status is SessionStatus.COMPLETED


@pytest.mark.asyncio
async def test_stream_error_fails_session_and_keeps_partial_code():
    surface = RecordingSurface()
    session = _session(surface)
    provider = FakeCompletionProvider(["df = ", "lo"], error=ConnectionError("reset"))

    status = await StreamApplyEngine().run(session, _stream(provider))

    assert status is SessionStatus.FAILED
    assert session.proposed_code == "df = lo"
    assert isinstance(session.error, ConnectionError)
    assert len(surface.errors) == 1
    assert surface.completed == []
    assert surface.notifications == 3


@pytest.mark.asyncio
async def test_cancel_before_first_chunk():
    surface = RecordingSurface()
    session = _session(surface)
    provider = FakeCompletionProvider(["a"], error=ConnectionError("reset"))
    provider.gates[0] = asyncio.Event()

    task = asyncio.create_task(StreamApplyEngine().run(session, _stream(provider)))
    await asyncio.sleep(0)
    session.cancel()
    provider.gates[0].set()
    status = await task

    assert status is SessionStatus.CANCELLED
    assert session.fail(ConnectionError("late")) is False
    assert surface.errors == []
    assert surface.updates == []
    assert surface.cancelled == 1


@pytest.mark.asyncio
async def test_run_on_inactive_session_applies_nothing():
    surface = RecordingSurface()
    session = _session(surface)
    session.cancel()

    status = await StreamApplyEngine().run(session, _stream(FakeCompletionProvider(["a"])))

    assert status is SessionStatus.CANCELLED
    assert surface.updates == []
    assert surface.completed == []
    assert surface.cancelled == 1


@pytest.mark.asyncio
async def test_task_cancellation_cancels_session():
    surface = RecordingSurface()
    session = _session(surface)
    provider = FakeCompletionProvider(["a", "b"])
    provider.gates[1] = asyncio.Event()

    task = asyncio.create_task(StreamApplyEngine().run(session, _stream(provider)))
    await wait_until(lambda: surface.updates == ["a"])
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert session.status is SessionStatus.CANCELLED
    assert surface.cancelled == 1
    assert provider.closed == 1
