"""Apply a model's streamed output to a live diff surface.

One ``StreamSession`` per interaction:

    ACTIVE → COMPLETED | CANCELLED | FAILED   (all terminal)

Cancellation is cooperative: ``cancel()`` flips the session's token and every
later chunk is discarded at the next chunk boundary. The in-flight network
call is closed but not forcibly aborted. The diff surface receives exactly one
terminal notification per session and nothing after it.
"""

import asyncio
import logging
import re
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol
from uuid import uuid4

from nbassist.core.logging import get_logger, log_with_context

logger = get_logger(__name__)


class SessionStatus(str, Enum):
    """Lifecycle states of a stream session."""

    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class DiffSurface(Protocol):
    """Receives proposed-code updates for one editing target."""

    def on_update(self, session: "StreamSession") -> None: ...

    def on_complete(self, session: "StreamSession") -> None: ...

    def on_error(self, session: "StreamSession", error: Exception) -> None: ...

    def on_cancelled(self, session: "StreamSession") -> None: ...


class CancelToken:
    """One-way cancellation flag shared between a session and its stream."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


_FENCED = re.compile(r"^\s*```[\w+-]*[ \t]*\n(.*?)\n?```\s*$", re.DOTALL)


def _strip_code_fences(text: str) -> str:
    """Remove a markdown fence wrapping the whole text, if there is one."""
    match = _FENCED.match(text)
    if match:
        return match.group(1)
    return text


@dataclass(eq=False)
class StreamSession:
    """One in-flight AI code proposal for an editing target."""

    target: str
    original_code: str
    surface: DiffSurface
    session_id: str = field(default_factory=lambda: uuid4().hex)
    proposed_code: str = ""
    status: SessionStatus = SessionStatus.ACTIVE
    error: Exception | None = None
    cancel_token: CancelToken = field(default_factory=CancelToken)

    @property
    def is_active(self) -> bool:
        return self.status is SessionStatus.ACTIVE and not self.cancel_token.cancelled

    def apply_chunk(self, chunk: str) -> bool:
        """Append a chunk and notify the surface. False if the session is over."""
        if not self.is_active:
            return False
        self.proposed_code += chunk
        self.surface.on_update(self)
        return True

    def complete(self) -> bool:
        if not self.is_active:
            return False
        self.proposed_code = _strip_code_fences(self.proposed_code)
        self.status = SessionStatus.COMPLETED
        self.surface.on_complete(self)
        return True

    def fail(self, error: Exception) -> bool:
        """Mark failed; partial ``proposed_code`` is kept for inspection."""
        if not self.is_active:
            return False
        self.error = error
        self.status = SessionStatus.FAILED
        self.surface.on_error(self, error)
        return True

    def cancel(self) -> bool:
        """Cancel the session. Safe to call repeatedly and after terminal states."""
        if self.status is not SessionStatus.ACTIVE:
            return False
        self.cancel_token.cancel()
        self.status = SessionStatus.CANCELLED
        self.surface.on_cancelled(self)
        return True


async def _close_stream(chunks: AsyncIterator[str]) -> None:
    aclose = getattr(chunks, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        logger.debug(f"Error closing completion stream: {e}")


class StreamApplyEngine:
    """Drives a session from a chunk stream to a terminal state."""

    async def run(self, session: StreamSession, chunks: AsyncIterator[str]) -> SessionStatus:
        if not session.is_active:
            await _close_stream(chunks)
            return session.status

        applied = 0
        try:
            async for chunk in chunks:
                if not session.apply_chunk(chunk):
                    logger.debug(
                        f"Session {session.session_id} cancelled; dropping chunk",
                        extra={"target": session.target},
                    )
                    break
                applied += 1
            else:
                session.complete()
        except asyncio.CancelledError:
            session.cancel()
            raise
        except Exception as e:
            if not session.fail(e):
                logger.debug(f"Stream error after session {session.session_id} ended: {e}")
            else:
                logger.error(
                    f"Stream failed for session {session.session_id} after {applied} chunks: {e}",
                    extra={"target": session.target},
                )
        finally:
            await _close_stream(chunks)

        log_with_context(
            logger,
            logging.INFO,
            "Stream session finished",
            target=session.target,
            session_id=session.session_id,
            status=session.status.value,
            chunks=applied,
            chars=len(session.proposed_code),
        )
        return session.status
