"""Orchestrate one AI edit interaction per editing target.

Flow for ``start``:
1. Cancel any session already active on the target (happens-before the new one)
2. Kick off a background embedding refresh for the document (not awaited)
3. Embed the query; on failure continue with no context
4. Rank the current embedding snapshot, excluding the target cell
5. Assemble the prompt and stream the completion into a new session

At most one session is active per target. ``toggle`` mirrors the editor's
keybinding: invoking it on a target with an active session tears that session
down instead of starting a second one.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any

from nbassist.core.completions import CompletionProvider, get_completion_provider
from nbassist.core.config import Settings, get_settings
from nbassist.core.embedding_cache import EmbedFn, EmbeddingCache
from nbassist.core.embeddings import embed_text_async
from nbassist.core.errors import ProviderUnavailable, StaleCancellation
from nbassist.core.host import HostDocument
from nbassist.core.logging import get_logger
from nbassist.core.prompt_builder import (
    MISSING_TRACEBACK,
    assemble,
    enrich_instruction,
    normalize_traceback,
)
from nbassist.core.ranking import LinearScanRanker, Ranker
from nbassist.core.schemas_cells import PromptPayload, RankedCell
from nbassist.services.stream_apply import (
    DiffSurface,
    SessionStatus,
    StreamApplyEngine,
    StreamSession,
)

logger = get_logger(__name__)


@dataclass
class AssistRequest:
    """Explicit inputs for one interaction.

    ``fix`` marks a fix-error interaction; its traceback may be missing.
    """

    target: str
    instruction: str = ""
    traceback: Any = None
    fix: bool = False
    selected_code: str | None = None

    @property
    def is_fix(self) -> bool:
        return self.fix


class SessionController:
    """Owns the stream sessions of one open document."""

    def __init__(
        self,
        host: HostDocument,
        cache: EmbeddingCache,
        *,
        provider: CompletionProvider | None = None,
        embed: EmbedFn = embed_text_async,
        ranker: Ranker | None = None,
        engine: StreamApplyEngine | None = None,
        settings: Settings | None = None,
    ):
        self.host = host
        self._cache = cache
        self._settings = settings or get_settings()
        self._provider = provider or get_completion_provider()
        self._embed = embed
        self._ranker = ranker or LinearScanRanker()
        self._engine = engine or StreamApplyEngine()
        self._sessions: dict[str, StreamSession] = {}
        self._runs: dict[str, asyncio.Task[SessionStatus]] = {}
        self._background: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Session lookup / cancellation
    # ------------------------------------------------------------------

    def session(self, target: str) -> StreamSession | None:
        """Latest session for ``target``, in any state."""
        return self._sessions.get(target)

    def active_session(self, target: str) -> StreamSession | None:
        session = self._sessions.get(target)
        if session is not None and session.is_active:
            return session
        return None

    def active_targets(self) -> list[str]:
        """Targets that currently have an active session."""
        return [target for target in self._sessions if self.active_session(target)]

    def cancel(self, target: str) -> bool:
        """Cancel the active session on ``target``, if any."""
        session = self.active_session(target)
        if session is None:
            return False
        logger.info(f"Cancelling session {session.session_id}", extra={"target": target})
        return session.cancel()

    def release(self, session: StreamSession) -> bool:
        """Cancel ``session`` if it is still active (e.g. its consumer went away)."""
        return session.cancel()

    async def wait(self, target: str) -> SessionStatus | None:
        """Wait for the target's streaming task to finish."""
        task = self._runs.get(target)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        session = self._sessions.get(target)
        return session.status if session is not None else None

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def toggle(self, request: AssistRequest, surface: DiffSurface) -> StreamSession | None:
        """Start an interaction, or tear down the active one on the same target."""
        if self.cancel(request.target):
            return None
        return await self.start(request, surface)

    async def fix_error(
        self, target: str, surface: DiffSurface, traceback: Any
    ) -> StreamSession:
        """Start a fix-error interaction for a cell's captured traceback."""
        request = AssistRequest(target=target, traceback=traceback, fix=True)
        return await self.start(request, surface)

    async def start(self, request: AssistRequest, surface: DiffSurface) -> StreamSession:
        """Start a new session on the target, superseding any active one."""
        if not self._settings.is_configured():
            raise ProviderUnavailable(
                f"AI service '{self._settings.AI_SERVICE}' is not configured",
                provider=self._settings.AI_SERVICE,
            )

        target = request.target
        self.cancel(target)

        original_code = self.host.cell_source(target) or ""
        session = StreamSession(target=target, original_code=original_code, surface=surface)
        self._sessions[target] = session

        logger.info(
            f"Starting session {session.session_id} "
            f"({'fix error' if request.is_fix else 'instruction'})",
            extra={"document": self.host.path, "target": target},
        )

        try:
            payload = await self._prepare(session, request)
        except StaleCancellation as e:
            logger.debug(str(e), extra={"target": target})
            return session
        except Exception as e:
            logger.exception(f"Failed to prepare session {session.session_id}: {e}")
            session.fail(e)
            return session

        chunks = self._provider(payload)
        task = asyncio.create_task(self._run(session, chunks, clear_error=request.is_fix))
        self._runs[target] = task
        # Superseded runs stay tracked until they drain, so close() reaches them
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return session

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _prepare(self, session: StreamSession, request: AssistRequest) -> PromptPayload:
        path = self.host.path
        await self._cache.open(path)
        cells = self.host.cells()
        self._spawn(self._cache.ensure_fresh(path, cells))

        traceback = None
        if request.is_fix:
            traceback = normalize_traceback(request.traceback) or MISSING_TRACEBACK
            instruction = request.instruction
            query = session.original_code
        else:
            instruction = await enrich_instruction(
                request.instruction,
                cells,
                self.host.describe_variable,
                self.host.list_variables,
            )
            query = instruction

        context = await self._retrieve(query, request.target)

        selected = request.selected_code
        if selected is None:
            selected = self.host.selection(request.target)

        if not session.is_active:
            raise StaleCancellation(
                f"Session {session.session_id} superseded before streaming started"
            )

        return assemble(instruction, session.original_code, context, selected, traceback)

    async def _retrieve(self, query: str, exclude_id: str) -> list[RankedCell]:
        """Top-K context cells for ``query``; empty when the query can't be embedded."""
        if not query.strip():
            return []
        try:
            query_vector = await self._embed(query)
        except Exception as e:
            logger.warning(f"Query embedding failed, continuing without context: {e}")
            return []

        snapshot = self._cache.current_snapshot(self.host.path)
        return self._ranker.top_k(
            query_vector,
            snapshot,
            self._settings.NUMBER_OF_SIMILAR_CELLS,
            exclude_id=exclude_id,
        )

    async def _run(self, session: StreamSession, chunks: Any, clear_error: bool) -> SessionStatus:
        status = await self._engine.run(session, chunks)
        if status is SessionStatus.COMPLETED and clear_error:
            self.host.clear_error_output(session.target)
        return status

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        """Run a background coroutine, logging (not raising) its failure."""

        async def _guarded() -> None:
            try:
                await coro
            except Exception:
                logger.exception(f"Background task failed for {self.host.path}")

        task = asyncio.create_task(_guarded())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def close(self) -> None:
        """Cancel every session and background task of this document."""
        for target in list(self._sessions):
            self.cancel(target)

        pending = list(self._background)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._runs.clear()
        self._background.clear()
