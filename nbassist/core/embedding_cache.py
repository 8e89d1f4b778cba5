"""Per-document embedding cache with content-hash invalidation.

Each open document owns an immutable ``EmbeddingStore`` snapshot. ``ensure_fresh``
re-embeds only cells whose fingerprint changed (or that are new), keeps the
rest, drops cells no longer in the document, and swaps the new snapshot in
atomically.

Ordering: every refresh takes a monotonic version stamp when it starts. A
refresh that finishes after a newer one has already been applied is discarded,
so the newest-started refresh wins rather than the slowest one.

Persistence: a single writer per document flushes the newest applied snapshot,
and only when its multiset of fingerprints differs from what was last written.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Awaitable, Callable, Iterator, Sequence
from dataclasses import dataclass, field

from nbassist.core.embeddings import embed_text_async
from nbassist.core.errors import PersistenceFailure
from nbassist.core.fingerprint import fingerprint
from nbassist.core.logging import get_logger
from nbassist.core.schemas_cells import CellRecord, EmbeddingEntry
from nbassist.db.embedding_store import EmbeddingStoreBackend

logger = get_logger(__name__)

EmbedFn = Callable[[str], Awaitable[list[float]]]


@dataclass(frozen=True)
class EmbeddingStore:
    """Read-only snapshot of one document's embeddings."""

    document_path: str
    entries: tuple[EmbeddingEntry, ...] = ()
    version: int = -1

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[EmbeddingEntry]:
        return iter(self.entries)

    def get(self, cell_id: str) -> EmbeddingEntry | None:
        for entry in self.entries:
            if entry.id == cell_id:
                return entry
        return None

    def fingerprints(self) -> Counter[str]:
        return Counter(entry.fingerprint for entry in self.entries)


@dataclass
class RefreshOutcome:
    """What one ``ensure_fresh`` call did."""

    document_path: str
    version: int
    recomputed: list[str] = field(default_factory=list)
    reused: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    persisted: bool = False
    superseded: bool = False


@dataclass
class _DocumentState:
    store: EmbeddingStore
    persisted_fingerprints: Counter[str] = field(default_factory=Counter)
    persisted_version: int = -1
    next_version: int = 0
    writing: bool = False


class EmbeddingCache:
    """Owns the embedding stores of all documents."""

    def __init__(self, backend: EmbeddingStoreBackend, embed: EmbedFn = embed_text_async):
        self._backend = backend
        self._embed = embed
        self._documents: dict[str, _DocumentState] = {}
        self._loading: dict[str, asyncio.Task[_DocumentState]] = {}

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def open(self, document_path: str) -> EmbeddingStore:
        """Load a document's persisted store (once) and return its snapshot."""
        state = await self._state(document_path)
        return state.store

    async def _state(self, document_path: str) -> _DocumentState:
        state = self._documents.get(document_path)
        if state is not None:
            return state

        task = self._loading.get(document_path)
        if task is None:
            task = asyncio.ensure_future(self._load(document_path))
            self._loading[document_path] = task
        try:
            state = await task
        finally:
            self._loading.pop(document_path, None)

        # Another waiter on the same load may have registered it already
        return self._documents.setdefault(document_path, state)

    async def _load(self, document_path: str) -> _DocumentState:
        try:
            entries = await asyncio.to_thread(self._backend.load, document_path)
        except PersistenceFailure as e:
            logger.error(f"Embedding store unreadable, starting empty: {e}")
            return _DocumentState(store=EmbeddingStore(document_path))

        if entries is None:
            logger.info(f"No embedding store for {document_path}, initializing empty")
            try:
                await asyncio.to_thread(self._backend.save, document_path, [])
            except PersistenceFailure as e:
                logger.error(f"Failed to initialize embedding store: {e}")
            entries = []

        store = EmbeddingStore(document_path, tuple(entries))
        return _DocumentState(store=store, persisted_fingerprints=store.fingerprints())

    def current_snapshot(self, document_path: str) -> EmbeddingStore:
        """Return the latest complete snapshot (empty if never loaded)."""
        state = self._documents.get(document_path)
        if state is None:
            return EmbeddingStore(document_path)
        return state.store

    def forget(self, document_path: str) -> None:
        """Drop in-memory state for a closed document."""
        self._documents.pop(document_path, None)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def ensure_fresh(
        self, document_path: str, cells: Sequence[CellRecord]
    ) -> RefreshOutcome:
        """Bring the document's store in line with ``cells``.

        Per-cell embedding failures are logged and the cell is omitted; it is
        retried on the next refresh.
        """
        state = await self._state(document_path)
        version = state.next_version
        state.next_version += 1
        outcome = RefreshOutcome(document_path=document_path, version=version)

        previous = {entry.id: entry for entry in state.store.entries}

        # Later duplicates of an id win, in document order
        live: dict[str, CellRecord] = {}
        for cell in cells:
            if cell.source.strip():
                live[cell.id] = cell

        to_compute: list[CellRecord] = []
        for cell in live.values():
            entry = previous.get(cell.id)
            if entry is None or not entry.is_fresh_for(cell):
                to_compute.append(cell)

        results = await asyncio.gather(
            *(self._compute(cell) for cell in to_compute),
            return_exceptions=True,
        )

        computed: dict[str, EmbeddingEntry] = {}
        for cell, result in zip(to_compute, results):
            if isinstance(result, EmbeddingEntry):
                computed[cell.id] = result
                outcome.recomputed.append(cell.id)
            elif isinstance(result, Exception):
                logger.warning(
                    f"Embedding failed for cell {cell.id}: {result}",
                    extra={"document": document_path},
                )
                outcome.failed.append(cell.id)
            else:
                raise result

        new_entries: list[EmbeddingEntry] = []
        for cell_id in live:
            if cell_id in computed:
                new_entries.append(computed[cell_id])
            elif cell_id not in outcome.failed:
                new_entries.append(previous[cell_id])
                outcome.reused.append(cell_id)

        outcome.dropped = [cell_id for cell_id in previous if cell_id not in live]

        if version < state.store.version:
            logger.debug(
                f"Discarding refresh v{version} of {document_path}; "
                f"v{state.store.version} already applied"
            )
            outcome.superseded = True
            return outcome

        # Atomic swap: no await between reading the stamp and replacing the store
        state.store = EmbeddingStore(document_path, tuple(new_entries), version)

        if outcome.recomputed or outcome.dropped or outcome.failed:
            logger.info(
                f"Refreshed embeddings for {document_path} v{version}: "
                f"recomputed={len(outcome.recomputed)}, reused={len(outcome.reused)}, "
                f"failed={len(outcome.failed)}, dropped={len(outcome.dropped)}"
            )

        outcome.persisted = await self._flush(document_path, state)
        return outcome

    async def _compute(self, cell: CellRecord) -> EmbeddingEntry:
        vector = await self._embed(cell.source)
        return EmbeddingEntry.from_source(cell.id, cell.source, vector)

    async def _flush(self, document_path: str, state: _DocumentState) -> bool:
        """Write the newest applied snapshot if its fingerprints changed.

        Returns True if this call performed at least one write.
        """
        if state.writing:
            # The active writer loops until the newest version is flushed
            return False

        wrote = False
        state.writing = True
        try:
            while state.persisted_version < state.store.version:
                store = state.store
                fingerprints = store.fingerprints()
                if fingerprints != state.persisted_fingerprints:
                    try:
                        await asyncio.to_thread(
                            self._backend.save, document_path, list(store.entries)
                        )
                    except PersistenceFailure as e:
                        # In-memory store stays usable; retried on the next refresh
                        logger.error(f"Failed to persist embeddings: {e}")
                        break
                    state.persisted_fingerprints = fingerprints
                    wrote = True
                state.persisted_version = store.version
        finally:
            state.writing = False
        return wrote


def stale_cells(store: EmbeddingStore, cells: Sequence[CellRecord]) -> list[str]:
    """Ids of non-empty cells whose entry is missing or out of date."""
    stale = []
    for cell in cells:
        if not cell.source.strip():
            continue
        entry = store.get(cell.id)
        if entry is None or entry.fingerprint != fingerprint(cell.source):
            stale.append(cell.id)
    return stale
