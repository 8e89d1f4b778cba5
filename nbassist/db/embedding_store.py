"""Durable storage for per-document embedding stores.

Each document's store is a list of ``{id, source, hash, embedding}`` records
keyed by the document's logical path. ``load`` returns ``None`` the first
time a document is seen.

Backends:
- FileEmbeddingStore: one JSON file per document under ``EMBEDDINGS_DIR``
  (``analysis/sales.ipynb`` -> ``analysis/sales_embeddings.json``)
- SupabaseEmbeddingStore: one row per document in ``EMBEDDINGS_TABLE``
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path, PurePosixPath
from typing import Any, Protocol

from pydantic import ValidationError

from nbassist.core.config import get_settings
from nbassist.core.errors import PersistenceFailure
from nbassist.core.logging import get_logger
from nbassist.core.schemas_cells import EmbeddingEntry

logger = get_logger(__name__)

NOTEBOOK_SUFFIX = ".ipynb"
STORE_SUFFIX = "_embeddings.json"


class EmbeddingStoreBackend(Protocol):
    """Read/write access to persisted embedding stores."""

    def load(self, document_path: str) -> list[EmbeddingEntry] | None: ...

    def save(self, document_path: str, entries: Sequence[EmbeddingEntry]) -> None: ...


def _parse_records(document_path: str, records: Any) -> list[EmbeddingEntry]:
    """Validate raw records, skipping any that fail validation."""
    if not isinstance(records, list):
        raise PersistenceFailure(f"Embedding store for {document_path} is not a list")

    entries: list[EmbeddingEntry] = []
    for record in records:
        try:
            entries.append(EmbeddingEntry.model_validate(record))
        except ValidationError as e:
            logger.warning(
                f"Dropping invalid embedding record in {document_path}: {e.error_count()} errors"
            )
    return entries


def store_relative_path(document_path: str) -> PurePosixPath:
    """Map a document path to its store file path, relative to the store root."""
    path = PurePosixPath(document_path.lstrip("/"))
    if ".." in path.parts or not path.name:
        raise PersistenceFailure(f"Invalid document path: {document_path!r}")

    name = path.name
    if name.endswith(NOTEBOOK_SUFFIX):
        name = name[: -len(NOTEBOOK_SUFFIX)]
    return path.with_name(name + STORE_SUFFIX)


class FileEmbeddingStore:
    """JSON-file backend rooted at a directory."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def path_for(self, document_path: str) -> Path:
        return self.root / store_relative_path(document_path)

    def load(self, document_path: str) -> list[EmbeddingEntry] | None:
        path = self.path_for(document_path)
        if not path.exists():
            return None

        try:
            records = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceFailure(f"Cannot read embedding store {path}: {e}") from e

        return _parse_records(document_path, records)

    def save(self, document_path: str, entries: Sequence[EmbeddingEntry]) -> None:
        path = self.path_for(document_path)
        payload = json.dumps([entry.to_record() for entry in entries])

        # Write-then-rename so readers never see a half-written file
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(payload, encoding="utf-8")
            tmp_path.replace(path)
        except OSError as e:
            raise PersistenceFailure(f"Cannot write embedding store {path}: {e}") from e

        logger.debug(f"Persisted {len(entries)} embeddings to {path}")


class SupabaseEmbeddingStore:
    """Supabase backend: one row ``{document_path, entries}`` per document."""

    def __init__(self, client: Any, table: str):
        self.client = client
        self.table = table

    def load(self, document_path: str) -> list[EmbeddingEntry] | None:
        try:
            response = (
                self.client.table(self.table)
                .select("entries")
                .eq("document_path", document_path)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise PersistenceFailure(f"Cannot read embeddings for {document_path}: {e}") from e

        if not response.data:
            return None
        return _parse_records(document_path, response.data[0].get("entries"))

    def save(self, document_path: str, entries: Sequence[EmbeddingEntry]) -> None:
        row = {
            "document_path": document_path,
            "entries": [entry.to_record() for entry in entries],
        }
        try:
            self.client.table(self.table).upsert(row, on_conflict="document_path").execute()
        except Exception as e:
            raise PersistenceFailure(f"Cannot write embeddings for {document_path}: {e}") from e


def get_embedding_store() -> EmbeddingStoreBackend:
    """Build the backend selected by ``EMBEDDING_STORE_BACKEND``."""
    settings = get_settings()
    if settings.EMBEDDING_STORE_BACKEND == "supabase":
        from nbassist.db.supabase_client import get_supabase

        return SupabaseEmbeddingStore(get_supabase(), settings.EMBEDDINGS_TABLE)
    return FileEmbeddingStore(settings.EMBEDDINGS_DIR)
