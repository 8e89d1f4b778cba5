"""Registry of open documents.

Opening a document wires up its host, session controller and periodic
refresher; closing it tears all three down so no timers or streams leak.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from nbassist.core.completions import CompletionProvider
from nbassist.core.config import get_settings
from nbassist.core.embedding_cache import EmbedFn, EmbeddingCache
from nbassist.core.embeddings import embed_text_async
from nbassist.core.host import InMemoryNotebook
from nbassist.core.logging import get_logger
from nbassist.core.schemas_cells import CellRecord
from nbassist.db.embedding_store import get_embedding_store
from nbassist.services.embedding_refresher import EmbeddingRefresher
from nbassist.services.session_controller import SessionController

logger = get_logger(__name__)


@dataclass
class OpenDocument:
    """Everything that lives for as long as a document is open."""

    host: InMemoryNotebook
    controller: SessionController
    refresher: EmbeddingRefresher


class DocumentRegistry:
    """Open documents keyed by logical path."""

    def __init__(
        self,
        cache: EmbeddingCache | None = None,
        *,
        provider: CompletionProvider | None = None,
        embed: EmbedFn = embed_text_async,
        refresh_interval: float | None = None,
    ):
        settings = get_settings()
        self.cache = cache or EmbeddingCache(get_embedding_store(), embed=embed)
        self._provider = provider
        self._embed = embed
        if refresh_interval is None:
            refresh_interval = settings.EMBEDDING_REFRESH_INTERVAL
        self._refresh_interval = refresh_interval
        self._documents: dict[str, OpenDocument] = {}

    def get(self, path: str) -> OpenDocument | None:
        return self._documents.get(path)

    def paths(self) -> list[str]:
        return list(self._documents)

    async def open(
        self,
        path: str,
        cells: Iterable[CellRecord],
        variables: Mapping[str, str] | None = None,
    ) -> OpenDocument:
        """Open ``path``, or replace the cells (and variables, if given) of an open one."""
        document = self._documents.get(path)
        if document is not None:
            document.host.set_cells(cells)
            if variables is not None:
                document.host.set_variables(variables)
            return document

        host = InMemoryNotebook(path, cells, variables)
        await self.cache.open(path)
        controller = SessionController(
            host, self.cache, provider=self._provider, embed=self._embed
        )
        refresher = EmbeddingRefresher(self.cache, host, self._refresh_interval)
        refresher.start()

        document = OpenDocument(host=host, controller=controller, refresher=refresher)
        self._documents[path] = document
        logger.info(f"Opened document {path}", extra={"document": path})
        return document

    async def close(self, path: str) -> bool:
        document = self._documents.pop(path, None)
        if document is None:
            return False
        await document.refresher.stop()
        await document.controller.close()
        self.cache.forget(path)
        logger.info(f"Closed document {path}", extra={"document": path})
        return True

    async def close_all(self) -> None:
        for path in list(self._documents):
            await self.close(path)


# Global registry instance (for API control)
_registry: DocumentRegistry | None = None


def get_registry() -> DocumentRegistry:
    """Get or create the global registry instance."""
    global _registry
    if _registry is None:
        _registry = DocumentRegistry()
    return _registry


async def shutdown_registry() -> None:
    """Close every open document of the global registry, if one was created."""
    global _registry
    registry, _registry = _registry, None
    if registry is not None:
        await registry.close_all()
