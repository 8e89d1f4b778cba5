"""Background embedding refresh for an open document.

Runs ``ensure_fresh`` every ``interval`` seconds from the moment the document
is opened until it is closed. Errors inside one cycle are logged and the loop
keeps going.
"""

import asyncio
import time
from typing import Any

from nbassist.core.embedding_cache import EmbeddingCache
from nbassist.core.host import HostDocument
from nbassist.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_REFRESH_INTERVAL = 1.0  # seconds


class EmbeddingRefresher:
    """Cancellable periodic refresh task tied to one open document."""

    def __init__(
        self,
        cache: EmbeddingCache,
        host: HostDocument,
        interval: float = DEFAULT_REFRESH_INTERVAL,
    ):
        self.cache = cache
        self.host = host
        self.interval = interval
        self._task: asyncio.Task[None] | None = None
        self._cycles = 0
        self._error_count = 0
        self._start_time: float | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def stats(self) -> dict[str, Any]:
        """Get refresher statistics."""
        uptime = time.time() - self._start_time if self._start_time else 0
        return {
            "running": self.running,
            "cycles": self._cycles,
            "error_count": self._error_count,
            "uptime_seconds": round(uptime, 1),
        }

    def start(self) -> None:
        """Start the loop (no-op if already running)."""
        if self.running:
            return
        self._start_time = time.time()
        self._task = asyncio.create_task(self._run_forever())
        logger.info(
            f"Starting embedding refresher for {self.host.path} (interval={self.interval}s)"
        )

    async def refresh_once(self) -> None:
        """Run a single refresh cycle, logging failures."""
        try:
            await self.cache.ensure_fresh(self.host.path, self.host.cells())
        except Exception as e:
            self._error_count += 1
            logger.exception(f"Error in embedding refresh cycle for {self.host.path}: {e}")
        finally:
            self._cycles += 1

    async def _run_forever(self) -> None:
        while True:
            await self.refresh_once()
            await asyncio.sleep(self.interval)

    async def stop(self) -> None:
        """Cancel the loop and wait for it to exit."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info(f"Embedding refresher stopped for {self.host.path}")
