"""
Canvas session registry.

Holds one CanvasEngine per canvas id for the lifetime of the process.
Each canvas is serialised with its own asyncio lock so two requests never
interleave edits on the same tree.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any
from uuid import uuid4

from backend.config import settings
from canvas.kernel.engine import CanvasEngine
from canvas.kernel.storage import CanvasNotFound, CanvasStorage, FileStorage, MemoryStorage

logger = logging.getLogger(__name__)


class CanvasExists(Exception):
    """A live session already uses this canvas id."""
    pass


class CanvasRegistry:
    def __init__(self, storage: CanvasStorage, max_history_size: int) -> None:
        self.storage = storage
        self.max_history_size = max_history_size
        self._sessions: dict[str, CanvasEngine] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _get_lock(self, canvas_id: str) -> asyncio.Lock:
        if canvas_id not in self._locks:
            self._locks[canvas_id] = asyncio.Lock()
        return self._locks[canvas_id]

    def __contains__(self, canvas_id: object) -> bool:
        return canvas_id in self._sessions

    def create(
        self,
        canvas_id: str | None = None,
        blocks: list[dict[str, Any] | None] | None = None,
        max_history_size: int | None = None,
    ) -> tuple[str, CanvasEngine]:
        """Open a new session. Raises ValueError for a malformed forest."""
        canvas_id = canvas_id or uuid4().hex
        if canvas_id in self._sessions:
            raise CanvasExists(canvas_id)
        engine = CanvasEngine(blocks, max_history_size=max_history_size or self.max_history_size)
        self._sessions[canvas_id] = engine
        logger.info("registry: opened canvas %s", canvas_id)
        return canvas_id, engine

    def get(self, canvas_id: str) -> CanvasEngine:
        engine = self._sessions.get(canvas_id)
        if engine is None:
            raise CanvasNotFound(canvas_id)
        return engine

    @asynccontextmanager
    async def session(self, canvas_id: str) -> AsyncIterator[CanvasEngine]:
        """Exclusive access to one canvas for the duration of a request."""
        # Unknown ids fail before a lock is made for them
        self.get(canvas_id)
        async with self._get_lock(canvas_id):
            yield self.get(canvas_id)

    async def save(self, canvas_id: str) -> CanvasEngine:
        engine = self.get(canvas_id)
        await engine.save_project(self.storage, canvas_id)
        return engine

    async def restore(self, canvas_id: str) -> CanvasEngine:
        """Replace the live session (if any) with the persisted copy."""
        if canvas_id not in self._sessions and await self.storage.get(canvas_id) is None:
            raise CanvasNotFound(canvas_id)
        async with self._get_lock(canvas_id):
            if await self.storage.get(canvas_id) is None:
                raise CanvasNotFound(canvas_id)
            engine = await CanvasEngine.restore(self.storage, canvas_id)
            self._sessions[canvas_id] = engine
        logger.info("registry: restored canvas %s", canvas_id)
        return engine

    def close(self, canvas_id: str) -> None:
        if self._sessions.pop(canvas_id, None) is None:
            raise CanvasNotFound(canvas_id)
        self._locks.pop(canvas_id, None)


def build_storage(storage_dir: str) -> CanvasStorage:
    if storage_dir:
        return FileStorage(storage_dir)
    logger.warning("registry: CANVAS_STORAGE_DIR not set, saves are kept in memory only")
    return MemoryStorage()


canvas_registry = CanvasRegistry(build_storage(settings.CANVAS_STORAGE_DIR), settings.MAX_HISTORY_SIZE)
