"""
Canvas Kernel — Persistence

Only the committed copy of the tree, the template library and the history
bound are durable. Live history does not survive a reload.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from canvas.kernel.types import DEFAULT_MAX_HISTORY_SIZE, Block, Template

logger = logging.getLogger(__name__)

_CANVAS_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class StorageError(Exception):
    """Persisted canvas could not be read or written."""
    pass


class CanvasNotFound(Exception):
    pass


# ---------------------------------------------------------------------------
# Persisted layout
# ---------------------------------------------------------------------------


@dataclass
class PersistedCanvas:
    saved_blocks: list[Block | None] = field(default_factory=list)
    templates: list[Template] = field(default_factory=list)
    max_history_size: int = DEFAULT_MAX_HISTORY_SIZE
    last_saved: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "saved_blocks": self.saved_blocks,
            "templates": [t.to_dict() for t in self.templates],
            "max_history_size": self.max_history_size,
            "last_saved": self.last_saved,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> PersistedCanvas:
        return cls(
            saved_blocks=d.get("saved_blocks", []),
            templates=[Template.from_dict(t) for t in d.get("templates", [])],
            max_history_size=d.get("max_history_size", DEFAULT_MAX_HISTORY_SIZE),
            last_saved=d.get("last_saved"),
        )


# ---------------------------------------------------------------------------
# Storage protocol
# ---------------------------------------------------------------------------


class CanvasStorage:
    """
    Abstract storage interface.
    Implement with files for a single host, or in-memory for tests.
    """

    async def get(self, canvas_id: str) -> PersistedCanvas | None:
        """Fetch the persisted canvas. Returns None if not found."""
        raise NotImplementedError

    async def put(self, canvas_id: str, canvas: PersistedCanvas) -> None:
        raise NotImplementedError

    async def delete(self, canvas_id: str) -> None:
        raise NotImplementedError


class MemoryStorage(CanvasStorage):
    """In-memory storage for testing. Stores serialized copies."""

    def __init__(self) -> None:
        self.canvases: dict[str, str] = {}

    async def get(self, canvas_id: str) -> PersistedCanvas | None:
        raw = self.canvases.get(canvas_id)
        if raw is None:
            return None
        return PersistedCanvas.from_dict(json.loads(raw))

    async def put(self, canvas_id: str, canvas: PersistedCanvas) -> None:
        self.canvases[canvas_id] = json.dumps(canvas.to_dict())

    async def delete(self, canvas_id: str) -> None:
        self.canvases.pop(canvas_id, None)


class FileStorage(CanvasStorage):
    """One JSON file per canvas under a directory."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _path(self, canvas_id: str) -> Path:
        if not _CANVAS_ID_RE.match(canvas_id):
            raise StorageError(f"Invalid canvas id: {canvas_id!r}")
        return self.root / f"{canvas_id}.json"

    async def get(self, canvas_id: str) -> PersistedCanvas | None:
        path = self._path(canvas_id)
        if not path.exists():
            return None
        try:
            text = await asyncio.to_thread(path.read_text, encoding="utf-8")
            return PersistedCanvas.from_dict(json.loads(text))
        except (OSError, json.JSONDecodeError, KeyError) as e:
            raise StorageError(f"Failed to read canvas {canvas_id}: {e}") from e

    async def put(self, canvas_id: str, canvas: PersistedCanvas) -> None:
        path = self._path(canvas_id)
        payload = json.dumps(canvas.to_dict())
        try:
            await asyncio.to_thread(self._write, path, payload)
        except OSError as e:
            raise StorageError(f"Failed to write canvas {canvas_id}: {e}") from e
        logger.debug("storage: wrote %s (%d bytes)", path, len(payload))

    async def delete(self, canvas_id: str) -> None:
        path = self._path(canvas_id)
        await asyncio.to_thread(path.unlink, missing_ok=True)

    @staticmethod
    def _write(path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(payload, encoding="utf-8")
        tmp.replace(path)
