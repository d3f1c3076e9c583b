"""
Canvas Kernel — the block editor core.

Components:
  tree       — forest helpers, index builder, validation
  mutations  — (blocks, indices, args) → MutationResult  (pure)
  history    — bounded undo/redo log of whole-tree snapshots
  selection  — selection transitions over block ids
  drop       — pointer geometry → one tree edit
  codec      — canonical JSON export / import
  engine     — coordinates all of the above plus persistence
"""

from canvas.kernel.codec import CanvasImportError, export_json, import_json
from canvas.kernel.drop import classify_drop, plan_drop
from canvas.kernel.engine import CanvasEngine
from canvas.kernel.history import History
from canvas.kernel.storage import CanvasStorage, FileStorage, MemoryStorage, StorageError
from canvas.kernel.tree import build_indices, validate_forest
from canvas.kernel.types import DragSource, DropTarget, EditResult, Rect, Template

__all__ = [
    "CanvasEngine",
    "History",
    "build_indices",
    "validate_forest",
    "classify_drop",
    "plan_drop",
    "export_json",
    "import_json",
    "CanvasImportError",
    "CanvasStorage",
    "MemoryStorage",
    "FileStorage",
    "StorageError",
    "DragSource",
    "DropTarget",
    "EditResult",
    "Rect",
    "Template",
]
