"""
Canvas Kernel — Editing Engine

Owns the live tree, its indices, the undo history, the selection, the
clipboard and the template library. Every change to the tree goes through
one of the operations below; each one

  1. validates references against the current indices,
  2. computes a new forest with a pure function from `mutations`,
  3. rebuilds indices from the whole tree,
  4. prunes the selection and records one labelled history entry.

Stale references are reported no-ops (EditResult.accepted is False), never
exceptions, so the editor stays usable after a race between a deletion and
a queued action.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from typing import Any

from canvas.kernel import mutations, selection
from canvas.kernel.codec import CanvasImportError, export_json, import_json
from canvas.kernel.drop import plan_drop
from canvas.kernel.history import History
from canvas.kernel.mutations import MutationResult
from canvas.kernel.storage import CanvasStorage, PersistedCanvas, StorageError
from canvas.kernel.tree import (
    build_indices,
    clone_block,
    instantiate,
    is_grid,
    locate,
    strip_ids,
    validate_forest,
)
from canvas.kernel.types import (
    CONTAINER_TYPES,
    DEFAULT_MAX_HISTORY_SIZE,
    Block,
    DragSource,
    DropPlan,
    DropTarget,
    EditResult,
    HistoryItem,
    Indices,
    Template,
    generate_id,
    now_ms,
)

logger = logging.getLogger(__name__)


class CanvasEngine:
    def __init__(
        self,
        blocks: list[Block | None] | None = None,
        *,
        max_history_size: int = DEFAULT_MAX_HISTORY_SIZE,
        templates: list[Template] | None = None,
        id_factory: Callable[[], str] = generate_id,
        initial_action: str = "Initial State",
    ) -> None:
        blocks = blocks or []
        problems = validate_forest(blocks)
        if problems:
            raise ValueError(f"Malformed block forest: {problems}")

        self._id_factory = id_factory
        self._blocks: list[Block | None] = copy.deepcopy(blocks)
        self._indices: Indices = build_indices(self._blocks)
        self._history = History(self._blocks, action=initial_action, max_size=max_history_size)
        self._selected: list[str] = []
        self._hovered: str | None = None
        self._clipboard: Block | None = None
        self._templates: list[Template] = list(templates or [])

        # Persistence bookkeeping
        self.saved_blocks: list[Block | None] = []
        self.last_saved: int | None = None
        self._saves_in_flight = 0
        self._save_seq = 0
        self._recorded_save_seq = 0
        self._recorded_copy: PersistedCanvas | None = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def blocks(self) -> list[Block | None]:
        """The committed tree. Callers must treat it as read-only."""
        return self._blocks

    @property
    def indices(self) -> Indices:
        return self._indices

    @property
    def selected_ids(self) -> list[str]:
        return list(self._selected)

    @property
    def hovered_block_id(self) -> str | None:
        return self._hovered

    @property
    def clipboard(self) -> Block | None:
        return copy.deepcopy(self._clipboard)

    @property
    def history(self) -> list[HistoryItem]:
        return self._history.items

    @property
    def history_index(self) -> int:
        return self._history.index

    @property
    def max_history_size(self) -> int:
        return self._history.max_size

    @property
    def templates(self) -> list[Template]:
        return list(self._templates)

    @property
    def is_saving(self) -> bool:
        return self._saves_in_flight > 0

    def get_block(self, block_id: str) -> Block | None:
        return self._indices.by_id.get(block_id)

    def get_parent_id(self, block_id: str) -> str | None:
        return self._indices.parent_of.get(block_id)

    def can_undo(self) -> bool:
        return self._history.can_undo()

    def can_redo(self) -> bool:
        return self._history.can_redo()

    def state(self) -> dict[str, Any]:
        """Detached snapshot for renderers, the layers panel and the history panel."""
        return {
            "blocks": copy.deepcopy(self._blocks),
            "selected_ids": list(self._selected),
            "hovered_block_id": self._hovered,
            "history": [{"action": h.action, "timestamp": h.timestamp} for h in self._history.items],
            "history_index": self._history.index,
            "can_undo": self.can_undo(),
            "can_redo": self.can_redo(),
            "has_clipboard": self._clipboard is not None,
        }

    # ------------------------------------------------------------------
    # Commit plumbing
    # ------------------------------------------------------------------

    def _commit(
        self,
        result: MutationResult,
        action: str,
        *,
        select: list[str] | None = None,
        add_to_selection: str | None = None,
    ) -> EditResult:
        if not result.accepted:
            return self._rejected(action, result.reason or "REJECTED")

        self._blocks = result.blocks
        self._indices = build_indices(self._blocks)
        if select is not None:
            self._selected = list(select)
        elif add_to_selection is not None:
            self._selected = selection.add(self._selected, add_to_selection)
        self._after_tree_change()
        self._history.commit(self._blocks, action)
        logger.debug("canvas: %s (%d blocks)", action, len(self._indices))
        return EditResult(accepted=True, block_id=result.block_id, action=action)

    def _restore(self, blocks: list[Block | None] | None, what: str) -> EditResult:
        if blocks is None:
            return self._rejected(what, f"NO_OP: nothing to {what.lower()}")
        self._blocks = blocks
        self._indices = build_indices(self._blocks)
        self._after_tree_change()
        return EditResult(accepted=True, action=self._history.items[self._history.index].action)

    def _after_tree_change(self) -> None:
        self._selected = selection.prune(self._selected, self._indices)
        if self._hovered is not None and self._hovered not in self._indices:
            self._hovered = None

    def _rejected(self, action: str, reason: str) -> EditResult:
        if reason.startswith("NO_OP"):
            logger.debug("canvas: %s skipped: %s", action, reason)
        else:
            logger.warning("canvas: %s rejected: %s", action, reason)
        return EditResult(accepted=False, reason=reason, action=action)

    # ------------------------------------------------------------------
    # Block operations
    # ------------------------------------------------------------------

    def add_block(
        self,
        template: dict[str, Any],
        parent_id: str | None = None,
        index: int | None = None,
    ) -> EditResult:
        result = mutations.add_block(self._blocks, self._indices, template, parent_id, index, self._id_factory)
        return self._commit(result, f"Add {template.get('type')}", select=[result.block_id] if result.accepted else None)

    def update_block(self, block_id: str, updates: dict[str, Any]) -> EditResult:
        block = self._indices.by_id.get(block_id)
        label = f"Update {block['type']}" if block else "Update Block"
        return self._commit(mutations.update_block(self._blocks, self._indices, block_id, updates), label)

    def delete_block(self, block_id: str) -> EditResult:
        return self._commit(mutations.delete_block(self._blocks, self._indices, block_id), "Delete Block")

    def move_block(self, block_id: str, parent_id: str | None, index: int | None) -> EditResult:
        result = mutations.move_block(self._blocks, self._indices, block_id, parent_id, index)
        return self._commit(result, "Move Block")

    def duplicate_block(self, block_id: str) -> EditResult:
        result = mutations.duplicate_block(self._blocks, self._indices, block_id, self._id_factory)
        return self._commit(result, "Duplicate Block", add_to_selection=result.block_id)

    def move_block_up(self, block_id: str) -> EditResult:
        return self._commit(mutations.shift_block(self._blocks, self._indices, block_id, -1), "Move Block Up")

    def move_block_down(self, block_id: str) -> EditResult:
        return self._commit(mutations.shift_block(self._blocks, self._indices, block_id, 1), "Move Block Down")

    def place_in_cell(self, template: dict[str, Any], grid_id: str, cell: int) -> EditResult:
        result = mutations.place_in_cell(self._blocks, self._indices, template, grid_id, cell, self._id_factory)
        return self._commit(result, "Place In Cell", select=[result.block_id] if result.accepted else None)

    def move_to_cell(self, block_id: str, grid_id: str, cell: int) -> EditResult:
        return self._commit(mutations.move_to_cell(self._blocks, self._indices, block_id, grid_id, cell), "Move Block")

    def insert_block(self, template: dict[str, Any]) -> EditResult:
        """
        Click-to-insert from the palette: inside a selected container, after a
        selected leaf, or at the end of the page. A leaf inside a grid sends
        the new block to the first empty cell.
        """
        if len(self._selected) == 1:
            target_id = self._selected[0]
            target = self._indices.by_id[target_id]
            if target.get("type") in CONTAINER_TYPES:
                return self.add_block(template, target_id, len(target.get("children") or []))
            position = locate(self._blocks, self._indices, target_id)
            if position is not None:
                parent_id, slot = position
                if parent_id is not None and is_grid(self._indices.by_id[parent_id]):
                    return self.add_block(template, parent_id)
                return self.add_block(template, parent_id, slot + 1)
        return self.add_block(template)

    # ------------------------------------------------------------------
    # Clipboard
    # ------------------------------------------------------------------

    def copy_block(self, block_id: str) -> EditResult:
        block = self._indices.by_id.get(block_id)
        if block is None:
            return self._rejected("Copy Block", f"BLOCK_NOT_FOUND: '{block_id}' does not exist")
        self._clipboard = clone_block(block)
        return EditResult(accepted=True, block_id=block_id, action="Copy Block")

    def cut_block(self, block_id: str) -> EditResult:
        copied = self.copy_block(block_id)
        if not copied.accepted:
            return copied
        return self._commit(mutations.delete_block(self._blocks, self._indices, block_id), "Cut Block")

    def paste_block(self, parent_id: str | None = None, index: int | None = None) -> EditResult:
        if self._clipboard is None:
            return self._rejected("Paste Block", "CLIPBOARD_EMPTY: nothing has been copied")
        block = clone_block(self._clipboard, regenerate=True, id_factory=self._id_factory)
        result = mutations.insert_block(self._blocks, self._indices, block, parent_id, index)
        return self._commit(result, "Paste Block", select=[block["id"]] if result.accepted else None)

    # ------------------------------------------------------------------
    # Selection / hover
    # ------------------------------------------------------------------

    def select_block(self, block_id: str | None, multi: bool = False) -> EditResult:
        if block_id is not None and block_id not in self._indices:
            return self._rejected("Select Block", f"BLOCK_NOT_FOUND: '{block_id}' does not exist")
        self._selected = selection.select(self._selected, block_id, multi)
        return EditResult(accepted=True, block_id=block_id, action="Select Block")

    def set_hovered_block(self, block_id: str | None) -> None:
        self._hovered = block_id if block_id in self._indices else None

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def undo(self) -> EditResult:
        return self._restore(self._history.undo(), "Undo")

    def redo(self) -> EditResult:
        return self._restore(self._history.redo(), "Redo")

    def jump_to_history(self, index: int) -> EditResult:
        if isinstance(index, bool) or not isinstance(index, int):
            return self._rejected("Jump To History", f"INVALID_INDEX: {index!r} is not a history position")
        restored = self._history.jump(index)
        if restored is None:
            return self._rejected("Jump To History", f"INVALID_INDEX: no history entry {index}")
        return self._restore(restored, "Jump To History")

    def clear_history(self) -> EditResult:
        self._history.reset(self._blocks, "Reset History")
        return EditResult(accepted=True, action="Reset History")

    def set_max_history_size(self, size: int) -> EditResult:
        try:
            self._history.set_max_size(size)
        except ValueError as e:
            return self._rejected("Set History Size", f"INVALID_SIZE: {e}")
        return EditResult(accepted=True, action="Set History Size")

    # ------------------------------------------------------------------
    # Bulk replace
    # ------------------------------------------------------------------

    def set_blocks(self, blocks: list[Block | None]) -> EditResult:
        problems = validate_forest(blocks)
        if problems:
            return self._rejected("Set Blocks", f"INVALID_FOREST: {'; '.join(problems)}")
        return self._commit(MutationResult(copy.deepcopy(blocks), accepted=True), "Set Blocks")

    def load_canvas(self, blocks: list[Block | None], action: str = "Load Canvas") -> EditResult:
        """Replace the tree, clear selection, reseed history with one entry."""
        problems = validate_forest(blocks)
        if problems:
            return self._rejected(action, f"INVALID_FOREST: {'; '.join(problems)}")
        self._blocks = copy.deepcopy(blocks)
        self._indices = build_indices(self._blocks)
        self._selected = []
        self._hovered = None
        self._history.reset(self._blocks, action)
        return EditResult(accepted=True, action=action)

    def clear_canvas(self) -> EditResult:
        return self.load_canvas([], action="Clear Canvas")

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------

    def export_json(self) -> str:
        return export_json(self._blocks)

    def import_json(self, text: str) -> EditResult:
        """All or nothing: a bad document leaves the live canvas untouched."""
        try:
            blocks = import_json(text, self._id_factory)
        except CanvasImportError as e:
            return self._rejected("Import JSON", f"INVALID_DOCUMENT: {e.cause}")
        return self.load_canvas(blocks)

    # ------------------------------------------------------------------
    # Template library
    # ------------------------------------------------------------------

    def save_template(self, name: str, block_ids: list[str] | None = None) -> Template | None:
        """Store detached copies of the given blocks (default: the whole page)."""
        if block_ids is None:
            sources = [b for b in self._blocks if b is not None]
        else:
            missing = [i for i in block_ids if i not in self._indices]
            if missing:
                logger.warning("canvas: save template rejected: unknown blocks %s", missing)
                return None
            sources = [self._indices.by_id[i] for i in block_ids]

        template = Template(id=f"tpl_{self._id_factory()}", name=name, blocks=[strip_ids(b) for b in sources])
        self._templates.append(template)
        return template

    def update_template(self, template_id: str, name: str, block_ids: list[str] | None = None) -> bool:
        for i, template in enumerate(self._templates):
            if template.id != template_id:
                continue
            if block_ids is None:
                blocks = template.blocks
            else:
                if any(b not in self._indices for b in block_ids):
                    logger.warning("canvas: update template %s rejected: unknown blocks", template_id)
                    return False
                blocks = [strip_ids(self._indices.by_id[b]) for b in block_ids]
            self._templates[i] = Template(id=template_id, name=name, blocks=blocks)
            return True
        logger.warning("canvas: template %s not found", template_id)
        return False

    def delete_template(self, template_id: str) -> bool:
        before = len(self._templates)
        self._templates = [t for t in self._templates if t.id != template_id]
        return len(self._templates) < before

    def load_template(self, template_id: str) -> EditResult:
        """Append the template's blocks at the end of the page with fresh ids."""
        template = next((t for t in self._templates if t.id == template_id), None)
        if template is None:
            return self._rejected("Load Template", f"TEMPLATE_NOT_FOUND: '{template_id}'")
        new_roots = [instantiate(b, self._id_factory) for b in template.blocks if b is not None]
        result = mutations.append_roots(self._blocks, new_roots)
        return self._commit(result, f"Load Template: {template.name}", select=[b["id"] for b in new_roots])

    # ------------------------------------------------------------------
    # Drag and drop
    # ------------------------------------------------------------------

    def preview_drop(
        self,
        source: DragSource,
        target: DropTarget | None,
        pointer_y: float | None = None,
    ) -> DropPlan:
        """Classification for live drag-over feedback. Never touches state."""
        return plan_drop(self._blocks, self._indices, source, target, pointer_y)

    def drop(
        self,
        source: DragSource,
        target: DropTarget | None,
        pointer_y: float | None = None,
    ) -> EditResult:
        """Drag-end: run the single engine call the plan resolves to."""
        plan = plan_drop(self._blocks, self._indices, source, target, pointer_y)
        if plan.rejected:
            return self._rejected("Drop", plan.reason or "REJECTED")

        if plan.op == "add":
            return self.add_block(source.template or {}, plan.parent_id, plan.index)
        if plan.op == "place_in_cell":
            return self.place_in_cell(source.template or {}, plan.parent_id or "", plan.index or 0)

        if source.block_id is None:
            return self._rejected("Drop", "INVALID_SOURCE: dragged block has no id")
        if plan.op == "move_to_cell":
            return self.move_to_cell(source.block_id, plan.parent_id or "", plan.index or 0)
        return self.move_block(source.block_id, plan.parent_id, plan.index)

    # ------------------------------------------------------------------
    # Operations as data
    # ------------------------------------------------------------------

    def apply(self, operation: dict[str, Any]) -> EditResult:
        """
        Run an operation described as a dict, e.g.
        {"op": "block.move", "block_id": "a1", "parent_id": None, "index": 0}
        """
        name = operation.get("op")
        if name is None:
            return self._rejected("Apply", "MISSING_OP: operation has no 'op' field")
        entry = _OPERATIONS.get(name) if isinstance(name, str) else None
        if entry is None:
            return self._rejected("Apply", f"UNKNOWN_OPERATION: {name}")

        method, required, optional = entry
        missing = [f for f in required if f not in operation]
        if missing:
            return self._rejected(name, f"MISSING_FIELD: {name} requires {', '.join(missing)}")
        kwargs = {f: operation[f] for f in (*required, *optional) if f in operation}
        for field, value in kwargs.items():
            problem = _argument_problem(field, value)
            if problem:
                return self._rejected(name, f"INVALID_ARGUMENT: {problem}")
        return getattr(self, method)(**kwargs)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def save_project(self, storage: CanvasStorage, canvas_id: str) -> None:
        """
        Persist a copy of the tree taken now. Edits made while the write is in
        flight are not part of it. Overlapping saves are allowed; the copy from
        the most recently started save is the one recorded as saved, and it is
        also the one left in storage: a failed save is not retried once a newer
        save has started, and an older write that lands after a newer one was
        recorded is followed by a rewrite of the newer copy.
        """
        self._save_seq += 1
        seq = self._save_seq
        blocks = copy.deepcopy(self._blocks)
        persisted = PersistedCanvas(
            saved_blocks=blocks,
            templates=copy.deepcopy(self._templates),
            max_history_size=self._history.max_size,
            last_saved=now_ms(),
        )

        self._saves_in_flight += 1
        try:
            try:
                await storage.put(canvas_id, persisted)
            except StorageError:
                if seq < self._save_seq:
                    logger.warning("canvas: save %d of %s failed; a newer save supersedes it", seq, canvas_id)
                    return
                logger.warning("canvas: save of %s failed, retrying once", canvas_id)
                await storage.put(canvas_id, persisted)

            if seq < self._recorded_save_seq and self._recorded_copy is not None:
                logger.info("canvas: save %d of %s landed late, rewriting the newer copy", seq, canvas_id)
                await storage.put(canvas_id, self._recorded_copy)
                return
        finally:
            self._saves_in_flight -= 1

        if seq > self._recorded_save_seq:
            self._recorded_save_seq = seq
            self._recorded_copy = persisted
            self.saved_blocks = blocks
            self.last_saved = persisted.last_saved
        logger.info("canvas: saved %s (%d blocks)", canvas_id, len(build_indices(blocks)))

    @classmethod
    async def restore(
        cls,
        storage: CanvasStorage,
        canvas_id: str,
        *,
        id_factory: Callable[[], str] = generate_id,
    ) -> CanvasEngine:
        """Rebuild an engine from its persisted copy; history starts fresh."""
        persisted = await storage.get(canvas_id)
        if persisted is None:
            return cls(id_factory=id_factory)

        problems = validate_forest(persisted.saved_blocks)
        if problems:
            raise StorageError(f"Persisted canvas {canvas_id} is malformed: {problems}")

        engine = cls(
            persisted.saved_blocks,
            max_history_size=persisted.max_history_size,
            templates=persisted.templates,
            id_factory=id_factory,
            initial_action="Session Restored",
        )
        engine.saved_blocks = copy.deepcopy(persisted.saved_blocks)
        engine.last_saved = persisted.last_saved
        return engine


# Accepted value types per operation field
_FIELD_TYPES: dict[str, tuple[type, ...]] = {
    "template": (dict,),
    "updates": (dict,),
    "block_id": (str, type(None)),
    "parent_id": (str, type(None)),
    "grid_id": (str,),
    "index": (int, type(None)),
    "cell": (int,),
    "multi": (bool,),
}


def _argument_problem(field: str, value: Any) -> str | None:
    allowed = _FIELD_TYPES.get(field)
    if allowed is None:
        return None
    # bool is an int subclass but never a position
    if isinstance(value, allowed) and not (isinstance(value, bool) and bool not in allowed):
        return None
    expected = " or ".join("null" if t is type(None) else t.__name__ for t in allowed)
    return f"{field} must be {expected}, got {type(value).__name__}"


# (method, required fields, optional fields)
_OPERATIONS: dict[str, tuple[str, tuple[str, ...], tuple[str, ...]]] = {
    "block.add": ("add_block", ("template",), ("parent_id", "index")),
    "block.update": ("update_block", ("block_id", "updates"), ()),
    "block.delete": ("delete_block", ("block_id",), ()),
    "block.move": ("move_block", ("block_id", "parent_id", "index"), ()),
    "block.duplicate": ("duplicate_block", ("block_id",), ()),
    "block.move_up": ("move_block_up", ("block_id",), ()),
    "block.move_down": ("move_block_down", ("block_id",), ()),
    "block.copy": ("copy_block", ("block_id",), ()),
    "block.cut": ("cut_block", ("block_id",), ()),
    "block.paste": ("paste_block", (), ("parent_id", "index")),
    "block.place_in_cell": ("place_in_cell", ("template", "grid_id", "cell"), ()),
    "block.move_to_cell": ("move_to_cell", ("block_id", "grid_id", "cell"), ()),
    "block.insert": ("insert_block", ("template",), ()),
    "selection.set": ("select_block", ("block_id",), ("multi",)),
    "history.undo": ("undo", (), ()),
    "history.redo": ("redo", (), ()),
    "history.jump": ("jump_to_history", ("index",), ()),
    "history.clear": ("clear_history", (), ()),
}
