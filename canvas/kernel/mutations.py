"""
Canvas Kernel — Mutations

Pure functions: (blocks, indices, args) → MutationResult

Each function validates its references against the current indices first,
then computes a new forest. The input forest is never modified, and a
rejected mutation returns the input forest untouched.

Reason strings are "CODE: detail":
  BLOCK_NOT_FOUND, PARENT_NOT_FOUND, UNKNOWN_BLOCK_TYPE, CYCLE, NO_OP,
  CELL_OCCUPIED, NOT_A_GRID, INVALID_INDEX, INVALID_PROPS, INVALID_TEMPLATE

Inserting into a grid fills a cell instead of shifting siblings: the
position in a grid's children is the cell, so no other cell may move.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from canvas.kernel.tree import (
    children_of,
    clone_block,
    filter_subtree,
    instantiate,
    is_descendant,
    is_grid,
    is_known_type,
    locate,
    map_subtree,
    update_children,
    validate_template,
)
from canvas.kernel.types import Block, Indices, generate_id

# Keys an update may never overwrite
_PROTECTED_KEYS = ("id", "children")


# ---------------------------------------------------------------------------
# MutationResult
# ---------------------------------------------------------------------------


class MutationResult:
    """
    Result of applying one mutation to a forest.
    Never throws — always returns one of these.
    """

    __slots__ = ("blocks", "accepted", "reason", "block_id")

    def __init__(
        self,
        blocks: list[Block | None],
        accepted: bool,
        reason: str | None = None,
        block_id: str | None = None,
    ) -> None:
        self.blocks = blocks
        self.accepted = accepted
        self.reason = reason
        self.block_id = block_id

    def __repr__(self) -> str:  # pragma: no cover
        if self.accepted:
            return f"MutationResult(accepted=True, block_id={self.block_id!r})"
        return f"MutationResult(accepted=False, reason={self.reason!r})"


def _reject(blocks: list[Block | None], reason: str) -> MutationResult:
    return MutationResult(blocks=blocks, accepted=False, reason=reason)


def _ok(blocks: list[Block | None], block_id: str | None = None) -> MutationResult:
    return MutationResult(blocks=blocks, accepted=True, block_id=block_id)


def _missing(block_id: str) -> str:
    return f"BLOCK_NOT_FOUND: '{block_id}' does not exist"


# ---------------------------------------------------------------------------
# Internal list helpers
# ---------------------------------------------------------------------------


def _insert_padded(children: list[Block | None], block: Block, index: int | None) -> list[Block | None]:
    """
    Insert at index. An index past the end pads with empty slots first so the
    block lands exactly at that slot. No index (or negative) appends.
    """
    if index is None or index < 0:
        children.append(block)
    elif index > len(children):
        children.extend([None] * (index - len(children)))
        children.append(block)
    else:
        children.insert(index, block)
    return children


def _insert_clamped(children: list[Block | None], block: Block, index: int | None) -> list[Block | None]:
    if index is None or index >= len(children):
        children.append(block)
    else:
        children.insert(max(index, 0), block)
    return children


def _fill_slot(children: list[Block | None], cell: int, block: Block) -> list[Block | None]:
    if cell >= len(children):
        children.extend([None] * (cell + 1 - len(children)))
    children[cell] = block
    return children


def _first_empty(children: list[Block | None], start: int = 0) -> int:
    """First empty slot at or after start; one past the end if there is none."""
    for i in range(start, len(children)):
        if children[i] is None:
            return i
    return len(children)


def _occupied(grid_id: str, cell: int, holder: Block) -> str:
    return f"CELL_OCCUPIED: cell {cell} of '{grid_id}' holds '{holder['id']}'"


def _grid_cell(grid_id: str, children: list[Block | None], index: int | None) -> tuple[int | None, str | None]:
    """
    The cell an insert at index lands in, or the reason it cannot.
    No index (or negative) takes the first empty cell.
    """
    cell = _first_empty(children) if index is None or index < 0 else index
    if cell < len(children) and children[cell] is not None:
        return None, _occupied(grid_id, cell, children[cell])
    return cell, None


def _template_problem(template: Any) -> str | None:
    if isinstance(template, dict) and not is_known_type(template.get("type")):
        return f"UNKNOWN_BLOCK_TYPE: '{template.get('type')}'"
    problems = validate_template(template)
    if problems:
        return f"INVALID_TEMPLATE: {'; '.join(problems)}"
    return None


def _detach(blocks: list[Block | None], block_id: str) -> list[Block | None]:
    return filter_subtree(blocks, lambda b: b["id"] != block_id)


# ---------------------------------------------------------------------------
# Insertion
# ---------------------------------------------------------------------------


def insert_block(
    blocks: list[Block | None],
    indices: Indices,
    block: Block,
    parent_id: str | None = None,
    index: int | None = None,
) -> MutationResult:
    """
    Insert an already-identified block. Root inserts never pad; child inserts
    pad with empty slots when index is past the end. Grid parents take the
    block into an empty cell.
    """
    if parent_id is None:
        return _ok(_insert_clamped(list(blocks), block, index), block_id=block["id"])

    if parent_id not in indices:
        return _reject(blocks, f"PARENT_NOT_FOUND: '{parent_id}' does not exist")

    parent = indices.by_id[parent_id]
    if is_grid(parent):
        cell, problem = _grid_cell(parent_id, children_of(parent), index)
        if problem:
            return _reject(blocks, problem)
        new_blocks = update_children(blocks, parent_id, lambda kids: _fill_slot(kids, cell, block))
    else:
        new_blocks = update_children(blocks, parent_id, lambda kids: _insert_padded(kids, block, index))
    return _ok(new_blocks, block_id=block["id"])


def add_block(
    blocks: list[Block | None],
    indices: Indices,
    template: dict[str, Any],
    parent_id: str | None = None,
    index: int | None = None,
    id_factory: Callable[[], str] = generate_id,
) -> MutationResult:
    """Instantiate template with fresh ids and insert it."""
    problem = _template_problem(template)
    if problem:
        return _reject(blocks, problem)
    if parent_id is not None and parent_id not in indices:
        return _reject(blocks, f"PARENT_NOT_FOUND: '{parent_id}' does not exist")

    return insert_block(blocks, indices, instantiate(template, id_factory), parent_id, index)


def append_roots(blocks: list[Block | None], new_roots: list[Block]) -> MutationResult:
    return _ok([*blocks, *new_roots], block_id=new_roots[0]["id"] if new_roots else None)


# ---------------------------------------------------------------------------
# Update / delete
# ---------------------------------------------------------------------------


def update_block(
    blocks: list[Block | None],
    indices: Indices,
    block_id: str,
    updates: dict[str, Any],
) -> MutationResult:
    """Shallow merge updates onto the block. id and children are left alone."""
    if block_id not in indices:
        return _reject(blocks, _missing(block_id))

    changes = {k: v for k, v in updates.items() if k not in _PROTECTED_KEYS}
    if "type" in changes and not is_known_type(changes["type"]):
        return _reject(blocks, f"UNKNOWN_BLOCK_TYPE: '{changes['type']}'")
    if "props" in changes and not isinstance(changes["props"], dict):
        return _reject(blocks, "INVALID_PROPS: props must be a mapping")

    return _ok(map_subtree(blocks, block_id, lambda b: {**b, **changes}), block_id=block_id)


def delete_block(blocks: list[Block | None], indices: Indices, block_id: str) -> MutationResult:
    """Remove block_id and its subtree from wherever it lives."""
    if block_id not in indices:
        return _reject(blocks, _missing(block_id))
    return _ok(_detach(blocks, block_id), block_id=block_id)


# ---------------------------------------------------------------------------
# Structural moves
# ---------------------------------------------------------------------------


def move_block(
    blocks: list[Block | None],
    indices: Indices,
    block_id: str,
    new_parent_id: str | None,
    index: int | None,
) -> MutationResult:
    """
    Detach block_id and re-insert the same subtree (ids preserved) at index
    under new_parent_id (None = root). index is read against the sibling
    list after the detach. A grid parent takes the block into an empty cell.
    """
    if block_id not in indices:
        return _reject(blocks, _missing(block_id))

    if new_parent_id is not None:
        if new_parent_id == block_id:
            return _reject(blocks, f"CYCLE: cannot move '{block_id}' into itself")
        if new_parent_id not in indices:
            return _reject(blocks, f"PARENT_NOT_FOUND: '{new_parent_id}' does not exist")
        if is_descendant(indices, new_parent_id, block_id):
            return _reject(blocks, f"CYCLE: moving '{block_id}' into '{new_parent_id}' would create a cycle")

    node = indices.by_id[block_id]
    cell: int | None = None
    if new_parent_id is not None and is_grid(indices.by_id[new_parent_id]):
        # The block's own cell counts as empty once it is detached
        cells = children_of(indices.by_id[new_parent_id])
        kids = [None if k is not None and k["id"] == block_id else k for k in cells]
        cell, problem = _grid_cell(new_parent_id, kids, index)
        if problem:
            return _reject(blocks, problem)

    new_blocks = update_children(
        _detach(blocks, block_id),
        new_parent_id,
        lambda kids: _insert_clamped(kids, node, index) if cell is None else _fill_slot(kids, cell, node),
    )

    if new_blocks == blocks:
        return _reject(blocks, f"NO_OP: '{block_id}' is already at that position")
    return _ok(new_blocks, block_id=block_id)


def duplicate_block(
    blocks: list[Block | None],
    indices: Indices,
    block_id: str,
    id_factory: Callable[[], str] = generate_id,
) -> MutationResult:
    """
    Clone the subtree with fresh ids and insert it right after the original.
    Inside a grid the clone takes the first empty cell after the original.
    """
    position = locate(blocks, indices, block_id)
    if position is None:
        return _reject(blocks, _missing(block_id))
    parent_id, slot = position

    clone = clone_block(indices.by_id[block_id], regenerate=True, id_factory=id_factory)
    if parent_id is not None and is_grid(indices.by_id[parent_id]):
        cell = _first_empty(children_of(indices.by_id[parent_id]), slot + 1)
        new_blocks = update_children(blocks, parent_id, lambda kids: _fill_slot(kids, cell, clone))
    else:
        new_blocks = update_children(blocks, parent_id, lambda kids: _insert_clamped(kids, clone, slot + 1))
    return _ok(new_blocks, block_id=clone["id"])


def shift_block(blocks: list[Block | None], indices: Indices, block_id: str, offset: int) -> MutationResult:
    """Swap with the previous (offset=-1) or next (offset=1) slot among its siblings."""
    position = locate(blocks, indices, block_id)
    if position is None:
        return _reject(blocks, _missing(block_id))
    parent_id, slot = position

    siblings = blocks if parent_id is None else children_of(indices.by_id[parent_id])
    other = slot + offset
    if other < 0 or other >= len(siblings):
        edge = "first" if offset < 0 else "last"
        return _reject(blocks, f"NO_OP: '{block_id}' is already {edge}")

    def swap(kids: list[Block | None]) -> list[Block | None]:
        kids[slot], kids[other] = kids[other], kids[slot]
        return kids

    return _ok(update_children(blocks, parent_id, swap), block_id=block_id)


# ---------------------------------------------------------------------------
# Grid cells
# ---------------------------------------------------------------------------


def cell_problem(indices: Indices, grid_id: str, cell: int) -> str | None:
    """Why a block cannot go into this grid cell, or None if it can."""
    grid = indices.by_id.get(grid_id)
    if grid is None:
        return f"PARENT_NOT_FOUND: '{grid_id}' does not exist"
    if not is_grid(grid):
        return f"NOT_A_GRID: '{grid_id}' is a {grid.get('type')}"
    if cell < 0:
        return f"INVALID_INDEX: cell {cell} is negative"
    kids = children_of(grid)
    if cell < len(kids) and kids[cell] is not None:
        return _occupied(grid_id, cell, kids[cell])
    return None


def place_in_cell(
    blocks: list[Block | None],
    indices: Indices,
    template: dict[str, Any],
    grid_id: str,
    cell: int,
    id_factory: Callable[[], str] = generate_id,
) -> MutationResult:
    """Instantiate template into an empty grid cell."""
    problem = _template_problem(template) or cell_problem(indices, grid_id, cell)
    if problem:
        return _reject(blocks, problem)

    block = instantiate(template, id_factory)
    new_blocks = update_children(blocks, grid_id, lambda kids: _fill_slot(kids, cell, block))
    return _ok(new_blocks, block_id=block["id"])


def move_to_cell(
    blocks: list[Block | None],
    indices: Indices,
    block_id: str,
    grid_id: str,
    cell: int,
) -> MutationResult:
    """Move an existing block into an empty grid cell (ids preserved)."""
    if block_id not in indices:
        return _reject(blocks, _missing(block_id))
    if grid_id == block_id or is_descendant(indices, grid_id, block_id):
        return _reject(blocks, f"CYCLE: moving '{block_id}' into '{grid_id}' would create a cycle")
    problem = cell_problem(indices, grid_id, cell)
    if problem:
        return _reject(blocks, problem)

    node = indices.by_id[block_id]
    detached = _detach(blocks, block_id)
    new_blocks = update_children(detached, grid_id, lambda kids: _fill_slot(kids, cell, node))
    return _ok(new_blocks, block_id=block_id)
