"""
Canvas Kernel — Drop Resolver

Turns a drag gesture into exactly one tree edit.

  classify_drop  — pointer Y vs. a target rect → before / after / inside
  plan_drop      — source + target + pointer → DropPlan (one engine call)

Both are read-only. Live drag-over feedback and the drag-end commit run the
same functions, so the preview always matches what the drop will do.

Sibling rule: moving a block later within its own parent shifts the target
index down by one, since detaching it shifts every later sibling. A plan
that lands the block on its current slot is rejected as NO_OP.

Grid children are cells: sibling and zone drops into a grid are rejected as
GRID_SLOT, and nesting into a grid fills its first empty cell.
"""

from __future__ import annotations

from canvas.kernel.mutations import cell_problem
from canvas.kernel.tree import children_of, is_descendant, is_grid, locate
from canvas.kernel.types import (
    CONTAINER_TYPES,
    DROP_EDGE_CAP,
    DROP_EDGE_RATIO,
    Block,
    DragSource,
    DropPlan,
    DropTarget,
    Indices,
    Placement,
    Rect,
)


def edge_threshold(height: float) -> float:
    return min(DROP_EDGE_RATIO * height, DROP_EDGE_CAP)


def classify_drop(pointer_y: float, rect: Rect, target_type: str | None) -> Placement:
    """
    Edge bands of min(30% height, 30px) mean sibling before/after; the middle
    nests into containers. Non-containers fall back to the nearer edge.
    """
    threshold = edge_threshold(rect.height)
    dist_top = abs(pointer_y - rect.top)
    dist_bottom = abs(pointer_y - rect.bottom)

    if dist_top < threshold:
        return Placement("before", rect)
    if dist_bottom < threshold:
        return Placement("after", rect)
    if target_type in CONTAINER_TYPES:
        return Placement("inside", rect)
    return Placement("before" if dist_top < dist_bottom else "after", rect)


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


def _reject(reason: str, placement: Placement | None = None) -> DropPlan:
    return DropPlan(op="reject", reason=reason, placement=placement)


def plan_drop(
    blocks: list[Block | None],
    indices: Indices,
    source: DragSource,
    target: DropTarget | None,
    pointer_y: float | None = None,
) -> DropPlan:
    """Resolve a drop into one engine call, or a rejection."""
    if target is None:
        return _reject("NO_TARGET: released outside any drop target")

    if source.kind == "block":
        if source.block_id not in indices:
            return _reject(f"BLOCK_NOT_FOUND: '{source.block_id}' does not exist")
    elif source.kind != "template" or source.template is None:
        return _reject(f"INVALID_SOURCE: cannot drag a '{source.kind}'")

    if target.kind == "canvas":
        return _insertion(blocks, indices, source, None, len(blocks))

    if target.kind == "zone":
        if target.parent_id is not None and target.parent_id not in indices:
            return _reject(f"PARENT_NOT_FOUND: '{target.parent_id}' does not exist")
        if target.index is None or target.index < 0:
            return _reject(f"INVALID_INDEX: drop zone index {target.index}")
        if target.parent_id is not None and is_grid(indices.by_id[target.parent_id]):
            return _reject(f"GRID_SLOT: children of '{target.parent_id}' are grid cells; drop onto a cell")
        if source.kind == "block" and target.parent_id is not None:
            if target.parent_id == source.block_id or is_descendant(indices, target.parent_id, source.block_id):
                return _reject(f"CYCLE: cannot drop '{source.block_id}' inside itself")
        return _insertion(blocks, indices, source, target.parent_id, target.index)

    if target.kind == "cell":
        return _cell(indices, source, target)

    if target.kind == "block":
        return _onto_block(blocks, indices, source, target, pointer_y)

    return _reject(f"INVALID_TARGET: unknown target kind '{target.kind}'")


def _cell(indices: Indices, source: DragSource, target: DropTarget) -> DropPlan:
    grid_id, cell = target.parent_id, target.index
    if grid_id is None or cell is None:
        return _reject("INVALID_TARGET: cell target needs a grid and an index")
    if source.kind == "block":
        if grid_id == source.block_id or is_descendant(indices, grid_id, source.block_id):
            return _reject(f"CYCLE: cannot drop '{source.block_id}' inside itself")
    problem = cell_problem(indices, grid_id, cell)
    if problem:
        return _reject(problem)
    op = "move_to_cell" if source.kind == "block" else "place_in_cell"
    return DropPlan(op=op, parent_id=grid_id, index=cell)


def _onto_block(
    blocks: list[Block | None],
    indices: Indices,
    source: DragSource,
    target: DropTarget,
    pointer_y: float | None,
) -> DropPlan:
    target_id = target.block_id
    if target_id is None or target_id not in indices:
        return _reject(f"BLOCK_NOT_FOUND: '{target_id}' does not exist")
    if target.rect is None or pointer_y is None:
        return _reject("INVALID_TARGET: block targets need a rect and a pointer position")

    target_block = indices.by_id[target_id]
    placement = classify_drop(pointer_y, target.rect, target_block.get("type"))

    if source.kind == "block":
        if source.block_id == target_id:
            return _reject(f"NO_OP: '{target_id}' dropped onto itself", placement)
        if is_descendant(indices, target_id, source.block_id):
            return _reject(f"CYCLE: cannot drop '{source.block_id}' inside itself", placement)

    if placement.is_nest:
        if is_grid(target_block):
            return _into_grid(blocks, indices, source, target_id, placement)
        count = len(children_of(target_block))
        return _insertion(blocks, indices, source, target_id, count, placement)

    parent_id = indices.parent_of[target_id]
    if parent_id is not None and is_grid(indices.by_id[parent_id]):
        return _reject(f"GRID_SLOT: siblings of '{target_id}' are grid cells; drop onto a cell", placement)

    position = locate(blocks, indices, target_id)
    if position is None:
        return _reject(f"BLOCK_NOT_FOUND: '{target_id}' does not exist", placement)
    _, slot = position
    raw_index = slot if placement.position == "before" else slot + 1
    return _insertion(blocks, indices, source, parent_id, raw_index, placement)


def _into_grid(
    blocks: list[Block | None],
    indices: Indices,
    source: DragSource,
    grid_id: str,
    placement: Placement,
) -> DropPlan:
    """Nesting into a grid fills its first empty cell."""
    cells = children_of(indices.by_id[grid_id])
    if source.kind == "template":
        cell = next((i for i, c in enumerate(cells) if c is None), len(cells))
        return DropPlan(op="place_in_cell", parent_id=grid_id, index=cell, placement=placement)

    # The dragged block's own cell counts as empty
    cell = next((i for i, c in enumerate(cells) if c is None or c["id"] == source.block_id), len(cells))
    if locate(blocks, indices, source.block_id) == (grid_id, cell):
        return _reject(f"NO_OP: '{source.block_id}' is already at that position", placement)
    return DropPlan(op="move_to_cell", parent_id=grid_id, index=cell, placement=placement)


def _insertion(
    blocks: list[Block | None],
    indices: Indices,
    source: DragSource,
    parent_id: str | None,
    raw_index: int,
    placement: Placement | None = None,
) -> DropPlan:
    if source.kind == "template":
        return DropPlan(op="add", parent_id=parent_id, index=raw_index, placement=placement)

    current = locate(blocks, indices, source.block_id) if source.block_id is not None else None
    if current is None:
        return _reject(f"BLOCK_NOT_FOUND: '{source.block_id}' does not exist", placement)
    current_parent, current_index = current

    index = raw_index
    if current_parent == parent_id and current_index < raw_index:
        index -= 1
    if current_parent == parent_id and index == current_index:
        return _reject(f"NO_OP: '{source.block_id}' is already at that position", placement)
    return DropPlan(op="move", parent_id=parent_id, index=index, placement=placement)
