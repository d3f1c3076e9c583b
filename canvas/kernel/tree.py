"""
Canvas Kernel — Block Tree

Helpers over a forest of block dicts, plus the index builder.

Every function here is pure: input forests are never modified. Edits copy
the nodes along the path to the change and share the untouched branches.
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterator
from typing import Any

from canvas.kernel.types import BLOCK_TYPES, GRID_TYPES, Block, Indices, generate_id

Path = list[int]


# ---------------------------------------------------------------------------
# Basic accessors
# ---------------------------------------------------------------------------


def children_of(block: Block) -> list[Block | None]:
    """Children sequence; absent children read as empty."""
    return block.get("children") or []


def iter_children(block: Block) -> Iterator[Block]:
    """Non-empty child blocks, skipping empty slots."""
    for child in children_of(block):
        if child is not None:
            yield child


def walk(blocks: list[Block | None], parent_id: str | None = None) -> Iterator[tuple[Block, str | None]]:
    """Depth-first (block, parent_id) pairs over the whole forest."""
    for block in blocks:
        if block is None:
            continue
        yield block, parent_id
        yield from walk(children_of(block), block["id"])


def collect_ids(blocks: list[Block | None]) -> list[str]:
    return [block["id"] for block, _ in walk(blocks)]


def is_known_type(value: Any) -> bool:
    return isinstance(value, str) and value in BLOCK_TYPES


def is_grid(block: Block | None) -> bool:
    return block is not None and block.get("type") in GRID_TYPES


# ---------------------------------------------------------------------------
# Index builder
# ---------------------------------------------------------------------------


def build_indices(blocks: list[Block | None]) -> Indices:
    """
    Full rebuild of id → block and id → parent id.
    Called after every commit; never patched incrementally.
    """
    indices = Indices()
    for block, parent_id in walk(blocks):
        indices.by_id[block["id"]] = block
        indices.parent_of[block["id"]] = parent_id
    return indices


# ---------------------------------------------------------------------------
# Tree combinators
# ---------------------------------------------------------------------------


def find_path(blocks: list[Block | None], block_id: str) -> Path | None:
    """Index path from the root sequence to block_id, or None."""
    for i, block in enumerate(blocks):
        if block is None:
            continue
        if block["id"] == block_id:
            return [i]
        sub = find_path(children_of(block), block_id)
        if sub is not None:
            return [i, *sub]
    return None


def get_at(blocks: list[Block | None], path: Path) -> Block | None:
    node: Block | None = None
    level: list[Block | None] = blocks
    for i in path:
        if i < 0 or i >= len(level):
            return None
        node = level[i]
        if node is None:
            return None
        level = children_of(node)
    return node


def map_subtree(
    blocks: list[Block | None],
    block_id: str,
    fn: Callable[[Block], Block],
) -> list[Block | None]:
    """
    Replace the block with block_id by fn(block).
    Only the ancestors of the replaced block are copied.
    Returns the input list unchanged if block_id is absent.
    """
    path = find_path(blocks, block_id)
    if path is None:
        return blocks
    return _replace_along(blocks, path, fn)


def _replace_along(level: list[Block | None], path: Path, fn: Callable[[Block], Block]) -> list[Block | None]:
    head, rest = path[0], path[1:]
    node = level[head]
    if node is None:
        return level
    new_level = list(level)
    if not rest:
        new_level[head] = fn(node)
    else:
        new_level[head] = {**node, "children": _replace_along(children_of(node), rest, fn)}
    return new_level


def update_children(
    blocks: list[Block | None],
    parent_id: str | None,
    fn: Callable[[list[Block | None]], list[Block | None]],
) -> list[Block | None]:
    """Apply fn to the children list of parent_id (None = the root sequence)."""
    if parent_id is None:
        return fn(list(blocks))
    return map_subtree(blocks, parent_id, lambda b: {**b, "children": fn(list(children_of(b)))})


def filter_subtree(
    blocks: list[Block | None],
    keep: Callable[[Block], bool],
    *,
    in_grid: bool = False,
) -> list[Block | None]:
    """
    Drop every block (with its subtree) for which keep() is False.

    Inside grids a dropped child leaves an empty slot so sibling cells keep
    their positions; trailing empty slots are trimmed.
    """
    result: list[Block | None] = []
    changed = False
    for block in blocks:
        if block is None:
            result.append(None)
            continue
        if not keep(block):
            changed = True
            if in_grid:
                result.append(None)
            continue
        kids = children_of(block)
        if kids:
            new_kids = filter_subtree(kids, keep, in_grid=is_grid(block))
            if new_kids is not kids:
                block = {**block, "children": new_kids}
                changed = True
        result.append(block)
    if not changed:
        return blocks
    if in_grid:
        while result and result[-1] is None:
            result.pop()
    return result


# ---------------------------------------------------------------------------
# Position helpers
# ---------------------------------------------------------------------------


def locate(blocks: list[Block | None], indices: Indices, block_id: str) -> tuple[str | None, int] | None:
    """(parent_id, slot index) of block_id, or None if absent."""
    if block_id not in indices:
        return None
    parent_id = indices.parent_of[block_id]
    siblings = blocks if parent_id is None else children_of(indices.by_id[parent_id])
    for i, sibling in enumerate(siblings):
        if sibling is not None and sibling["id"] == block_id:
            return parent_id, i
    return None


def siblings_of(blocks: list[Block | None], indices: Indices, parent_id: str | None) -> list[Block | None]:
    if parent_id is None:
        return blocks
    return children_of(indices.by_id[parent_id])


def is_descendant(indices: Indices, block_id: str, ancestor_id: str) -> bool:
    """True if block_id sits somewhere below ancestor_id."""
    current = indices.parent_of.get(block_id)
    while current is not None:
        if current == ancestor_id:
            return True
        current = indices.parent_of.get(current)
    return False


# ---------------------------------------------------------------------------
# Cloning
# ---------------------------------------------------------------------------


def clone_block(
    block: Block,
    *,
    regenerate: bool = False,
    id_factory: Callable[[], str] = generate_id,
) -> Block:
    """
    Deep copy of a subtree. With regenerate=True every node gets a fresh id
    (depth-first, parent before children).
    """
    clone = copy.deepcopy(block)
    if regenerate:
        _assign_ids(clone, id_factory)
    return clone


def instantiate(template: dict[str, Any], id_factory: Callable[[], str] = generate_id) -> Block:
    """Turn an id-less template into a block with fresh ids throughout."""
    block = copy.deepcopy(template)
    block.setdefault("props", {})
    _assign_ids(block, id_factory)
    return block


def _assign_ids(block: Block, id_factory: Callable[[], str]) -> None:
    block["id"] = id_factory()
    for child in iter_children(block):
        _assign_ids(child, id_factory)


def strip_ids(block: Block) -> Block:
    """Deep copy without ids, suitable for storing as a template."""
    clean = {k: copy.deepcopy(v) for k, v in block.items() if k not in ("id", "children")}
    if "children" in block:
        clean["children"] = [None if c is None else strip_ids(c) for c in children_of(block)]
    return clean


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_forest(blocks: Any) -> list[str]:
    """
    Structural problems with a forest handed in by a collaborator.
    Empty list means the forest is well formed.
    """
    errors: list[str] = []
    if not isinstance(blocks, list):
        return ["forest must be a list of blocks"]
    seen: set[str] = set()
    _validate_level(blocks, "blocks", seen, errors, allow_empty_slots=False)
    return errors


def validate_template(template: Any, where: str = "template") -> list[str]:
    """
    Structural problems with an id-less template. Types must be known at
    every level; ids, if present, are ignored since instantiate replaces them.
    """
    if not isinstance(template, dict):
        return [f"{where}: must be an object"]
    errors: list[str] = []
    if not is_known_type(template.get("type")):
        errors.append(f"{where}: unknown block type {template.get('type')!r}")
    if "props" in template and not isinstance(template["props"], dict):
        errors.append(f"{where}: props must be an object")
    children = template.get("children")
    if children is not None:
        if not isinstance(children, list):
            errors.append(f"{where}: children must be a list")
        else:
            for i, child in enumerate(children):
                if child is not None:
                    errors.extend(validate_template(child, f"{where}.children[{i}]"))
    return errors


def _validate_level(
    level: list[Any],
    where: str,
    seen: set[str],
    errors: list[str],
    *,
    allow_empty_slots: bool,
) -> None:
    for i, block in enumerate(level):
        loc = f"{where}[{i}]"
        if block is None:
            if not allow_empty_slots:
                errors.append(f"{loc}: empty slot at root level")
            continue
        if not isinstance(block, dict):
            errors.append(f"{loc}: block must be an object")
            continue
        block_id = block.get("id")
        if not isinstance(block_id, str) or not block_id:
            errors.append(f"{loc}: missing id")
        elif block_id in seen:
            errors.append(f"{loc}: duplicate id '{block_id}'")
        else:
            seen.add(block_id)
        if not isinstance(block.get("type"), str):
            errors.append(f"{loc}: type must be a string")
        if "props" in block and not isinstance(block["props"], dict):
            errors.append(f"{loc}: props must be an object")
        children = block.get("children")
        if children is None:
            continue
        if not isinstance(children, list):
            errors.append(f"{loc}: children must be a list")
            continue
        _validate_level(children, f"{loc}.children", seen, errors, allow_empty_slots=True)
