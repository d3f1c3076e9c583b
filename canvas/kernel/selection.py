"""Selection transitions over block ids. Plain lists with set semantics."""

from __future__ import annotations

from collections.abc import Container


def select(selected: list[str], block_id: str | None, multi: bool = False) -> list[str]:
    """
    None clears. Single mode replaces the selection; multi mode toggles
    membership of block_id.
    """
    if block_id is None:
        return []
    if not multi:
        return [block_id]
    if block_id in selected:
        return [i for i in selected if i != block_id]
    return [*selected, block_id]


def add(selected: list[str], block_id: str) -> list[str]:
    if block_id in selected:
        return list(selected)
    return [*selected, block_id]


def prune(selected: list[str], present: Container[str]) -> list[str]:
    """Drop ids that no longer exist in the tree."""
    return [i for i in selected if i in present]
