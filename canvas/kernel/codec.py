"""
Canvas Kernel — JSON Codec

Canonical export and the matching import.

Export strips internal fields (block ids, a stray props["id"]) and writes

    {"version": "1.0.0", "generated": "<ISO 8601>", "blocks": [...]}

Import validates the whole document before producing anything, then gives
every node a fresh id so re-imported content never collides with a live
session. Empty slots round-trip as null.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from canvas.kernel.tree import children_of, instantiate
from canvas.kernel.types import BLOCK_TYPES, EXPORT_VERSION, Block, generate_id, now_iso


class CanvasImportError(Exception):
    """Import input is not a valid canvas document."""

    def __init__(self, cause: str) -> None:
        super().__init__(cause)
        self.cause = cause


# ---------------------------------------------------------------------------
# Document models
# ---------------------------------------------------------------------------


class BlockSpec(BaseModel):
    """One exported block. Unknown keys (e.g. a leaked id) are ignored."""

    model_config = ConfigDict(extra="ignore")

    type: str
    props: dict[str, Any] = Field(default_factory=dict)
    children: list[BlockSpec | None] | None = None

    @field_validator("type")
    @classmethod
    def known_type(cls, value: str) -> str:
        if value not in BLOCK_TYPES:
            raise ValueError(f"unknown block type '{value}'")
        return value

    def to_template(self) -> dict[str, Any]:
        template: dict[str, Any] = {"type": self.type, "props": dict(self.props)}
        template["props"].pop("id", None)
        if self.children is not None:
            template["children"] = [None if c is None else c.to_template() for c in self.children]
        return template


BlockSpec.model_rebuild()


class CanvasDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    version: str = EXPORT_VERSION
    generated: str | None = None
    blocks: list[BlockSpec]


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


def clean_block(block: Block) -> dict[str, Any]:
    clean: dict[str, Any] = {
        "type": block["type"],
        "props": {k: v for k, v in (block.get("props") or {}).items() if k != "id"},
    }
    kids = children_of(block)
    if kids:
        clean["children"] = [None if c is None else clean_block(c) for c in kids]
    return clean


def export_document(blocks: list[Block | None]) -> dict[str, Any]:
    return {
        "version": EXPORT_VERSION,
        "generated": now_iso(),
        "blocks": [clean_block(b) for b in blocks if b is not None],
    }


def export_json(blocks: list[Block | None], *, indent: int | None = 2) -> str:
    return json.dumps(export_document(blocks), indent=indent)


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


def _describe(error: ValidationError) -> str:
    first = error.errors()[0]
    where = ".".join(str(p) for p in first["loc"]) or "document"
    return f"{where}: {first['msg']}"


def parse_document(text: str) -> CanvasDocument:
    """Parse and validate. Raises CanvasImportError with a readable cause."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise CanvasImportError(f"Invalid JSON: {e.msg} (line {e.lineno}, column {e.colno})") from e

    if not isinstance(data, dict) or not isinstance(data.get("blocks"), list):
        raise CanvasImportError("Invalid schema: blocks array not found")

    try:
        return CanvasDocument.model_validate(data)
    except ValidationError as e:
        raise CanvasImportError(f"Invalid block: {_describe(e)}") from e


def import_json(text: str, id_factory: Callable[[], str] = generate_id) -> list[Block]:
    """Document text → forest with fresh ids. All or nothing."""
    document = parse_document(text)
    return [instantiate(spec.to_template(), id_factory) for spec in document.blocks]
