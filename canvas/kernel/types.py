"""
Canvas Kernel — Shared Types

Data classes used across tree, mutations, history, drop resolver and engine.
These are the contracts that bind the kernel together.

A block is a plain dict:

    {"id": str, "type": str, "props": dict, "children": list[Block | None]}

`children` is optional. A `None` entry in `children` is an empty slot
(grid cells, padded inserts) and is skipped by every traversal.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

Block = dict[str, Any]

# ---------------------------------------------------------------------------
# Block type registry
# ---------------------------------------------------------------------------

BLOCK_TYPES: set[str] = {
    # Layout
    "section",
    "row",
    "column",
    "flex",
    "grid",
    "container",
    "group",
    "box",
    "card",
    "link-box",
    "image-box",
    # Content
    "text",
    "heading",
    "elementor-heading",
    "image",
    "button",
    "divider",
    "spacer",
    "video",
    "code",
    "icon",
    "link",
    "map",
    "navbar",
    "badge",
    "alert",
    "social-follow",
    "testimonial",
    # Forms
    "form",
    "input",
    "label",
    "checkbox",
    "radio",
    "textarea",
    "select",
    "survey",
    # Commerce / widgets
    "product",
    "price",
    "promo-code",
    "invoice",
    "progress",
    "progress-bar",
    "countdown-timer",
}

# Types that accept nested children on a middle drop
CONTAINER_TYPES: set[str] = {
    "section",
    "row",
    "column",
    "container",
    "form",
    "group",
    "grid",
    "flex",
    "box",
    "card",
    "link-box",
    "image-box",
}

# Containers whose children array position is a fixed cell index
GRID_TYPES: set[str] = {"grid"}

DEFAULT_MAX_HISTORY_SIZE = 50

# Drop edge threshold: min(ratio * rect height, cap) pixels
DROP_EDGE_RATIO = 0.3
DROP_EDGE_CAP = 30.0

EXPORT_VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class EditResult:
    """
    Result of one engine operation.
    The engine never throws for stale references — it returns one of these.

    reason is "CODE: detail" when rejected.
    """

    accepted: bool
    reason: str | None = None
    block_id: str | None = None
    action: str | None = None

    @property
    def code(self) -> str | None:
        if self.reason is None:
            return None
        return self.reason.split(":", 1)[0]


@dataclass
class Indices:
    """Derived O(1) lookups. Rebuilt from the whole tree after every commit."""

    by_id: dict[str, Block] = field(default_factory=dict)
    parent_of: dict[str, str | None] = field(default_factory=dict)

    def __contains__(self, block_id: object) -> bool:
        return block_id in self.by_id

    def __len__(self) -> int:
        return len(self.by_id)


@dataclass(frozen=True)
class HistoryItem:
    """Deep snapshot of the tree plus a label for the history panel."""

    blocks: list[Block]
    action: str
    timestamp: int  # epoch millis

    def to_dict(self) -> dict[str, Any]:
        return {"blocks": self.blocks, "action": self.action, "timestamp": self.timestamp}


@dataclass
class Template:
    """A saved, reusable block forest from the template library."""

    id: str
    name: str
    blocks: list[Block] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "blocks": self.blocks}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Template:
        return cls(
            id=d["id"],
            name=d.get("name", ""),
            blocks=d.get("blocks", []),
        )


# ---------------------------------------------------------------------------
# Drag and drop
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Rect:
    """Bounding rectangle of a drop candidate, in viewport pixels."""

    top: float
    left: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def bottom(self) -> float:
        return self.top + self.height

    def to_dict(self) -> dict[str, float]:
        return {"top": self.top, "left": self.left, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class DragSource:
    """What is being dragged: a palette template or an existing block."""

    kind: str  # "template" | "block"
    block_id: str | None = None
    template: Block | None = None

    @classmethod
    def for_template(cls, template: Block) -> DragSource:
        return cls(kind="template", template=template)

    @classmethod
    def for_block(cls, block_id: str) -> DragSource:
        return cls(kind="block", block_id=block_id)


@dataclass(frozen=True)
class DropTarget:
    """
    Candidate under the pointer.

    zone   — explicit insertion point with a known (parent_id, index)
    block  — live block; classified by pointer geometry against rect
    cell   — grid cell; parent_id is the grid, index the cell
    canvas — page background; append at root end
    """

    kind: str
    block_id: str | None = None
    parent_id: str | None = None
    index: int | None = None
    rect: Rect | None = None

    @classmethod
    def zone(cls, parent_id: str | None, index: int) -> DropTarget:
        return cls(kind="zone", parent_id=parent_id, index=index)

    @classmethod
    def block(cls, block_id: str, rect: Rect) -> DropTarget:
        return cls(kind="block", block_id=block_id, rect=rect)

    @classmethod
    def cell(cls, grid_id: str, index: int, rect: Rect | None = None) -> DropTarget:
        return cls(kind="cell", parent_id=grid_id, index=index, rect=rect)

    @classmethod
    def canvas(cls) -> DropTarget:
        return cls(kind="canvas")


@dataclass(frozen=True)
class Placement:
    """Visual classification of one drag-over tick."""

    position: str  # "before" | "after" | "inside"
    rect: Rect | None = None

    @property
    def is_nest(self) -> bool:
        return self.position == "inside"


@dataclass(frozen=True)
class DropPlan:
    """
    Exactly one engine call to run on drag-end, or a rejection.

    op: "add" | "move" | "place_in_cell" | "move_to_cell" | "reject"
    """

    op: str
    parent_id: str | None = None
    index: int | None = None
    placement: Placement | None = None
    reason: str | None = None

    @property
    def rejected(self) -> bool:
        return self.op == "reject"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def generate_id() -> str:
    """Short random block id."""
    return uuid.uuid4().hex[:12]


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


def now_iso() -> str:
    """Current UTC time as ISO 8601 string."""
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
