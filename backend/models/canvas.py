"""Canvas models for editor sessions over HTTP."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from canvas.kernel.types import DragSource, DropPlan, DropTarget, EditResult, Rect

CANVAS_ID_PATTERN = r"^[A-Za-z0-9_-]{1,64}$"


class CreateCanvasRequest(BaseModel):
    """What the client sends to open a new canvas session."""

    model_config = {"extra": "forbid"}

    canvas_id: str | None = Field(default=None, pattern=CANVAS_ID_PATTERN)
    blocks: list[dict[str, Any]] = Field(default_factory=list)
    max_history_size: int | None = Field(default=None, ge=1, le=1000)


class HistoryEntry(BaseModel):
    action: str
    timestamp: int


class CanvasStateResponse(BaseModel):
    """Read-only snapshot for renderers and the layers/history panels."""

    canvas_id: str
    blocks: list[dict[str, Any] | None]
    selected_ids: list[str]
    hovered_block_id: str | None = None
    history: list[HistoryEntry]
    history_index: int
    can_undo: bool
    can_redo: bool
    has_clipboard: bool
    last_saved: int | None = None

    @classmethod
    def from_engine(cls, canvas_id: str, engine: Any) -> CanvasStateResponse:
        return cls(canvas_id=canvas_id, last_saved=engine.last_saved, **engine.state())


class OperationRequest(BaseModel):
    """One engine operation as data, e.g. {"op": "block.delete", "args": {"block_id": "a1"}}."""

    model_config = {"extra": "forbid"}

    op: str = Field(min_length=1)
    args: dict[str, Any] = Field(default_factory=dict)

    def to_operation(self) -> dict[str, Any]:
        return {**self.args, "op": self.op}


class EditResultResponse(BaseModel):
    """What an accepted edit returns."""

    accepted: bool
    block_id: str | None = None
    action: str | None = None
    state: CanvasStateResponse

    @classmethod
    def from_result(cls, result: EditResult, state: CanvasStateResponse) -> EditResultResponse:
        return cls(accepted=result.accepted, block_id=result.block_id, action=result.action, state=state)


# ---------------------------------------------------------------------------
# Drag and drop
# ---------------------------------------------------------------------------


class RectModel(BaseModel):
    model_config = {"extra": "forbid"}

    top: float
    left: float = 0.0
    width: float = 0.0
    height: float = Field(ge=0)

    def to_rect(self) -> Rect:
        return Rect(top=self.top, left=self.left, width=self.width, height=self.height)


class DragSourceModel(BaseModel):
    model_config = {"extra": "forbid"}

    kind: Literal["template", "block"]
    block_id: str | None = None
    template: dict[str, Any] | None = None

    def to_source(self) -> DragSource:
        return DragSource(kind=self.kind, block_id=self.block_id, template=self.template)


class DropTargetModel(BaseModel):
    model_config = {"extra": "forbid"}

    kind: Literal["zone", "block", "cell", "canvas"]
    block_id: str | None = None
    parent_id: str | None = None
    index: int | None = None
    rect: RectModel | None = None

    def to_target(self) -> DropTarget:
        rect = self.rect.to_rect() if self.rect else None
        return DropTarget(
            kind=self.kind,
            block_id=self.block_id,
            parent_id=self.parent_id,
            index=self.index,
            rect=rect,
        )


class DropRequest(BaseModel):
    """Drag-over tick or drag-end. target is null when released over nothing."""

    model_config = {"extra": "forbid"}

    source: DragSourceModel
    target: DropTargetModel | None = None
    pointer_y: float | None = None


class DropPreviewResponse(BaseModel):
    op: str
    parent_id: str | None = None
    index: int | None = None
    position: Literal["before", "after", "inside"] | None = None
    highlight: dict[str, float] | None = None
    reason: str | None = None

    @classmethod
    def from_plan(cls, plan: DropPlan) -> DropPreviewResponse:
        placement = plan.placement
        return cls(
            op=plan.op,
            parent_id=plan.parent_id,
            index=plan.index,
            position=placement.position if placement else None,
            highlight=placement.rect.to_dict() if placement and placement.rect else None,
            reason=plan.reason,
        )


# ---------------------------------------------------------------------------
# Import / persistence
# ---------------------------------------------------------------------------


class ImportRequest(BaseModel):
    """Exported document text, as produced by GET /export."""

    model_config = {"extra": "forbid"}

    document: str = Field(min_length=1)


class SaveResponse(BaseModel):
    canvas_id: str
    last_saved: int | None
