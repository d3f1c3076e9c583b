"""Canvas session routes — open, read, edit, drag and drop, import/export, save/restore."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, HTTPException, Response, status

from backend.models.canvas import (
    CanvasStateResponse,
    CreateCanvasRequest,
    DropPreviewResponse,
    DropRequest,
    EditResultResponse,
    ImportRequest,
    OperationRequest,
    SaveResponse,
)
from backend.services.canvas_registry import CanvasExists, CanvasRegistry, canvas_registry
from canvas.kernel.engine import CanvasEngine
from canvas.kernel.storage import CanvasNotFound, StorageError
from canvas.kernel.types import EditResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/canvases", tags=["canvases"])


def get_registry() -> CanvasRegistry:
    return canvas_registry


@asynccontextmanager
async def _open(registry: CanvasRegistry, canvas_id: str) -> AsyncIterator[CanvasEngine]:
    try:
        async with registry.session(canvas_id) as engine:
            yield engine
    except CanvasNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Canvas not found.")


def _respond(canvas_id: str, engine: CanvasEngine, result: EditResult) -> EditResultResponse:
    """Accepted edits return the new state; rejections become 409 with the reason."""
    if not result.accepted:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.reason)
    return EditResultResponse.from_result(result, CanvasStateResponse.from_engine(canvas_id, engine))


@router.post("", status_code=201)
async def create_canvas(
    req: CreateCanvasRequest,
    registry: CanvasRegistry = Depends(get_registry),
) -> CanvasStateResponse:
    """Open a new canvas session, optionally seeded with a block forest."""
    try:
        canvas_id, engine = registry.create(req.canvas_id, req.blocks, req.max_history_size)
    except CanvasExists:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Canvas already exists.")
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return CanvasStateResponse.from_engine(canvas_id, engine)


@router.get("/{canvas_id}", status_code=200)
async def get_canvas(
    canvas_id: str,
    registry: CanvasRegistry = Depends(get_registry),
) -> CanvasStateResponse:
    async with _open(registry, canvas_id) as engine:
        return CanvasStateResponse.from_engine(canvas_id, engine)


@router.delete("/{canvas_id}", status_code=204)
async def close_canvas(
    canvas_id: str,
    registry: CanvasRegistry = Depends(get_registry),
) -> Response:
    """Drop the live session. Persisted copies are kept."""
    try:
        registry.close(canvas_id)
    except CanvasNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Canvas not found.")
    return Response(status_code=204)


@router.post("/{canvas_id}/operations", status_code=200)
async def apply_operation(
    canvas_id: str,
    req: OperationRequest,
    registry: CanvasRegistry = Depends(get_registry),
) -> EditResultResponse:
    """Run one engine operation, e.g. block.add, block.move or history.undo."""
    async with _open(registry, canvas_id) as engine:
        return _respond(canvas_id, engine, engine.apply(req.to_operation()))


@router.post("/{canvas_id}/drop/preview", status_code=200)
async def preview_drop(
    canvas_id: str,
    req: DropRequest,
    registry: CanvasRegistry = Depends(get_registry),
) -> DropPreviewResponse:
    """
    Live drag-over feedback. Never changes the canvas; a rejected plan is
    still a 200 so the client can show a disabled target.
    """
    async with _open(registry, canvas_id) as engine:
        target = req.target.to_target() if req.target else None
        plan = engine.preview_drop(req.source.to_source(), target, req.pointer_y)
        return DropPreviewResponse.from_plan(plan)


@router.post("/{canvas_id}/drop", status_code=200)
async def drop(
    canvas_id: str,
    req: DropRequest,
    registry: CanvasRegistry = Depends(get_registry),
) -> EditResultResponse:
    """Drag-end: commit the single edit the drop resolves to."""
    async with _open(registry, canvas_id) as engine:
        target = req.target.to_target() if req.target else None
        return _respond(canvas_id, engine, engine.drop(req.source.to_source(), target, req.pointer_y))


@router.get("/{canvas_id}/export", status_code=200)
async def export_canvas(
    canvas_id: str,
    registry: CanvasRegistry = Depends(get_registry),
) -> Response:
    """Canonical JSON document for the current tree."""
    async with _open(registry, canvas_id) as engine:
        return Response(content=engine.export_json(), media_type="application/json")


@router.post("/{canvas_id}/import", status_code=200)
async def import_canvas(
    canvas_id: str,
    req: ImportRequest,
    registry: CanvasRegistry = Depends(get_registry),
) -> EditResultResponse:
    """Replace the tree with an exported document. All or nothing."""
    async with _open(registry, canvas_id) as engine:
        result = engine.import_json(req.document)
        if result.code == "INVALID_DOCUMENT":
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=result.reason)
        return _respond(canvas_id, engine, result)


@router.post("/{canvas_id}/save", status_code=200)
async def save_canvas(
    canvas_id: str,
    registry: CanvasRegistry = Depends(get_registry),
) -> SaveResponse:
    """Persist the tree as it is now. Edits made during the write are not included."""
    if canvas_id not in registry:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Canvas not found.")
    try:
        engine = await registry.save(canvas_id)
    except StorageError as e:
        logger.error("canvases: save failed for %s: %s", canvas_id, e)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Save failed.")
    return SaveResponse(canvas_id=canvas_id, last_saved=engine.last_saved)


@router.post("/{canvas_id}/restore", status_code=200)
async def restore_canvas(
    canvas_id: str,
    registry: CanvasRegistry = Depends(get_registry),
) -> CanvasStateResponse:
    """Reload the persisted copy. History restarts with a single entry."""
    try:
        engine = await registry.restore(canvas_id)
    except CanvasNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No saved copy of this canvas.")
    except StorageError as e:
        logger.error("canvases: restore failed for %s: %s", canvas_id, e)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Restore failed.")
    return CanvasStateResponse.from_engine(canvas_id, engine)
