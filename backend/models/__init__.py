"""
Pydantic models for the canvas service.

All request/response shapes defined here. No imports from routes or services.
"""

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

__all__ = [
    "CreateCanvasRequest",
    "CanvasStateResponse",
    "OperationRequest",
    "EditResultResponse",
    "DropRequest",
    "DropPreviewResponse",
    "ImportRequest",
    "SaveResponse",
]
