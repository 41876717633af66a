"""
Response envelopes shared by every storage endpoint.
"""
from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    """Successful response: ``{"success": true, "data": ...}``."""

    success: bool = True
    data: T | None = None


class ErrorResponse(BaseModel):
    """Error body produced from HTTPException details by the app handlers."""

    success: bool = False
    error: str
    message: str


# OpenAPI documentation for the error statuses the storage endpoints return
ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    404: {"model": ErrorResponse, "description": "Configuration or snapshot not found"},
    409: {"model": ErrorResponse, "description": "Conflicting state"},
    502: {"model": ErrorResponse, "description": "Storage backend unreachable"},
}
