"""Structured error response models for consistent API error handling."""

from typing import Any

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standardized error response schema."""

    success: bool = False
    code: str
    message: str
    details: dict[str, Any] | None = None


def create_error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Create a standardized error body for HTTPException.detail."""
    return ErrorResponse(code=code, message=message, details=details).model_dump(exclude_none=True)
