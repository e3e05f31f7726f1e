from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Envelope shared by every endpoint: success flag, human message, payload."""

    success: bool = True
    message: str
    data: T | None = None
    currency: str | None = None


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    errors: dict[str, list[str]] = Field(default_factory=dict)
