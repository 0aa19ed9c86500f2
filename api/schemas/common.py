"""Common Pydantic schemas shared across the API."""

from typing import Any, Generic, TypeVar, Optional
from pydantic import BaseModel, Field


T = TypeVar("T")


class ListResponse(BaseModel, Generic[T]):
    """List wrapper with a total count."""

    items: list[T] = Field(description="Matching items")
    total: int = Field(ge=0, description="Number of items returned")

    @classmethod
    def of(cls, items: list[T]) -> "ListResponse[T]":
        return cls(items=items, total=len(items))


class ErrorDetail(BaseModel):
    code: str = Field(description="Error code for programmatic handling")
    message: str = Field(description="Human readable, sanitized message")
    path: str
    method: str
    details: Optional[Any] = Field(None, description="Structured error context")


class ErrorResponse(BaseModel):
    """Error response envelope."""

    error: ErrorDetail


# Documented on every workflow route
ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    403: {"model": ErrorResponse, "description": "Role may not perform this action"},
    404: {"model": ErrorResponse, "description": "Entity not found"},
    409: {"model": ErrorResponse, "description": "Illegal transition or conflict"},
    422: {"model": ErrorResponse, "description": "Invalid payload or slot"},
}
