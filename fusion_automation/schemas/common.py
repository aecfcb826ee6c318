"""Common schemas for standard API responses."""

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class PaginationMeta(BaseModel):
    """Pagination metadata schema."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"total": 100, "page": 1, "page_size": 20, "total_pages": 5}
        }
    )

    total: int = Field(..., description="Total number of items", ge=0)
    page: int = Field(..., description="Current page number", ge=1)
    page_size: int = Field(..., description="Number of items per page", ge=1, le=100)
    total_pages: int = Field(..., description="Total number of pages", ge=0)


class StandardResponse(BaseModel, Generic[T]):
    """Standard response wrapper for single resources."""

    model_config = ConfigDict(
        json_schema_extra={"example": {"data": {}, "meta": None, "error": None}}
    )

    data: T = Field(..., description="Response data")
    meta: dict | None = Field(None, description="Optional metadata")
    error: None = Field(None, description="Error object (null on success)")


class StandardListResponse(BaseModel, Generic[T]):
    """Standard response wrapper for collections with pagination."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "data": [],
                "meta": {"total": 100, "page": 1, "page_size": 20, "total_pages": 5},
                "error": None,
            }
        }
    )

    data: list[T] = Field(..., description="List of items")
    meta: PaginationMeta = Field(..., description="Pagination metadata")
    error: None = Field(None, description="Error object (null on success)")


class ErrorDetail(BaseModel):
    """Error detail schema."""

    code: str = Field(..., description="Error code (e.g., 'AUTOMATION_RULE_INVALID')")
    message: str = Field(..., description="Human-readable error message")
    details: dict | None = Field(None, description="Additional error details")


class ErrorResponse(BaseModel):
    """Error response schema."""

    error: ErrorDetail = Field(..., description="Error information")
    data: None = Field(None, description="Data object (null on error)")
