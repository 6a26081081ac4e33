from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, computed_field

T = TypeVar("T")


class BaseSchema(BaseModel):
    """Base Pydantic schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class ErrorDetail(BaseSchema):
    """Error detail for a specific field."""

    field: str | None = None
    message: str


class SuccessResponse(BaseSchema, Generic[T]):
    """Standard success response wrapper."""

    success: bool = True
    data: T
    message: str | None = None


class ErrorResponse(BaseSchema):
    """Standard error response wrapper."""

    success: bool = False
    data: None = None
    message: str
    errors: list[ErrorDetail] = []


class PaginatedResponse(BaseSchema, Generic[T]):
    """Paginated response wrapper."""

    items: list[T]
    total: int
    page: int
    limit: int
    pages: int

    @classmethod
    def create(cls, items: list[T], total: int, page: int, limit: int) -> "PaginatedResponse[T]":
        pages = (total + limit - 1) // limit if limit > 0 else 0
        return cls(items=items, total=total, page=page, limit=limit, pages=pages)


class BulkItemError(BaseSchema):
    """One failed entity inside a batch operation."""

    entity_id: int | None = None
    message: str


class BulkOperationResult(BaseSchema):
    """Outcome of a batch operation that isolates per-entity failures."""

    processed: int = 0
    succeeded: int = 0
    skipped: int = 0
    errors: list[BulkItemError] = []

    @computed_field
    @property
    def outcome(self) -> str:
        if not self.errors:
            return "completed"
        if self.succeeded:
            return "completed_with_errors"
        return "failed"
