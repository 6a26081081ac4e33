from termfees.shared.schemas.base import (
    BaseSchema,
    BulkItemError,
    BulkOperationResult,
    PaginatedResponse,
    SuccessResponse,
    ErrorResponse,
    ErrorDetail,
)

__all__ = [
    "BaseSchema",
    "BulkItemError",
    "BulkOperationResult",
    "PaginatedResponse",
    "SuccessResponse",
    "ErrorResponse",
    "ErrorDetail",
]
