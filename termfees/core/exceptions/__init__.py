from termfees.core.exceptions.base import (
    AppException,
    NotFoundError,
    ValidationError,
    StateConflictError,
    DuplicateError,
)

__all__ = [
    "AppException",
    "NotFoundError",
    "ValidationError",
    "StateConflictError",
    "DuplicateError",
]
