"""Error kinds raised by the journey step-graph engine."""

from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError

# Store aborts are not wrapped: the transaction rolls back and the driver
# error reaches the caller unchanged under this name.
TransactionFailure = SQLAlchemyError


class JourneyError(Exception):
    """Base class for errors that carry an API-facing status code."""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(JourneyError):
    """Lookup miss, including records owned by another project."""

    status_code = 404


class StepMapValidationError(JourneyError, ValueError):
    """A desired step map is malformed and was rejected before any write."""

    status_code = 400

    def __init__(self, message: str, errors: list[dict] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


__all__ = [
    "JourneyError",
    "NotFoundError",
    "StepMapValidationError",
    "TransactionFailure",
]
