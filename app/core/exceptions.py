"""Business errors raised by the inventory reconciliation services.

Every service error carries the HTTP status it maps to, so the single
exception handler in ``app.main`` can surface it to the caller verbatim.
"""
from decimal import Decimal
from typing import Optional, Union

from fastapi import status


class ServiceError(Exception):
    """Base class for errors raised by the service layer."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    """Missing or malformed input."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(ServiceError):
    """A referenced entity does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class InvalidStateError(ServiceError):
    """The requested status change is not in the transition table."""

    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(ServiceError):
    """Concurrent or duplicate processing of the same entity."""

    status_code = status.HTTP_409_CONFLICT


class OverReceiptError(ServiceError):
    """Receiving more than was ordered."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, remaining: int):
        super().__init__(message)
        self.remaining = remaining


class OverRefundError(ServiceError):
    """Refunding more than the sale total."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, remaining: Decimal):
        super().__init__(message)
        self.remaining = remaining


class InsufficientStockError(ServiceError):
    """A ledger movement would drive on-hand or available stock negative."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, available: Optional[Union[int, Decimal]] = None):
        super().__init__(message)
        self.available = available
