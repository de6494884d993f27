"""Error taxonomy for the store ledger.

Validation and business-rule errors carry a message meant for the cashier.
Contention and persistence errors are operational: callers should retry, and
the message shown to people stays generic.
"""

from __future__ import annotations


RETRY_MESSAGE = "Operation failed, please retry."


class LedgerError(Exception):
    """Base class for every error raised by the ledger."""

    retryable = False

    @property
    def user_message(self) -> str:
        return str(self)


class ValidationError(LedgerError, ValueError):
    """Raised when input has the wrong shape or range; nothing was mutated."""


class NotFoundError(LedgerError):
    """Raised when a referenced product, sale, or expense id is unknown."""


class BusinessRuleViolation(LedgerError):
    """Raised when a requested operation violates a ledger rule."""


class InsufficientStockError(BusinessRuleViolation):
    """Raised when a cart line asks for more units than are in stock."""

    def __init__(self, product_id: str, requested: int, available: int) -> None:
        super().__init__(
            f"Quantity exceeds available stock for product '{product_id}': "
            f"requested {requested}, available {available}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class OverCorrectionError(BusinessRuleViolation):
    """Raised when a stock correction would take stock below zero."""

    def __init__(self, product_id: str, requested: int, available: int) -> None:
        super().__init__(
            f"Correction exceeds current stock for product '{product_id}': "
            f"requested {requested}, available {available}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class EmptyCartError(BusinessRuleViolation):
    """Raised when checkout is requested with no cart lines."""


class ContentionError(LedgerError):
    """Raised when product locks cannot be acquired within the timeout."""

    retryable = True

    @property
    def user_message(self) -> str:
        return RETRY_MESSAGE


class PersistenceError(LedgerError):
    """Raised when the record store fails; partial writes were rolled back."""

    retryable = True

    @property
    def user_message(self) -> str:
        return RETRY_MESSAGE


__all__ = [
    "RETRY_MESSAGE",
    "BusinessRuleViolation",
    "ContentionError",
    "EmptyCartError",
    "InsufficientStockError",
    "LedgerError",
    "NotFoundError",
    "OverCorrectionError",
    "PersistenceError",
    "ValidationError",
]
