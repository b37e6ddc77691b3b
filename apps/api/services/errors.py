"""
Domain errors raised by the shopping-list services.

The generator, rescaler and item operations translate store failures into
these so callers deal with one reportable form instead of raw SQLAlchemy
exceptions.
"""
from typing import Optional


class ShoppingListError(Exception):
    """Base error carrying the failed operation and a human readable detail."""

    def __init__(self, operation: str, detail: str, cause: Optional[Exception] = None):
        super().__init__(detail)
        self.operation = operation
        self.detail = detail
        self.cause = cause

    def __str__(self) -> str:
        return self.detail


class PersistenceError(ShoppingListError):
    """An insert, update or delete against the store failed. Safe to retry."""


class InvalidRequestError(ShoppingListError):
    """Input rejected before any store call."""


class InvalidServingsError(InvalidRequestError):
    """Serving multiplier is not a finite positive number."""


class StaleStateError(ShoppingListError):
    """The shopping list state changed since it was read."""
