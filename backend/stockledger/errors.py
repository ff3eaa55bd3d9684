# Overview: Error taxonomy shared by the ledger services and the API layer.

"""
Every failure a ledger operation can report derives from LedgerError.

- ValidationError / ConflictError are raised before anything is committed and
  are safe to retry once the input is corrected.
- StoreError wraps an underlying database failure after the session has been
  rolled back. Callers retry the whole operation, never a part of it.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for ledger operation errors."""

    http_status = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": type(self).__name__,
            "details": self.details,
        }


class ValidationError(LedgerError, ValueError):
    """400-level input problem."""

    http_status = 400


class InvalidItem(ValidationError):
    """A sale or return line references something unusable."""


class ConflictError(LedgerError, ValueError):
    """409-level business rule conflict."""

    http_status = 409


class DuplicateReceipt(ConflictError):
    """Receipt number already recorded."""


class OverReturn(ConflictError):
    """Return quantity exceeds what is left to return on a line."""


class AlreadyReversed(ConflictError):
    """Sale is already canceled or fully returned."""


class InsufficientStock(LedgerError):
    """Decrement would drive stock below zero."""

    http_status = 409


class NotFound(LedgerError):
    http_status = 404


class StoreError(LedgerError):
    """Underlying transaction / I-O failure."""

    http_status = 503
