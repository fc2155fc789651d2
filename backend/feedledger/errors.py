# Overview: Ledger error taxonomy shared by every engine operation.

"""
Ledger errors.

Every engine operation either commits all of its writes or raises one of
these. Callers get a stable ``kind`` plus a readable message; storage-layer
exceptions are translated before they leave the engine.

HTTP MAPPING (for the transport layer):
- NOT_FOUND -> 404
- INVALID_INPUT, INSUFFICIENT_BALANCE, INSUFFICIENT_STOCK -> 400
- INVALID_STATE -> 409
- CONFLICT -> 503 (retry the whole operation)
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for ledger operation errors."""

    kind = "LEDGER_ERROR"
    http_status = 400
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.kind,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(LedgerError):
    """Referenced party, batch, discount, product or transaction does not exist."""

    kind = "NOT_FOUND"
    http_status = 404


class InvalidInputError(LedgerError, ValueError):
    """400-level input problem, raised before the store is touched."""

    kind = "INVALID_INPUT"
    http_status = 400


class InvalidStateError(LedgerError):
    """Operation not permitted in the entity's current state."""

    kind = "INVALID_STATE"
    http_status = 409


class InsufficientBalanceError(LedgerError):
    kind = "INSUFFICIENT_BALANCE"
    http_status = 400


class InsufficientStockError(LedgerError):
    kind = "INSUFFICIENT_STOCK"
    http_status = 400


class LedgerConflictError(LedgerError):
    """Commit failed due to concurrent modification or storage unavailability."""

    kind = "CONFLICT"
    http_status = 503
    retryable = True


class ImmutableRecordError(LedgerError):
    """Raised when code tries to update or delete an append-only ledger row."""

    kind = "IMMUTABLE_RECORD"
    http_status = 409
