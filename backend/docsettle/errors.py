# Overview: Error taxonomy shared by the services and mapped to HTTP statuses by the routes.

from __future__ import annotations

from typing import Any


class SettlementError(Exception):
    """
    Base class for every error raised by the transfer and settlement services.

    Attributes:
        status_code: HTTP status the routes answer with
        error_code: stable identifier for API clients
        details: structured context (offending lines, stale documents, ...)
    """

    status_code: int = 500
    error_code: str = "SETTLEMENT_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "error_code": self.error_code,
            "details": self.details,
        }


# =============================================================================
# Validation errors (client-correctable, nothing was written)
# =============================================================================

class RequestValidationError(SettlementError):
    """Malformed request payload."""

    status_code = 400
    error_code = "VALIDATION_ERROR"


class InsufficientQuantityError(SettlementError):
    """Requested transfer quantity exceeds a source line's remaining quantity."""

    status_code = 409
    error_code = "INSUFFICIENT_QUANTITY"

    def __init__(self, shortfalls: list[dict]):
        lines = ", ".join(
            f"line {s['line_id']} (remaining {s['remaining_qty']}, requested {s['requested_qty']})"
            for s in shortfalls
        )
        super().__init__(f"Insufficient remaining quantity: {lines}", {"lines": shortfalls})
        self.shortfalls = shortfalls


class InvalidTransferError(SettlementError):
    """Transfer request is structurally invalid (VOID source, cross-domain chain, bad quantity)."""

    status_code = 422
    error_code = "INVALID_TRANSFER"


class InvalidAllocationError(SettlementError):
    """Knockoff set breaks a settlement rule (over-allocation, wrong target, bad amount)."""

    status_code = 422
    error_code = "INVALID_ALLOCATION"


# =============================================================================
# Conflict errors (retryable by the caller with a fresh proposal)
# =============================================================================

class StaleAllocationError(SettlementError):
    """A knockoff snapshot no longer matches the target's live outstanding."""

    status_code = 409
    error_code = "STALE_ALLOCATION"

    def __init__(self, stale: list[dict]):
        docs = ", ".join(
            f"{s['document_no']} (expected {s['expected_cents']}, live {s['live_cents']})"
            for s in stale
        )
        super().__init__(f"Outstanding changed since proposal: {docs}", {"documents": stale})
        self.stale = stale


# =============================================================================
# State errors
# =============================================================================

class DocumentNotFoundError(SettlementError):
    status_code = 404
    error_code = "NOT_FOUND"


class DocumentStateError(SettlementError):
    """Operation not legal in the document's (or payment's) current state."""

    status_code = 409
    error_code = "INVALID_DOCUMENT_STATE"


class InvalidStateError(SettlementError):
    """Stored data breaks a conservation invariant. Fatal; never retried."""

    status_code = 500
    error_code = "INVARIANT_VIOLATION"
