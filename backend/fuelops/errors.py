# Overview: Error taxonomy shared by services and routes.

"""
Service errors carry a stable machine-readable code next to the human message
so clients branch on `code`, never on the text.

Families (HTTP status in parentheses):
- ValidationError (400): missing or malformed input
- BusinessRuleError (400): input is well-formed but violates a rule
- AccessDeniedError (403): station/org scope violation
- NotFoundError (404): referenced row does not exist
- ConflictError (409): current state forbids the operation; re-fetch and retry
"""

from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    """Base class for every expected, client-facing failure."""

    status_code = 400
    code = "SERVICE_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationError(ServiceError, ValueError):
    """400-level input problem."""
    status_code = 400
    code = "VALIDATION_ERROR"


class BusinessRuleError(ServiceError):
    status_code = 400
    code = "BIZ_RULE_VIOLATION"


class AccessDeniedError(ServiceError):
    status_code = 403
    code = "FORBIDDEN_STATION"


class NotFoundError(ServiceError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(ServiceError):
    """409-level state conflict."""
    status_code = 409
    code = "CONFLICT"


# =============================================================================
# PRICING
# =============================================================================

class NoPriceConfigured(BusinessRuleError):
    code = "BIZ_NO_ACTIVE_PRICE"


# =============================================================================
# SHIFT RECONCILIATION
# =============================================================================

class InvalidMeterReading(BusinessRuleError):
    code = "BIZ_INVALID_METER_READING"


class IncompleteSubmission(BusinessRuleError):
    code = "BIZ_INCOMPLETE_SUBMISSION"


class JustificationRequired(BusinessRuleError):
    code = "BIZ_JUSTIFICATION_REQUIRED"


class PreviousShiftOpen(BusinessRuleError):
    code = "BIZ_PREVIOUS_SHIFT_OPEN"


class ShiftNotFound(NotFoundError):
    code = "BIZ_SHIFT_NOT_FOUND"


class DuplicateShift(ConflictError):
    code = "BIZ_SHIFT_DUPLICATE"


class ShiftNotOpen(ConflictError):
    code = "BIZ_SHIFT_NOT_OPEN"


class InvalidStateTransition(ConflictError):
    code = "BIZ_INVALID_STATE_TRANSITION"


# =============================================================================
# TANKS AND SUPPLY
# =============================================================================

class ConcurrentModification(ConflictError):
    code = "BIZ_CONCURRENT_MODIFICATION"


class UllageExceeded(BusinessRuleError):
    code = "BIZ_ULLAGE_EXCEEDED"


class DuplicateBLNumber(BusinessRuleError):
    code = "BIZ_DUPLICATE_BL"


class InvalidDipReading(BusinessRuleError):
    code = "BIZ_INVALID_DIP_READING"


# =============================================================================
# IDEMPOTENCY
# =============================================================================

class IdempotencyInProgress(ConflictError):
    code = "BIZ_IDEMPOTENCY_IN_PROGRESS"


class IdempotencyKeyReused(ConflictError):
    code = "BIZ_IDEMPOTENCY_KEY_REUSED"
