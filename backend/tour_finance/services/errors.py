"""
Typed errors for the finance core.

Every error carries a machine-readable ``code`` and the HTTP status it maps to,
so routes never branch on message text. Validation and not-found errors are
raised before any write; anything raised inside a ledger transaction rolls the
whole transaction back.
"""
from typing import Any, Optional


class FinanceError(Exception):
    code: str = "INTERNAL"
    status_code: int = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(FinanceError):
    """Missing/invalid ids, non-finite quantities or prices, missing category."""
    code = "VALIDATION"
    status_code = 400


class NotFoundError(FinanceError):
    code = "NOT_FOUND"
    status_code = 404


class LockedError(FinanceError):
    """Mutation attempted against a locked finance."""
    code = "LOCKED"
    status_code = 409


class UnauthorizedError(FinanceError):
    code = "UNAUTHORIZED"
    status_code = 401


class InternalError(FinanceError):
    code = "INTERNAL"
    status_code = 500
