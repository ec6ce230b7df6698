"""Typed errors raised by the membership and invitation services.

Services raise these; the API layer renders them through a single exception
handler as ``{"success": false, "code": ..., "message": ...}``.
"""

from __future__ import annotations

from typing import Any, Optional


class MembershipError(Exception):
    """Base class for every failure the farm membership core reports."""

    code = "membership_error"
    status_code = 400

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:  # pragma: no cover - human readable
        return f"{self.__class__.__name__}(code={self.code}, message={self.message})"


class NotAuthenticatedError(MembershipError):
    code = "not_authenticated"
    status_code = 401


class PermissionDeniedError(MembershipError):
    code = "permission_denied"
    status_code = 403


class NotFoundError(MembershipError):
    code = "not_found"
    status_code = 404


class ConflictError(MembershipError):
    code = "conflict"
    status_code = 409


class ExpiredError(MembershipError):
    code = "expired"
    status_code = 410


class ValidationError(MembershipError):
    code = "invalid_request"
    status_code = 400


class IntegrityViolation(MembershipError):
    """Referential mismatch detected while reading.

    Read paths log this and degrade to a safe default instead of raising.
    """

    code = "integrity_violation"
    status_code = 500


class StoreError(MembershipError):
    """The directory store failed; the surrounding transaction was rolled back."""

    code = "store_error"
    status_code = 503


class ResolutionError(StoreError):
    code = "resolution_error"
