"""
Error taxonomy for the CaseShield privacy core.

Every error carries a stable ``error_code`` and a ``details`` mapping so
that the HTTP layer and the orchestrator audit log can surface it without
string parsing.

Propagation:
    - ValidationError, StateError, DuplicateApprovalError,
      UnauthorizedError, NotFoundError: always reach the caller.
    - BackendUnavailableError: caught inside ProofService and
      CompressionService and converted into a degraded result.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class CaseShieldError(Exception):
    """Base class for all CaseShield errors."""

    error_code: str = "CASESHIELD_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"{self.error_code}: {self.message}"


class ValidationError(CaseShieldError):
    """Malformed or out-of-range input, rejected before reaching a backend."""

    error_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = dict(details or {})
        if field:
            details["field"] = field
        super().__init__(message, details)
        self.field = field


class CommitteeFormationError(ValidationError):
    """The validator registry cannot supply a large enough committee."""

    error_code = "COMMITTEE_FORMATION_ERROR"


class BackendUnavailableError(CaseShieldError):
    """A prover or compression backend is missing or raised."""

    error_code = "BACKEND_UNAVAILABLE"

    def __init__(self, backend: str, reason: str) -> None:
        super().__init__(f"{backend} unavailable: {reason}", {"backend": backend})
        self.backend = backend
        self.reason = reason


class StateError(CaseShieldError):
    """Operation attempted against a session in the wrong state."""

    error_code = "STATE_ERROR"


class DuplicateApprovalError(CaseShieldError):
    """A committee member tried to approve the same session twice."""

    error_code = "DUPLICATE_APPROVAL"


class UnauthorizedError(CaseShieldError):
    """Caller identity does not match the identity the operation requires."""

    error_code = "UNAUTHORIZED"


class NotFoundError(CaseShieldError):
    """Referenced session or record does not exist."""

    error_code = "NOT_FOUND"
