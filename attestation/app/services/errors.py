"""
Error taxonomy for the attestation workflow.

Every failure is scoped to a single submission attempt. Components raise
their own error kind; the orchestrator never recovers or retries, it only
records the failure and re-raises to the caller.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class AttestationError(RuntimeError):
    """Base class for all submission-scoped failures."""

    kind: str = "attestation_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        cause = self.__cause__
        return {
            "error": type(self).__name__,
            "kind": self.kind,
            "message": self.message,
            "cause": (
                f"{type(cause).__name__}: {cause}" if cause is not None else None
            ),
        }


# ----------------------------------------------------------------------
# Content store
# ----------------------------------------------------------------------

class PublishError(AttestationError):
    """
    Transport or protocol failure talking to the content store.

    Carries the upstream status code and response body when the store
    answered, or the transport exception as ``__cause__`` when it did not.
    """

    kind = "publish_failed"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        response_body: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["status_code"] = self.status_code
        return data


# ----------------------------------------------------------------------
# Claim construction
# ----------------------------------------------------------------------

class ValidationErrorKind(str, Enum):
    UNKNOWN_SCHEMA = "unknown_schema"
    MISSING_FIELD = "missing_field"
    TYPE_MISMATCH = "type_mismatch"


class ValidationError(AttestationError):
    """Malformed or incomplete claim input."""

    def __init__(
        self,
        kind: ValidationErrorKind,
        message: str,
        *,
        field: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind.value
        self.validation_kind = kind
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["field"] = self.field
        return data


# ----------------------------------------------------------------------
# Signing
# ----------------------------------------------------------------------

class SigningErrorKind(str, Enum):
    NO_KEY_HOLDER = "no_key_holder"
    USER_REJECTED = "user_rejected"
    MALFORMED_SIGNATURE = "malformed_signature"
    PROVIDER_ERROR = "provider_error"


class SigningError(AttestationError):
    """The key holder could not produce a usable signature."""

    def __init__(self, kind: SigningErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind.value
        self.signing_kind = kind
