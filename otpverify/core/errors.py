"""
Error taxonomy for the verification flow.

Every error carries a user-facing message and a severity. VerificationSession
converts all of them into outcomes; none of them reach the caller as faults.
"""

from enum import Enum
from typing import Any, Dict, Optional


class Severity(str, Enum):
    """Severity of a user-facing message"""
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class RejectionKind(str, Enum):
    """Classification of a non-2xx VerificationAPI response"""
    INCORRECT_CODE = "incorrect_code"
    LOCKOUT = "lockout"
    ALREADY_VERIFIED = "already_verified"
    NOT_FOUND = "not_found"
    GENERIC = "generic"


class VerificationError(Exception):
    """Base class for every error the verification flow can produce."""

    severity = Severity.ERROR

    def __init__(self, message: str, severity: Optional[Severity] = None):
        super().__init__(message)
        self.message = message
        if severity is not None:
            self.severity = severity


class ValidationError(VerificationError):
    """A local precondition failed. Never reaches the network."""
    pass


class TransportError(VerificationError):
    """
    Timeout or connection failure talking to the VerificationAPI.

    Retryable, and never attributable to the user's code.
    """

    def __init__(self, message: str, timed_out: bool = False):
        super().__init__(message)
        self.timed_out = timed_out


class ProtocolError(VerificationError):
    """The VerificationAPI answered with a non-JSON body or an unexpected shape."""
    pass


class ServerRejection(VerificationError):
    """The VerificationAPI rejected the request with a classified reason."""

    def __init__(
        self,
        message: str,
        kind: RejectionKind,
        status_code: int,
        payload: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.payload = payload or {}
