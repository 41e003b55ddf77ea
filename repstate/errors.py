"""
Errors
======

Structured exceptions for the reputation state engine. Every error carries a
stable integer code and a small context dict so callers and logs can classify
failures without string matching.

Families:
    - ValidationError: local, synchronous checks surfaced to the caller
    - ConsistencyError: detected while replaying ledger events
    - ExternalError: raised by or on behalf of a collaborator (ledger, prover)

Version: 0.1.0
"""

from enum import IntEnum
from typing import Any, Mapping


class ErrorCode(IntEnum):
    """Stable error codes."""

    GENERIC = 1000

    # Validation
    ALREADY_SIGNED_UP = 1101
    NOT_SIGNED_UP = 1102
    INVALID_EPOCH = 1103
    INVALID_ATTESTER_ID = 1104
    NONCE_OUT_OF_RANGE = 1105
    DUPLICATE_NULLIFIER = 1106
    INSUFFICIENT_REPUTATION = 1107

    # Consistency
    INCONSISTENT_ROOT = 1201
    STALE_TRANSITION = 1202
    INVALID_EVENT = 1203

    # External
    PROVING_FAILED = 1301
    SYNC_TIMEOUT = 1302
    LEDGER_CALL_FAILED = 1303


class ReputationStateError(Exception):
    """
    Base class for engine errors.

    Args:
        message: Human-readable description
        code: Stable code for programmatic handling
        context: Optional structured fields (kept small)
    """

    default_code: ErrorCode = ErrorCode.GENERIC

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | int | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = int(code if code is not None else self.default_code)
        self.context: dict[str, Any] = dict(context) if context else {}

    def __str__(self) -> str:
        tail = f" context={self.context}" if self.context else ""
        return f"[{self.code}] {self.message}{tail}"

    def to_dict(self) -> dict[str, Any]:
        """Structured view suitable for logs."""
        return {
            "code": self.code,
            "error": type(self).__name__,
            "message": self.message,
            "context": self.context,
        }


# =============================================================================
# Validation
# =============================================================================


class ValidationError(ReputationStateError):
    """Invalid request against local state."""


class AlreadySignedUpError(ValidationError):
    default_code = ErrorCode.ALREADY_SIGNED_UP


class NotSignedUpError(ValidationError):
    default_code = ErrorCode.NOT_SIGNED_UP


class InvalidEpochError(ValidationError):
    default_code = ErrorCode.INVALID_EPOCH


class InvalidAttesterIdError(ValidationError):
    default_code = ErrorCode.INVALID_ATTESTER_ID


class NonceOutOfRangeError(ValidationError):
    default_code = ErrorCode.NONCE_OUT_OF_RANGE


class DuplicateNullifierError(ValidationError):
    default_code = ErrorCode.DUPLICATE_NULLIFIER


class InsufficientReputationError(ValidationError):
    default_code = ErrorCode.INSUFFICIENT_REPUTATION


# =============================================================================
# Consistency
# =============================================================================


class ConsistencyError(ReputationStateError):
    """Local mirror disagrees with the ledger or with itself."""

    default_code = ErrorCode.INVALID_EVENT


class InconsistentRootError(ConsistencyError):
    default_code = ErrorCode.INCONSISTENT_ROOT


class StaleTransitionError(ConsistencyError):
    default_code = ErrorCode.STALE_TRANSITION


# =============================================================================
# External
# =============================================================================


class ExternalError(ReputationStateError):
    """Failure reported by a collaborator."""


class ProvingFailedError(ExternalError):
    default_code = ErrorCode.PROVING_FAILED


class SyncTimeoutError(ExternalError):
    default_code = ErrorCode.SYNC_TIMEOUT


class LedgerCallFailedError(ExternalError):
    default_code = ErrorCode.LEDGER_CALL_FAILED
