"""MFA exceptions.

Exceptions are used *inside* the package (adapters, hooks, locking).
The orchestrator never lets them cross its boundary: they are converted
into :class:`~secure2send_mfa.results.MfaResult` failures.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .results import MfaFailure

# ═══════════════════════════════════════════════════════════════
# ERROR KINDS
# ═══════════════════════════════════════════════════════════════


class MfaErrorKind(str, Enum):
    """Failure taxonomy reported to the API layer."""

    INVALID_CODE = "invalid_code"
    EXPIRED = "expired"
    RATE_LIMITED = "rate_limited"
    INVALID_PASSWORD = "invalid_password"  # noqa: S105
    NO_PENDING_SETUP = "no_pending_setup"
    ALREADY_ENABLED = "already_enabled"
    NOT_ENABLED = "not_enabled"
    DELIVERY_FAILED = "delivery_failed"
    UNAVAILABLE = "unavailable"
    LAST_FACTOR_REQUIRED = "last_factor_required"


# ═══════════════════════════════════════════════════════════════
# BASE MFA ERROR
# ═══════════════════════════════════════════════════════════════


class MfaError(Exception):
    """Root exception for the MFA package."""


# ═══════════════════════════════════════════════════════════════
# DOMAIN ERRORS
# ═══════════════════════════════════════════════════════════════


class MfaDomainError(MfaError):
    """Base class for MFA domain errors."""


class MfaOperationError(MfaDomainError):
    """Raised by ``MfaResult.unwrap()`` when the result is a failure.

    Attributes:
        failure: The failure carried by the result.
    """

    def __init__(self, failure: MfaFailure) -> None:
        super().__init__(failure.message)
        self.failure = failure

    @property
    def kind(self) -> MfaErrorKind:
        return self.failure.kind


class InvalidMfaRecordError(MfaDomainError):
    """Raised when a stored MFA record violates its invariants.

    Example: TOTP flagged enabled without a secret or backup codes.
    """


# ═══════════════════════════════════════════════════════════════
# INFRASTRUCTURE ERRORS
# ═══════════════════════════════════════════════════════════════


class MfaInfrastructureError(MfaError):
    """Base class for storage, transport and locking failures."""


class MfaStoreError(MfaInfrastructureError):
    """Raised by store adapters when the backing store fails.

    Wraps driver errors (Redis, SQLAlchemy) and secret decryption failures.
    """


class MfaDeliveryError(MfaInfrastructureError):
    """Raised by delivery hooks when an e-mail could not be handed over."""


class LockTimeoutError(MfaInfrastructureError):
    """Raised when a per-account lock cannot be acquired in time."""


__all__: list[str] = [
    "MfaErrorKind",
    # Base
    "MfaError",
    # Domain
    "MfaDomainError",
    "MfaOperationError",
    "InvalidMfaRecordError",
    # Infrastructure
    "MfaInfrastructureError",
    "MfaStoreError",
    "MfaDeliveryError",
    "LockTimeoutError",
]
