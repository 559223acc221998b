"""Result values returned across the orchestrator boundary."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar, cast

from .exceptions import MfaErrorKind, MfaOperationError

if TYPE_CHECKING:
    from datetime import datetime

T = TypeVar("T")

_DEFAULT_MESSAGES: dict[MfaErrorKind, str] = {
    MfaErrorKind.INVALID_CODE: "Invalid verification code",
    MfaErrorKind.EXPIRED: "Verification code has expired. Please request a new code.",
    MfaErrorKind.RATE_LIMITED: "Too many codes requested. Please try again later.",
    MfaErrorKind.INVALID_PASSWORD: "Invalid password",
    MfaErrorKind.NO_PENDING_SETUP: "No pending setup. Please start again.",
    MfaErrorKind.ALREADY_ENABLED: "This method is already enabled",
    MfaErrorKind.NOT_ENABLED: "This method is not enabled",
    MfaErrorKind.DELIVERY_FAILED: "Failed to send verification code. Please try again.",
    MfaErrorKind.UNAVAILABLE: "MFA service is temporarily unavailable",
    MfaErrorKind.LAST_FACTOR_REQUIRED: (
        "At least one MFA method must remain enabled for this account"
    ),
}


@dataclass(frozen=True)
class MfaFailure:
    """A failure kind plus the data the caller needs to render it.

    Attributes:
        kind: Failure taxonomy bucket.
        message: Human-readable, factor-neutral message.
        reset_at: Earliest time a new send is accepted (``RATE_LIMITED`` only).
    """

    kind: MfaErrorKind
    message: str
    reset_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.kind.value,
            "message": self.message,
            "reset_at": self.reset_at.isoformat() if self.reset_at else None,
        }


@dataclass(frozen=True)
class MfaResult(Generic[T]):
    """Either a value or an :class:`MfaFailure`.

    Usage::

        result = MfaResult.success(payload)
        result = MfaResult.failure(MfaErrorKind.INVALID_CODE)
        if not result:
            return json_error(result.error.to_dict())
    """

    value: T | None = None
    error: MfaFailure | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> MfaErrorKind | None:
        return self.error.kind if self.error else None

    # ── Factory methods ──────────────────────────────────────────

    @classmethod
    def success(cls, value: T | None = None) -> MfaResult[T]:
        return cls(value=value)

    @classmethod
    def failure(
        cls,
        kind: MfaErrorKind,
        message: str | None = None,
        *,
        reset_at: datetime | None = None,
    ) -> MfaResult[T]:
        return cls(
            error=MfaFailure(
                kind=kind,
                message=message or _DEFAULT_MESSAGES[kind],
                reset_at=reset_at,
            )
        )

    @classmethod
    def from_failure(cls, failure: MfaFailure) -> MfaResult[T]:
        return cls(error=failure)

    # ── Access ───────────────────────────────────────────────────

    def unwrap(self) -> T:
        """Return the value or raise :class:`MfaOperationError`."""
        if self.error is not None:
            raise MfaOperationError(self.error)
        return cast("T", self.value)

    def to_dict(self) -> dict[str, Any]:
        if self.error is not None:
            return {"success": False, **self.error.to_dict()}
        value = self.value
        if hasattr(value, "to_dict"):
            value = value.to_dict()
        return {"success": True, "data": value}

    def __bool__(self) -> bool:
        return self.ok


__all__: list[str] = ["MfaFailure", "MfaResult"]
