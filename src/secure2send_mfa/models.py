"""MFA data model.

Records are immutable snapshots; stores hand out new instances on every
read and apply mutations through their own atomic operations.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any

from .exceptions import InvalidMfaRecordError

if TYPE_CHECKING:
    from datetime import datetime


class OtpPurpose(str, Enum):
    """What an e-mail OTP challenge is for."""

    SETUP = "setup"
    LOGIN = "login"


class MfaMethod(str, Enum):
    """Verification method declared by the caller at login."""

    TOTP = "totp"
    EMAIL = "email"
    BACKUP = "backup"


class OtpVerification(str, Enum):
    """Outcome of an e-mail OTP verification."""

    OK = "ok"
    INVALID = "invalid"
    EXPIRED = "expired"


# ═══════════════════════════════════════════════════════════════
# PERSISTED RECORD
# ═══════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class BackupCodeEntry:
    """A stored backup code: salted hash plus consumption flag."""

    code_hash: str
    consumed: bool = False


@dataclass(frozen=True)
class MfaRecord:
    """Per-account MFA state owned by the secret store.

    Attributes:
        account_id: Owning account.
        totp_secret: Base32 TOTP secret, present only while TOTP is enabled.
        totp_enabled: Whether TOTP is active.
        totp_setup_at: When TOTP was activated.
        totp_last_used_at: Last successful TOTP login.
        email_mfa_enabled: Whether e-mail OTP is active.
        email_last_used_at: Last successful e-mail OTP login.
        backup_codes: Ordered backup code entries.
    """

    account_id: str
    totp_secret: str | None = None
    totp_enabled: bool = False
    totp_setup_at: datetime | None = None
    totp_last_used_at: datetime | None = None
    email_mfa_enabled: bool = False
    email_last_used_at: datetime | None = None
    backup_codes: tuple[BackupCodeEntry, ...] = ()

    @classmethod
    def empty(cls, account_id: str) -> MfaRecord:
        return cls(account_id=account_id)

    @property
    def backup_codes_remaining(self) -> int:
        return sum(1 for entry in self.backup_codes if not entry.consumed)

    @property
    def any_enabled(self) -> bool:
        return self.totp_enabled or self.email_mfa_enabled

    @property
    def enabled_factor_count(self) -> int:
        return int(self.totp_enabled) + int(self.email_mfa_enabled)

    def check_invariants(self) -> None:
        """Raise :class:`InvalidMfaRecordError` if the record is inconsistent.

        The SQLAlchemy store runs this on every load.
        """
        if self.totp_enabled and not self.totp_secret:
            raise InvalidMfaRecordError(
                f"TOTP enabled without a secret for account {self.account_id}"
            )
        if self.totp_enabled and not self.backup_codes:
            raise InvalidMfaRecordError(
                f"TOTP enabled without backup codes for account {self.account_id}"
            )

    def with_changes(self, **changes: Any) -> MfaRecord:
        return replace(self, **changes)


# ═══════════════════════════════════════════════════════════════
# EPHEMERAL STATE
# ═══════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class PendingTotpSecret:
    """A generated but not yet confirmed TOTP secret."""

    account_id: str
    secret: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass(frozen=True)
class OtpChallenge:
    """An e-mail OTP challenge keyed by ``(account_id, purpose)``.

    ``challenge_id`` identifies this particular issue of the code so that
    compare-and-set operations never touch a newer replacement.
    Only a salted hash of the code is kept; the plaintext goes to the
    delivery hook and nowhere else.
    """

    challenge_id: str
    account_id: str
    purpose: OtpPurpose
    code_hash: str
    created_at: datetime
    expires_at: datetime
    consumed: bool = False
    attempts: int = 0

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass(frozen=True)
class RateLimitWindow:
    """Send counter for ``(account_id, purpose)``."""

    window_start: datetime
    send_count: int
    reset_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.reset_at


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of an atomic check-and-increment on a rate-limit window."""

    allowed: bool
    send_count: int
    reset_at: datetime
    limit: int = field(default=0, compare=False)

    @property
    def remaining(self) -> int:
        return max(self.limit - self.send_count, 0)


__all__: list[str] = [
    "OtpPurpose",
    "MfaMethod",
    "OtpVerification",
    "BackupCodeEntry",
    "MfaRecord",
    "PendingTotpSecret",
    "OtpChallenge",
    "RateLimitWindow",
    "RateLimitDecision",
]
