"""MFA ports (protocols).

Defines the storage, delivery and collaborator interfaces the MFA
services depend on. In-memory, Redis and SQLAlchemy adapters live in
:mod:`secure2send_mfa.adapters`; the application provides the rest
(password verification, e-mail delivery, MFA policy).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from .audit import MfaAuditEvent, MfaEventType
    from .models import (
        BackupCodeEntry,
        MfaMethod,
        MfaRecord,
        OtpChallenge,
        OtpPurpose,
        PendingTotpSecret,
        RateLimitDecision,
        RateLimitWindow,
    )


# ═══════════════════════════════════════════════════════════════
# PERSISTENT STATE
# ═══════════════════════════════════════════════════════════════


@runtime_checkable
class ISecretStore(Protocol):
    """Persistent per-account MFA record storage.

    Every method is atomic on its own. Implementations must raise
    :class:`~secure2send_mfa.exceptions.MfaStoreError` for backend failures.
    Secrets should be encrypted at rest.
    """

    async def get(self, account_id: str) -> MfaRecord | None:
        """Load the MFA record for an account.

        Args:
            account_id: Account identifier.

        Returns:
            The record, or None if the account never configured MFA.
        """
        ...

    async def enable_totp(
        self,
        account_id: str,
        secret: str,
        backup_codes: Sequence[BackupCodeEntry],
        enabled_at: datetime,
    ) -> None:
        """Activate TOTP: store secret, flag, setup time and backup codes together.

        Args:
            account_id: Account identifier.
            secret: Base32 TOTP secret.
            backup_codes: Fresh backup code entries (replace any existing set).
            enabled_at: Activation timestamp.
        """
        ...

    async def disable_totp(self, account_id: str, *, clear_backup_codes: bool) -> None:
        """Clear the TOTP secret, flag and timestamps.

        Args:
            account_id: Account identifier.
            clear_backup_codes: Also delete the backup code set.
        """
        ...

    async def set_email_enabled(self, account_id: str, enabled: bool) -> None:
        """Set the e-mail MFA flag.

        Args:
            account_id: Account identifier.
            enabled: New flag value.
        """
        ...

    async def replace_backup_codes(
        self, account_id: str, backup_codes: Sequence[BackupCodeEntry]
    ) -> None:
        """Replace the entire backup code set.

        Args:
            account_id: Account identifier.
            backup_codes: New entries; previous entries stop validating.
        """
        ...

    async def consume_backup_code(
        self, account_id: str, index: int, code_hash: str
    ) -> bool:
        """Mark one backup code consumed (compare-and-set).

        Args:
            account_id: Account identifier.
            index: Position of the entry in the ordered set.
            code_hash: Hash expected at that position.

        Returns:
            True if this call consumed the entry; False if it was already
            consumed or the set was replaced.
        """
        ...

    async def record_totp_use(self, account_id: str, used_at: datetime) -> None:
        """Stamp ``totp_last_used_at``."""
        ...

    async def record_email_use(self, account_id: str, used_at: datetime) -> None:
        """Stamp ``email_last_used_at``."""
        ...


# ═══════════════════════════════════════════════════════════════
# EPHEMERAL STATE
# ═══════════════════════════════════════════════════════════════


@runtime_checkable
class IPendingSecretStore(Protocol):
    """Short-lived storage for unconfirmed TOTP secrets (one per account)."""

    async def put(self, pending: PendingTotpSecret) -> None:
        """Store a pending secret, replacing any previous one for the account."""
        ...

    async def get(self, account_id: str, now: datetime) -> PendingTotpSecret | None:
        """Return the pending secret, or None if absent or expired."""
        ...

    async def discard(self, account_id: str, secret: str) -> bool:
        """Delete the pending secret only if it is still ``secret``.

        Returns:
            True if the entry was deleted.
        """
        ...

    async def purge_expired(self, now: datetime) -> int:
        """Evict expired entries. Returns the number removed."""
        ...


@runtime_checkable
class IOtpChallengeStore(Protocol):
    """Storage for e-mail OTP challenges keyed by ``(account_id, purpose)``."""

    async def put(self, challenge: OtpChallenge) -> None:
        """Create or overwrite the challenge for its ``(account_id, purpose)``."""
        ...

    async def get(self, account_id: str, purpose: OtpPurpose) -> OtpChallenge | None:
        """Return the current challenge (expired ones included)."""
        ...

    async def consume(
        self, account_id: str, purpose: OtpPurpose, challenge_id: str
    ) -> bool:
        """Set ``consumed`` on the challenge if it is still unconsumed.

        Returns:
            True for exactly one caller per challenge.
        """
        ...

    async def record_failure(
        self, account_id: str, purpose: OtpPurpose, challenge_id: str
    ) -> int:
        """Increment the failed-attempt counter.

        Returns:
            The new attempt count, or 0 if the challenge was replaced.
        """
        ...

    async def delete(
        self, account_id: str, purpose: OtpPurpose, challenge_id: str | None = None
    ) -> None:
        """Delete the challenge (only the given issue when ``challenge_id`` is set)."""
        ...

    async def purge_expired(self, now: datetime) -> int:
        """Evict expired challenges. Returns the number removed."""
        ...


@runtime_checkable
class IOtpRateLimitStore(Protocol):
    """Send counters keyed by ``(account_id, purpose)``."""

    async def hit(
        self,
        account_id: str,
        purpose: OtpPurpose,
        *,
        limit: int,
        window_seconds: int,
        now: datetime,
    ) -> RateLimitDecision:
        """Atomically check the window and count one send if allowed.

        An expired window is replaced by a fresh one starting at ``now``.

        Args:
            account_id: Account identifier.
            purpose: OTP purpose.
            limit: Maximum sends per window.
            window_seconds: Window length.
            now: Current time.

        Returns:
            Decision with the count after this call and the window reset time.
        """
        ...

    async def peek(
        self, account_id: str, purpose: OtpPurpose, now: datetime
    ) -> RateLimitWindow | None:
        """Return the live window without counting, or None."""
        ...

    async def purge_expired(self, now: datetime) -> int:
        """Evict expired windows. Returns the number removed."""
        ...


# ═══════════════════════════════════════════════════════════════
# APPLICATION HOOKS
# ═══════════════════════════════════════════════════════════════


@runtime_checkable
class IMfaDeliveryHook(Protocol):
    """E-mail delivery implemented by the application.

    The MFA package does NOT send e-mail itself. The application resolves
    the account's address and uses its own mail service (Mailgun, SES, ...).
    """

    async def send_email_otp(
        self,
        account_id: str,
        code: str,
        purpose: OtpPurpose,
        expires_at: datetime,
    ) -> None:
        """Send an OTP code by e-mail.

        Args:
            account_id: Recipient account.
            code: The OTP code.
            purpose: Setup or login.
            expires_at: When the code stops working.

        Raises:
            MfaDeliveryError: If the message could not be handed over.
        """
        ...

    async def send_security_notification(
        self, account_id: str, method: MfaMethod, action: str
    ) -> None:
        """Notify the account owner that an MFA method changed.

        Args:
            account_id: Account identifier.
            method: Affected method.
            action: ``"enabled"``, ``"disabled"`` or ``"regenerated"``.
        """
        ...


@runtime_checkable
class IPasswordVerifier(Protocol):
    """Password re-confirmation provided by the authentication layer."""

    async def verify_password(self, account_id: str, password: str) -> bool:
        """Return True if ``password`` is the account's current password."""
        ...


@runtime_checkable
class IMfaPolicy(Protocol):
    """Protocol for MFA policy decisions."""

    async def is_mfa_required(self, account_id: str) -> bool:
        """Return True if the account must keep at least one factor enabled."""
        ...


@runtime_checkable
class IMfaAuditStore(Protocol):
    """Storage for MFA audit events."""

    async def record(self, event: MfaAuditEvent) -> None:
        """Record an audit event."""
        ...

    async def get_events(
        self,
        account_id: str,
        *,
        event_types: list[MfaEventType] | None = None,
        limit: int = 100,
    ) -> list[MfaAuditEvent]:
        """Return the most recent events for an account, newest first."""
        ...


__all__: list[str] = [
    "ISecretStore",
    "IPendingSecretStore",
    "IOtpChallengeStore",
    "IOtpRateLimitStore",
    "IMfaDeliveryHook",
    "IPasswordVerifier",
    "IMfaPolicy",
    "IMfaAuditStore",
]
