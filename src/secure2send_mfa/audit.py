"""Audit events for MFA operations.

Every orchestrator outcome (setup, login verification, management) can be
recorded to an :class:`~secure2send_mfa.ports.IMfaAuditStore` for
compliance and security monitoring.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .ports import IMfaAuditStore


class MfaEventType(Enum):
    """Types of MFA audit events.

    Event naming follows the pattern: `mfa.<resource>.<action>`
    """

    # Setup / management events
    TOTP_SETUP_STARTED = "mfa.totp.setup_started"
    TOTP_ENABLED = "mfa.totp.enabled"
    TOTP_DISABLED = "mfa.totp.disabled"
    EMAIL_SETUP_STARTED = "mfa.email.setup_started"
    EMAIL_ENABLED = "mfa.email.enabled"
    EMAIL_DISABLED = "mfa.email.disabled"
    BACKUP_CODES_REGENERATED = "mfa.backup_codes.regenerated"

    # Login events
    OTP_SENT = "mfa.otp.sent"
    VERIFY_SUCCESS = "mfa.verify.success"
    VERIFY_FAILED = "mfa.verify.failed"

    # Refusals
    PASSWORD_FAILED = "mfa.password.failed"  # noqa: S105
    RATE_LIMITED = "mfa.otp.rate_limited"


@dataclass(frozen=True)
class MfaAuditEvent:
    """MFA audit event.

    Attributes:
        event_type: The type of MFA event.
        account_id: The account the event belongs to.
        method: MFA method involved (``totp``, ``email``, ``backup``).
        timestamp: When the event occurred (UTC).
        success: Whether the operation was successful.
        error_code: Failure kind if the operation failed.
        metadata: Additional event-specific data (never codes or secrets).
    """

    event_type: MfaEventType
    account_id: str
    method: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    success: bool = True
    error_code: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.success and not self.error_code:
            object.__setattr__(self, "error_code", "UNKNOWN_ERROR")

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary for serialization."""
        return {
            "event_type": self.event_type.value,
            "account_id": self.account_id,
            "method": self.method,
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
            "error_code": self.error_code,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MfaAuditEvent:
        """Create event from dictionary.

        Raises:
            ValueError: If required fields are missing or invalid.
        """
        event_type_str = data.get("event_type")
        if event_type_str is None:
            raise ValueError("Missing required 'event_type'")
        try:
            event_type = MfaEventType(event_type_str)
        except ValueError as e:
            raise ValueError(f"Invalid event_type: {event_type_str}") from e

        account_id = data.get("account_id")
        if not account_id:
            raise ValueError("Missing required 'account_id'")

        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
            if timestamp.tzinfo is None:
                timestamp = timestamp.replace(tzinfo=timezone.utc)
        elif timestamp is None:
            timestamp = datetime.now(timezone.utc)

        return cls(
            event_type=event_type,
            account_id=account_id,
            method=data.get("method"),
            timestamp=timestamp,
            success=data.get("success", True),
            error_code=data.get("error_code"),
            metadata=data.get("metadata", {}),
        )


class InMemoryMfaAuditStore(IMfaAuditStore):
    """In-memory implementation of IMfaAuditStore.

    Note:
        Events are stored in memory and will be lost on restart.
        Not suitable for production use.
    """

    def __init__(self) -> None:
        self._events: list[MfaAuditEvent] = []
        self._by_account: dict[str, list[int]] = defaultdict(list)

    async def record(self, event: MfaAuditEvent) -> None:
        self._by_account[event.account_id].append(len(self._events))
        self._events.append(event)

    async def get_events(
        self,
        account_id: str,
        *,
        event_types: list[MfaEventType] | None = None,
        limit: int = 100,
    ) -> list[MfaAuditEvent]:
        results: list[MfaAuditEvent] = []
        for idx in reversed(self._by_account.get(account_id, [])):  # Most recent first
            event = self._events[idx]
            if event_types and event.event_type not in event_types:
                continue
            results.append(event)
            if len(results) >= limit:
                break
        return results

    def clear(self) -> None:
        """Clear all stored events."""
        self._events.clear()
        self._by_account.clear()

    def count(self) -> int:
        return len(self._events)


__all__: list[str] = ["MfaEventType", "MfaAuditEvent", "InMemoryMfaAuditStore"]
