"""In-memory store implementations.

⚠️ WARNING: These stores keep state in a local dictionary. They are safe
for concurrent coroutines and threads of ONE process, but will NOT work
with multiple workers. Use the Redis and SQLAlchemy adapters in production.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import timedelta
from typing import TYPE_CHECKING

from ..models import (
    MfaRecord,
    OtpChallenge,
    OtpPurpose,
    PendingTotpSecret,
    RateLimitDecision,
    RateLimitWindow,
)
from ..ports import (
    IOtpChallengeStore,
    IOtpRateLimitStore,
    IPendingSecretStore,
    ISecretStore,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from ..models import BackupCodeEntry


class InMemorySecretStore(ISecretStore):
    """In-memory MFA record store for TESTING ONLY.

    ⚠️ WARNING: Secrets are stored in plain text in memory.
    Do NOT use in production!
    """

    def __init__(self) -> None:
        self._records: dict[str, MfaRecord] = {}
        self._mutex = threading.Lock()

    def _current(self, account_id: str) -> MfaRecord:
        return self._records.get(account_id) or MfaRecord.empty(account_id)

    async def get(self, account_id: str) -> MfaRecord | None:
        return self._records.get(account_id)

    async def enable_totp(
        self,
        account_id: str,
        secret: str,
        backup_codes: Sequence[BackupCodeEntry],
        enabled_at: datetime,
    ) -> None:
        with self._mutex:
            self._records[account_id] = self._current(account_id).with_changes(
                totp_secret=secret,
                totp_enabled=True,
                totp_setup_at=enabled_at,
                totp_last_used_at=None,
                backup_codes=tuple(backup_codes),
            )

    async def disable_totp(self, account_id: str, *, clear_backup_codes: bool) -> None:
        with self._mutex:
            record = self._current(account_id)
            self._records[account_id] = record.with_changes(
                totp_secret=None,
                totp_enabled=False,
                totp_setup_at=None,
                totp_last_used_at=None,
                backup_codes=() if clear_backup_codes else record.backup_codes,
            )

    async def set_email_enabled(self, account_id: str, enabled: bool) -> None:
        with self._mutex:
            self._records[account_id] = self._current(account_id).with_changes(
                email_mfa_enabled=enabled
            )

    async def replace_backup_codes(
        self, account_id: str, backup_codes: Sequence[BackupCodeEntry]
    ) -> None:
        with self._mutex:
            self._records[account_id] = self._current(account_id).with_changes(
                backup_codes=tuple(backup_codes)
            )

    async def consume_backup_code(
        self, account_id: str, index: int, code_hash: str
    ) -> bool:
        with self._mutex:
            record = self._records.get(account_id)
            if record is None or not 0 <= index < len(record.backup_codes):
                return False
            entry = record.backup_codes[index]
            if entry.consumed or entry.code_hash != code_hash:
                return False
            codes = list(record.backup_codes)
            codes[index] = replace(entry, consumed=True)
            self._records[account_id] = record.with_changes(backup_codes=tuple(codes))
            return True

    async def record_totp_use(self, account_id: str, used_at: datetime) -> None:
        with self._mutex:
            self._records[account_id] = self._current(account_id).with_changes(
                totp_last_used_at=used_at
            )

    async def record_email_use(self, account_id: str, used_at: datetime) -> None:
        with self._mutex:
            self._records[account_id] = self._current(account_id).with_changes(
                email_last_used_at=used_at
            )

    def clear_all(self) -> None:
        """Clear all records (test cleanup)."""
        self._records.clear()


class InMemoryPendingSecretStore(IPendingSecretStore):
    """In-memory pending TOTP secret cache for TESTING ONLY."""

    def __init__(self) -> None:
        self._pending: dict[str, PendingTotpSecret] = {}
        self._mutex = threading.Lock()

    async def put(self, pending: PendingTotpSecret) -> None:
        with self._mutex:
            self._pending[pending.account_id] = pending

    async def get(self, account_id: str, now: datetime) -> PendingTotpSecret | None:
        with self._mutex:
            pending = self._pending.get(account_id)
            if pending is None:
                return None
            if pending.is_expired(now):
                del self._pending[account_id]
                return None
            return pending

    async def discard(self, account_id: str, secret: str) -> bool:
        with self._mutex:
            pending = self._pending.get(account_id)
            if pending is None or pending.secret != secret:
                return False
            del self._pending[account_id]
            return True

    async def purge_expired(self, now: datetime) -> int:
        with self._mutex:
            expired = [key for key, value in self._pending.items() if value.is_expired(now)]
            for key in expired:
                del self._pending[key]
            return len(expired)


class InMemoryOtpChallengeStore(IOtpChallengeStore):
    """In-memory OTP challenge store for TESTING ONLY.

    ⚠️ WARNING: Codes are stored in plain text in memory.
    Use the Redis-backed implementation in production.
    """

    def __init__(self) -> None:
        self._challenges: dict[tuple[str, OtpPurpose], OtpChallenge] = {}
        self._mutex = threading.Lock()

    async def put(self, challenge: OtpChallenge) -> None:
        with self._mutex:
            self._challenges[(challenge.account_id, challenge.purpose)] = challenge

    async def get(self, account_id: str, purpose: OtpPurpose) -> OtpChallenge | None:
        return self._challenges.get((account_id, purpose))

    async def consume(
        self, account_id: str, purpose: OtpPurpose, challenge_id: str
    ) -> bool:
        key = (account_id, purpose)
        with self._mutex:
            challenge = self._challenges.get(key)
            if (
                challenge is None
                or challenge.challenge_id != challenge_id
                or challenge.consumed
            ):
                return False
            self._challenges[key] = replace(challenge, consumed=True)
            return True

    async def record_failure(
        self, account_id: str, purpose: OtpPurpose, challenge_id: str
    ) -> int:
        key = (account_id, purpose)
        with self._mutex:
            challenge = self._challenges.get(key)
            if challenge is None or challenge.challenge_id != challenge_id:
                return 0
            updated = replace(challenge, attempts=challenge.attempts + 1)
            self._challenges[key] = updated
            return updated.attempts

    async def delete(
        self, account_id: str, purpose: OtpPurpose, challenge_id: str | None = None
    ) -> None:
        key = (account_id, purpose)
        with self._mutex:
            challenge = self._challenges.get(key)
            if challenge is None:
                return
            if challenge_id is None or challenge.challenge_id == challenge_id:
                del self._challenges[key]

    async def purge_expired(self, now: datetime) -> int:
        with self._mutex:
            expired = [
                key for key, value in self._challenges.items() if value.is_expired(now)
            ]
            for key in expired:
                del self._challenges[key]
            return len(expired)


class InMemoryOtpRateLimitStore(IOtpRateLimitStore):
    """In-memory OTP rate limit store for TESTING ONLY.

    Use the Redis-backed implementation for distributed systems.
    """

    def __init__(self) -> None:
        self._windows: dict[tuple[str, OtpPurpose], RateLimitWindow] = {}
        self._mutex = threading.Lock()

    async def hit(
        self,
        account_id: str,
        purpose: OtpPurpose,
        *,
        limit: int,
        window_seconds: int,
        now: datetime,
    ) -> RateLimitDecision:
        key = (account_id, purpose)
        with self._mutex:
            window = self._windows.get(key)
            if window is None or window.is_expired(now):
                window = RateLimitWindow(
                    window_start=now,
                    send_count=0,
                    reset_at=now + timedelta(seconds=window_seconds),
                )
            if window.send_count >= limit:
                self._windows[key] = window
                return RateLimitDecision(
                    allowed=False,
                    send_count=window.send_count,
                    reset_at=window.reset_at,
                    limit=limit,
                )
            window = replace(window, send_count=window.send_count + 1)
            self._windows[key] = window
            return RateLimitDecision(
                allowed=True,
                send_count=window.send_count,
                reset_at=window.reset_at,
                limit=limit,
            )

    async def peek(
        self, account_id: str, purpose: OtpPurpose, now: datetime
    ) -> RateLimitWindow | None:
        window = self._windows.get((account_id, purpose))
        if window is None or window.is_expired(now):
            return None
        return window

    async def purge_expired(self, now: datetime) -> int:
        with self._mutex:
            expired = [key for key, value in self._windows.items() if value.is_expired(now)]
            for key in expired:
                del self._windows[key]
            return len(expired)


__all__: list[str] = [
    "InMemorySecretStore",
    "InMemoryPendingSecretStore",
    "InMemoryOtpChallengeStore",
    "InMemoryOtpRateLimitStore",
]
