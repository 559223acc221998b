"""Backup codes for MFA recovery.

Generates single-use recovery codes that users can use when they lose
access to their authenticator app. Codes are shown once, stored only as
bcrypt hashes, and consumed through a compare-and-set on the secret store.
"""

from __future__ import annotations

import logging
import re
import secrets
import string
from dataclasses import dataclass
from typing import TYPE_CHECKING

import bcrypt

from .config import BackupCodeConfig
from .models import BackupCodeEntry

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .ports import ISecretStore

logger = logging.getLogger("secure2send.mfa.backup_codes")

_DISALLOWED = re.compile(r"[^A-Z0-9-]")


@dataclass(frozen=True)
class BackupCodeSet:
    """A freshly generated set: plaintext for the user, entries for storage."""

    codes: tuple[str, ...]
    entries: tuple[BackupCodeEntry, ...]


class BackupCodeManager:
    """Backup code generation, validation and consumption.

    Example:
        ```python
        manager = BackupCodeManager(secret_store)

        code_set = manager.generate_set()
        await secret_store.replace_backup_codes("user-123", code_set.entries)
        print(f"Save these codes: {code_set.codes}")

        # Later, when the user needs to recover
        record = await secret_store.get("user-123")
        index = manager.validate(user_code, record.backup_codes)
        if index is not None and await manager.consume(
            "user-123", index, record.backup_codes[index]
        ):
            ...  # Allow access
        ```
    """

    # Characters used in backup codes (exclude ambiguous: 0, O, 1, I)
    ALPHABET = string.ascii_uppercase.replace("O", "").replace(
        "I", ""
    ) + string.digits.replace("0", "").replace("1", "")

    def __init__(
        self,
        secret_store: ISecretStore,
        config: BackupCodeConfig | None = None,
    ) -> None:
        """Initialize the backup code manager.

        Args:
            secret_store: Store used for compare-and-set consumption.
            config: Count, length and hashing settings.
        """
        self.secret_store = secret_store
        self.config = config or BackupCodeConfig()

    def _generate_code(self) -> str:
        return "".join(
            secrets.choice(self.ALPHABET) for _ in range(self.config.code_length)
        )

    @staticmethod
    def format_code(code: str) -> str:
        """Format code with dashes for readability (e.g. ``ABCD-EFGH``)."""
        return "-".join(code[i : i + 4] for i in range(0, len(code), 4))

    @staticmethod
    def normalize(presented: str) -> str:
        """Canonical hashing form: uppercase, allowed characters only, no dashes."""
        cleaned = _DISALLOWED.sub("", presented.upper())
        return cleaned.replace("-", "")

    def hash_code(self, code: str) -> str:
        """Hash a code (any presentation) with a fresh bcrypt salt."""
        salt = bcrypt.gensalt(rounds=self.config.hash_rounds)
        return bcrypt.hashpw(self.normalize(code).encode(), salt).decode()

    def generate_set(self, count: int | None = None) -> BackupCodeSet:
        """Generate a full set of distinct backup codes.

        Args:
            count: Number of codes (default from config, 10).

        Returns:
            BackupCodeSet with formatted plaintext codes and hashed entries.
        """
        wanted = count or self.config.count
        raw: list[str] = []
        while len(raw) < wanted:
            code = self._generate_code()
            if code not in raw:
                raw.append(code)

        codes = tuple(self.format_code(code) for code in raw)
        entries = tuple(BackupCodeEntry(code_hash=self.hash_code(code)) for code in raw)
        return BackupCodeSet(codes=codes, entries=entries)

    def validate(self, presented: str, entries: Sequence[BackupCodeEntry]) -> int | None:
        """Find the first unconsumed entry matching ``presented``.

        Args:
            presented: Code as typed by the user.
            entries: Stored entries in order.

        Returns:
            Index of the matching entry, or None.
        """
        candidate = self.normalize(presented)
        if len(candidate) != self.config.code_length:
            return None

        encoded = candidate.encode()
        for index, entry in enumerate(entries):
            if entry.consumed:
                continue
            try:
                if bcrypt.checkpw(encoded, entry.code_hash.encode()):
                    return index
            except ValueError:
                # Invalid hash format or malformed hash
                logger.warning("Skipping malformed backup code hash at index %d", index)
        return None

    async def consume(self, account_id: str, index: int, entry: BackupCodeEntry) -> bool:
        """Consume a matched entry exactly once.

        Args:
            account_id: Account identifier.
            index: Index returned by :meth:`validate`.
            entry: The entry at that index when it was validated.

        Returns:
            True if consumed now; False if it was already used.
        """
        consumed = await self.secret_store.consume_backup_code(
            account_id, index, entry.code_hash
        )
        if not consumed:
            logger.info("Backup code %d for account %s already used", index, account_id)
        return consumed


__all__: list[str] = ["BackupCodeSet", "BackupCodeManager"]
