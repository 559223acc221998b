"""SQLAlchemy implementation of the persistent MFA secret store."""

from __future__ import annotations

import contextlib
import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..clock import ensure_utc, utc_now
from ..exceptions import MfaStoreError
from ..models import BackupCodeEntry, MfaRecord
from ..ports import ISecretStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Sequence

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

    from ..crypto import SecretCipher

logger = logging.getLogger("secure2send.mfa.sqlalchemy")


class MfaBase(DeclarativeBase):
    """Declarative base for the MFA tables."""


class MfaRecordModel(MfaBase):
    """One row per account that ever configured MFA."""

    __tablename__ = "mfa_records"

    account_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    totp_secret: Mapped[str | None] = mapped_column(String, nullable=True)
    totp_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    totp_setup_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    totp_last_used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    email_mfa_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    email_last_used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )


class BackupCodeModel(MfaBase):
    """Backup code hashes, ordered by position within the account's set."""

    __tablename__ = "mfa_backup_codes"

    account_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("mfa_records.account_id", ondelete="CASCADE"),
        primary_key=True,
    )
    position: Mapped[int] = mapped_column(Integer, primary_key=True)
    code_hash: Mapped[str] = mapped_column(String(128))
    consumed: Mapped[bool] = mapped_column(Boolean, default=False)


async def create_schema(engine: AsyncEngine) -> None:
    """Create the MFA tables if they do not exist."""
    async with engine.begin() as conn:
        await conn.run_sync(MfaBase.metadata.create_all)


class SQLAlchemySecretStore(ISecretStore):
    """Persistent MFA record store using SQLAlchemy.

    Every operation runs in its own transaction. Backup code consumption is
    a conditional ``UPDATE ... WHERE consumed = false`` so that concurrent
    workers can never both consume the same code.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        cipher: SecretCipher | None = None,
    ) -> None:
        """
        Initialize the store.

        Args:
            session_factory: Factory function that creates new AsyncSession instances.
            cipher: Encrypts TOTP secrets at rest. Without one, secrets are
                stored as plain base32 (acceptable only for tests).
        """
        self._session_factory = session_factory
        self._cipher = cipher

    @contextlib.asynccontextmanager
    async def _transaction(self, action: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session, session.begin():
                yield session
        except SQLAlchemyError as exc:
            logger.error("MFA store failed to %s: %s", action, exc)
            raise MfaStoreError(f"Failed to {action}: {exc}") from exc

    @staticmethod
    async def _get_or_create(session: AsyncSession, account_id: str) -> MfaRecordModel:
        row = await session.get(MfaRecordModel, account_id)
        if row is None:
            row = MfaRecordModel(
                account_id=account_id, totp_enabled=False, email_mfa_enabled=False
            )
            session.add(row)
            await session.flush()
        return row

    @staticmethod
    async def _write_codes(
        session: AsyncSession, account_id: str, backup_codes: Sequence[BackupCodeEntry]
    ) -> None:
        await session.execute(
            delete(BackupCodeModel).where(BackupCodeModel.account_id == account_id)
        )
        session.add_all(
            BackupCodeModel(
                account_id=account_id,
                position=position,
                code_hash=entry.code_hash,
                consumed=entry.consumed,
            )
            for position, entry in enumerate(backup_codes)
        )

    def _seal(self, secret: str) -> str:
        return self._cipher.encrypt(secret) if self._cipher else secret

    def _unseal(self, stored: str | None) -> str | None:
        if stored is None or self._cipher is None:
            return stored
        return self._cipher.decrypt(stored)

    async def get(self, account_id: str) -> MfaRecord | None:
        async with self._transaction("load MFA record") as session:
            row = await session.get(MfaRecordModel, account_id)
            if row is None:
                return None
            result = await session.execute(
                select(BackupCodeModel)
                .where(BackupCodeModel.account_id == account_id)
                .order_by(BackupCodeModel.position)
            )
            codes = tuple(
                BackupCodeEntry(code_hash=code.code_hash, consumed=code.consumed)
                for code in result.scalars()
            )
            record = MfaRecord(
                account_id=row.account_id,
                totp_secret=self._unseal(row.totp_secret),
                totp_enabled=row.totp_enabled,
                totp_setup_at=ensure_utc(row.totp_setup_at),
                totp_last_used_at=ensure_utc(row.totp_last_used_at),
                email_mfa_enabled=row.email_mfa_enabled,
                email_last_used_at=ensure_utc(row.email_last_used_at),
                backup_codes=codes,
            )
        record.check_invariants()
        return record

    async def enable_totp(
        self,
        account_id: str,
        secret: str,
        backup_codes: Sequence[BackupCodeEntry],
        enabled_at: datetime,
    ) -> None:
        async with self._transaction("enable TOTP") as session:
            row = await self._get_or_create(session, account_id)
            row.totp_secret = self._seal(secret)
            row.totp_enabled = True
            row.totp_setup_at = enabled_at
            row.totp_last_used_at = None
            await self._write_codes(session, account_id, backup_codes)

    async def disable_totp(self, account_id: str, *, clear_backup_codes: bool) -> None:
        async with self._transaction("disable TOTP") as session:
            await session.execute(
                update(MfaRecordModel)
                .where(MfaRecordModel.account_id == account_id)
                .values(
                    totp_secret=None,
                    totp_enabled=False,
                    totp_setup_at=None,
                    totp_last_used_at=None,
                )
            )
            if clear_backup_codes:
                await session.execute(
                    delete(BackupCodeModel).where(BackupCodeModel.account_id == account_id)
                )

    async def set_email_enabled(self, account_id: str, enabled: bool) -> None:
        async with self._transaction("update e-mail MFA flag") as session:
            row = await self._get_or_create(session, account_id)
            row.email_mfa_enabled = enabled

    async def replace_backup_codes(
        self, account_id: str, backup_codes: Sequence[BackupCodeEntry]
    ) -> None:
        async with self._transaction("replace backup codes") as session:
            await self._get_or_create(session, account_id)
            await self._write_codes(session, account_id, backup_codes)

    async def consume_backup_code(
        self, account_id: str, index: int, code_hash: str
    ) -> bool:
        async with self._transaction("consume backup code") as session:
            result = await session.execute(
                update(BackupCodeModel)
                .where(
                    BackupCodeModel.account_id == account_id,
                    BackupCodeModel.position == index,
                    BackupCodeModel.code_hash == code_hash,
                    BackupCodeModel.consumed.is_(False),
                )
                .values(consumed=True)
            )
            return result.rowcount == 1

    async def record_totp_use(self, account_id: str, used_at: datetime) -> None:
        async with self._transaction("record TOTP use") as session:
            await session.execute(
                update(MfaRecordModel)
                .where(MfaRecordModel.account_id == account_id)
                .values(totp_last_used_at=used_at)
            )

    async def record_email_use(self, account_id: str, used_at: datetime) -> None:
        async with self._transaction("record e-mail OTP use") as session:
            await session.execute(
                update(MfaRecordModel)
                .where(MfaRecordModel.account_id == account_id)
                .values(email_last_used_at=used_at)
            )

    async def reencrypt_secrets(self) -> int:
        """Re-encrypt every stored TOTP secret under the cipher's primary key.

        Run after putting a new key first in the cipher's key list; the old
        key can be dropped once this returns.

        Returns:
            Number of secrets rewritten.
        """
        if self._cipher is None:
            return 0
        async with self._transaction("re-encrypt TOTP secrets") as session:
            result = await session.execute(
                select(MfaRecordModel).where(MfaRecordModel.totp_secret.is_not(None))
            )
            rewritten = 0
            for row in result.scalars():
                if row.totp_secret:
                    row.totp_secret = self._cipher.rotate(row.totp_secret)
                    rewritten += 1
        logger.info("Re-encrypted %d TOTP secrets", rewritten)
        return rewritten


__all__: list[str] = [
    "MfaBase",
    "MfaRecordModel",
    "BackupCodeModel",
    "create_schema",
    "SQLAlchemySecretStore",
]
