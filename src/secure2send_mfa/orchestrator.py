"""MFA orchestrator: setup, login verification and management flows.

This is the only entry point for the API layer. Every public coroutine
returns an :class:`~secure2send_mfa.results.MfaResult`; infrastructure
failures never escape as exceptions.

TOTP setup::

    NONE --begin_totp_setup--> PENDING --confirm_totp_setup--> ENABLED

E-mail setup::

    NONE --begin_email_setup--> CODE_SENT --confirm_email_setup--> ENABLED
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from .audit import MfaAuditEvent, MfaEventType
from .backup_codes import BackupCodeManager
from .clock import utc_now
from .config import MfaConfig
from .exceptions import LockTimeoutError, MfaErrorKind
from .locking import InMemoryLockStrategy, ResourceIdentifier, hold
from .models import (
    MfaMethod,
    MfaRecord,
    OtpPurpose,
    OtpVerification,
    PendingTotpSecret,
)
from .observability import MfaMetrics
from .results import MfaResult
from .totp import TotpEngine

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .clock import Clock
    from .locking import ILockStrategy
    from .otp import EmailOtpService, OtpDispatch
    from .ports import (
        IMfaAuditStore,
        IMfaDeliveryHook,
        IMfaPolicy,
        IPasswordVerifier,
        IPendingSecretStore,
        ISecretStore,
    )
    from .totp import TotpSetup

logger = logging.getLogger("secure2send.mfa.orchestrator")

_LOCK_RESOURCE_TYPE = "mfa_account"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# ═══════════════════════════════════════════════════════════════
# RESULT PAYLOADS
# ═══════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class BackupCodesIssued:
    """Plaintext backup codes, shown to the user exactly once."""

    codes: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"backup_codes": list(self.codes)}


@dataclass(frozen=True)
class LoginVerification:
    """Outcome of a successful second-factor check.

    Attributes:
        method: Method the user verified with.
        used_backup_code: True when a backup code was consumed.
        backup_codes_remaining: Unconsumed backup codes after this login.
    """

    method: MfaMethod
    used_backup_code: bool
    backup_codes_remaining: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method.value,
            "used_backup_code": self.used_backup_code,
            "backup_codes_remaining": self.backup_codes_remaining,
        }


@dataclass(frozen=True)
class TotpStatus:
    enabled: bool
    setup_at: datetime | None
    last_used_at: datetime | None
    backup_codes_remaining: int
    backup_codes_low: bool


@dataclass(frozen=True)
class EmailStatus:
    enabled: bool
    last_used_at: datetime | None


@dataclass(frozen=True)
class MfaStatus:
    """Per-account MFA summary for settings pages."""

    totp: TotpStatus
    email: EmailStatus

    @property
    def any_enabled(self) -> bool:
        return self.totp.enabled or self.email.enabled

    def to_dict(self) -> dict[str, Any]:
        return {
            "totp": {
                "enabled": self.totp.enabled,
                "setup_at": _iso(self.totp.setup_at),
                "last_used_at": _iso(self.totp.last_used_at),
                "backup_codes_remaining": self.totp.backup_codes_remaining,
                "backup_codes_low": self.totp.backup_codes_low,
            },
            "email": {
                "enabled": self.email.enabled,
                "last_used_at": _iso(self.email.last_used_at),
            },
            "any_enabled": self.any_enabled,
        }


# ═══════════════════════════════════════════════════════════════
# ORCHESTRATOR
# ═══════════════════════════════════════════════════════════════


class MfaOrchestrator:
    """Coordinates TOTP, e-mail OTP and backup codes for one application.

    All mutating flows for an account run under a per-account lock. Stores
    are atomic on their own, so single-use guarantees also hold across
    processes that do not share the lock.

    Example:
        ```python
        orchestrator = MfaOrchestrator(
            secret_store=SQLAlchemySecretStore(session_factory, cipher),
            pending_store=RedisPendingSecretStore(redis),
            email_otp=EmailOtpService(
                challenge_store=RedisOtpChallengeStore(redis),
                rate_limit_store=RedisOtpRateLimitStore(redis),
                delivery_hook=MailHook(),
            ),
            password_verifier=AccountPasswords(),
        )

        result = await orchestrator.begin_totp_setup("user-123", "alice@example.com")
        if result.ok:
            render_qr(result.value.qr_data_url)
        ```
    """

    def __init__(
        self,
        *,
        secret_store: ISecretStore,
        pending_store: IPendingSecretStore,
        email_otp: EmailOtpService,
        password_verifier: IPasswordVerifier,
        totp_engine: TotpEngine | None = None,
        backup_codes: BackupCodeManager | None = None,
        delivery_hook: IMfaDeliveryHook | None = None,
        lock_strategy: ILockStrategy | None = None,
        policy: IMfaPolicy | None = None,
        audit_store: IMfaAuditStore | None = None,
        config: MfaConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            secret_store: Persistent MFA records.
            pending_store: Unconfirmed TOTP secrets.
            email_otp: E-mail OTP service.
            password_verifier: Password re-confirmation for management actions.
            totp_engine: TOTP engine (built from ``config.totp`` if omitted).
            backup_codes: Backup code manager (built from ``config.backup_codes``).
            delivery_hook: Security notifications (defaults to the OTP hook).
            lock_strategy: Per-account lock (in-process lock if omitted).
            policy: Decides whether an account must keep a factor enabled.
            audit_store: Optional audit trail.
            config: MFA configuration.
            clock: Time source.
        """
        self.config = config or MfaConfig()
        self.secret_store = secret_store
        self.pending_store = pending_store
        self.email_otp = email_otp
        self.password_verifier = password_verifier
        self.totp_engine = totp_engine or TotpEngine(self.config.totp)
        self.backup_codes = backup_codes or BackupCodeManager(
            secret_store, self.config.backup_codes
        )
        self.delivery_hook = delivery_hook or email_otp.delivery_hook
        self.lock_strategy = lock_strategy or InMemoryLockStrategy()
        self.policy = policy
        self.audit_store = audit_store
        self._clock = clock

    # ── Boundary ─────────────────────────────────────────────────

    async def _run(
        self,
        operation: str,
        account_id: str,
        body: Callable[[], Awaitable[MfaResult[Any]]],
        *,
        method: str = "none",
        locked: bool = True,
    ) -> MfaResult[Any]:
        with MfaMetrics.operation(operation, method=method) as outcome:
            try:
                if locked:
                    resource = ResourceIdentifier(_LOCK_RESOURCE_TYPE, account_id)
                    async with hold(
                        self.lock_strategy,
                        resource,
                        timeout=self.config.lock_timeout_seconds,
                    ):
                        result = await body()
                else:
                    result = await body()
            except LockTimeoutError:
                logger.warning("%s: account %s is busy", operation, account_id)
                result = MfaResult.failure(MfaErrorKind.UNAVAILABLE)
            except Exception:  # noqa: BLE001
                logger.exception("%s failed for account %s", operation, account_id)
                result = MfaResult.failure(MfaErrorKind.UNAVAILABLE)

            outcome.result = result.kind.value if result.kind else "success"
            return result

    async def _load(self, account_id: str) -> MfaRecord:
        record = await self.secret_store.get(account_id)
        return record or MfaRecord.empty(account_id)

    async def _password_ok(self, account_id: str, password: str) -> bool:
        if await self.password_verifier.verify_password(account_id, password):
            return True
        logger.info("Password re-confirmation failed for account %s", account_id)
        await self._audit(
            MfaEventType.PASSWORD_FAILED,
            account_id,
            success=False,
            error_code=MfaErrorKind.INVALID_PASSWORD.value,
        )
        return False

    async def _would_drop_last_factor(self, record: MfaRecord) -> bool:
        if self.policy is None or record.enabled_factor_count > 1:
            return False
        return await self.policy.is_mfa_required(record.account_id)

    async def _notify(self, account_id: str, method: MfaMethod, action: str) -> None:
        try:
            await self.delivery_hook.send_security_notification(account_id, method, action)
        except Exception:  # noqa: BLE001
            logger.warning(
                "Security notification (%s %s) failed for account %s",
                method.value,
                action,
                account_id,
                exc_info=True,
            )

    async def _audit(
        self,
        event_type: MfaEventType,
        account_id: str,
        *,
        method: MfaMethod | None = None,
        success: bool = True,
        error_code: str | None = None,
        **metadata: Any,
    ) -> None:
        if self.audit_store is None:
            return
        event = MfaAuditEvent(
            event_type=event_type,
            account_id=account_id,
            method=method.value if method else None,
            timestamp=self._clock(),
            success=success,
            error_code=error_code,
            metadata=metadata,
        )
        try:
            await self.audit_store.record(event)
        except Exception:  # noqa: BLE001
            logger.warning(
                "Failed to record audit event %s for account %s",
                event_type.value,
                account_id,
                exc_info=True,
            )

    # ── TOTP setup ───────────────────────────────────────────────

    async def begin_totp_setup(
        self, account_id: str, account_label: str | None = None
    ) -> MfaResult[TotpSetup]:
        """Generate a pending TOTP secret and its provisioning payload.

        Args:
            account_id: Account identifier.
            account_label: Label shown in the authenticator app (e-mail).

        Returns:
            TotpSetup, or ``ALREADY_ENABLED``.
        """
        return await self._run(
            "begin_totp_setup",
            account_id,
            functools.partial(self._begin_totp_setup, account_id, account_label),
            method=MfaMethod.TOTP.value,
        )

    async def _begin_totp_setup(
        self, account_id: str, account_label: str | None
    ) -> MfaResult[TotpSetup]:
        record = await self._load(account_id)
        if record.totp_enabled:
            return MfaResult.failure(MfaErrorKind.ALREADY_ENABLED)

        now = self._clock()
        setup = self.totp_engine.generate_secret(account_label or account_id)
        if self.config.totp.render_qr_code:
            setup = setup.with_qr(
                await asyncio.to_thread(self.totp_engine.render_qr_data_url, setup.qr_uri)
            )

        await self.pending_store.put(
            PendingTotpSecret(
                account_id=account_id,
                secret=setup.secret,
                created_at=now,
                expires_at=now + timedelta(seconds=self.config.totp.pending_ttl_seconds),
            )
        )
        logger.info("TOTP setup started for account %s", account_id)
        await self._audit(MfaEventType.TOTP_SETUP_STARTED, account_id, method=MfaMethod.TOTP)
        return MfaResult.success(setup)

    async def confirm_totp_setup(
        self, account_id: str, code: str
    ) -> MfaResult[BackupCodesIssued]:
        """Activate TOTP once the user proves possession of the pending secret.

        Returns:
            The plaintext backup codes, or ``NO_PENDING_SETUP`` /
            ``INVALID_CODE`` / ``ALREADY_ENABLED``.
        """
        return await self._run(
            "confirm_totp_setup",
            account_id,
            functools.partial(self._confirm_totp_setup, account_id, code),
            method=MfaMethod.TOTP.value,
        )

    async def _confirm_totp_setup(
        self, account_id: str, code: str
    ) -> MfaResult[BackupCodesIssued]:
        now = self._clock()
        pending = await self.pending_store.get(account_id, now)
        if pending is None:
            return MfaResult.failure(MfaErrorKind.NO_PENDING_SETUP)

        record = await self._load(account_id)
        if record.totp_enabled:
            return MfaResult.failure(MfaErrorKind.ALREADY_ENABLED)

        if not self.totp_engine.validate(pending.secret, code, now):
            await self._audit(
                MfaEventType.TOTP_ENABLED,
                account_id,
                method=MfaMethod.TOTP,
                success=False,
                error_code=MfaErrorKind.INVALID_CODE.value,
            )
            return MfaResult.failure(MfaErrorKind.INVALID_CODE)

        # Only one worker can discard the secret it validated.
        if not await self.pending_store.discard(account_id, pending.secret):
            return MfaResult.failure(MfaErrorKind.NO_PENDING_SETUP)

        code_set = await asyncio.to_thread(self.backup_codes.generate_set)
        await self.secret_store.enable_totp(account_id, pending.secret, code_set.entries, now)

        logger.info("TOTP enabled for account %s", account_id)
        await self._notify(account_id, MfaMethod.TOTP, "enabled")
        await self._audit(
            MfaEventType.TOTP_ENABLED,
            account_id,
            method=MfaMethod.TOTP,
            backup_codes=len(code_set.codes),
        )
        return MfaResult.success(BackupCodesIssued(codes=code_set.codes))

    # ── E-mail setup ─────────────────────────────────────────────

    async def begin_email_setup(
        self, account_id: str, password: str
    ) -> MfaResult[OtpDispatch]:
        """Re-confirm the password and send a setup code.

        Returns:
            OtpDispatch, or ``INVALID_PASSWORD`` / ``ALREADY_ENABLED`` /
            ``RATE_LIMITED`` / ``DELIVERY_FAILED``.
        """
        return await self._run(
            "begin_email_setup",
            account_id,
            functools.partial(self._begin_email_setup, account_id, password),
            method=MfaMethod.EMAIL.value,
        )

    async def _begin_email_setup(
        self, account_id: str, password: str
    ) -> MfaResult[OtpDispatch]:
        if not await self._password_ok(account_id, password):
            return MfaResult.failure(MfaErrorKind.INVALID_PASSWORD)

        record = await self._load(account_id)
        if record.email_mfa_enabled:
            return MfaResult.failure(MfaErrorKind.ALREADY_ENABLED)

        result = await self.email_otp.send(account_id, OtpPurpose.SETUP)
        await self._audit_send(account_id, OtpPurpose.SETUP, result)
        return result

    async def confirm_email_setup(self, account_id: str, code: str) -> MfaResult[None]:
        """Enable e-mail MFA once the setup code is verified.

        Returns:
            Success, or ``INVALID_CODE`` / ``EXPIRED``.
        """
        return await self._run(
            "confirm_email_setup",
            account_id,
            functools.partial(self._confirm_email_setup, account_id, code),
            method=MfaMethod.EMAIL.value,
        )

    async def _confirm_email_setup(self, account_id: str, code: str) -> MfaResult[None]:
        verification = await self.email_otp.verify(account_id, OtpPurpose.SETUP, code)
        if verification is not OtpVerification.OK:
            kind = (
                MfaErrorKind.EXPIRED
                if verification is OtpVerification.EXPIRED
                else MfaErrorKind.INVALID_CODE
            )
            await self._audit(
                MfaEventType.EMAIL_ENABLED,
                account_id,
                method=MfaMethod.EMAIL,
                success=False,
                error_code=kind.value,
            )
            return MfaResult.failure(kind)

        await self.secret_store.set_email_enabled(account_id, True)
        logger.info("E-mail MFA enabled for account %s", account_id)
        await self._notify(account_id, MfaMethod.EMAIL, "enabled")
        await self._audit(MfaEventType.EMAIL_ENABLED, account_id, method=MfaMethod.EMAIL)
        return MfaResult.success(None)

    # ── Login ────────────────────────────────────────────────────

    async def send_login_otp(self, account_id: str) -> MfaResult[OtpDispatch]:
        """Send a login code to an account with e-mail MFA enabled.

        Returns:
            OtpDispatch, or ``NOT_ENABLED`` / ``RATE_LIMITED`` / ``DELIVERY_FAILED``.
        """
        return await self._run(
            "send_login_otp",
            account_id,
            functools.partial(self._send_login_otp, account_id),
            method=MfaMethod.EMAIL.value,
        )

    async def _send_login_otp(self, account_id: str) -> MfaResult[OtpDispatch]:
        record = await self._load(account_id)
        if not record.email_mfa_enabled:
            return MfaResult.failure(MfaErrorKind.NOT_ENABLED)

        result = await self.email_otp.send(account_id, OtpPurpose.LOGIN)
        await self._audit_send(account_id, OtpPurpose.LOGIN, result)
        return result

    async def _audit_send(
        self, account_id: str, purpose: OtpPurpose, result: MfaResult[OtpDispatch]
    ) -> None:
        if result.ok:
            event_type = (
                MfaEventType.EMAIL_SETUP_STARTED
                if purpose is OtpPurpose.SETUP
                else MfaEventType.OTP_SENT
            )
            await self._audit(event_type, account_id, method=MfaMethod.EMAIL)
            return

        event_type = (
            MfaEventType.RATE_LIMITED
            if result.kind is MfaErrorKind.RATE_LIMITED
            else MfaEventType.OTP_SENT
        )
        await self._audit(
            event_type,
            account_id,
            method=MfaMethod.EMAIL,
            success=False,
            error_code=result.kind.value if result.kind else None,
            purpose=purpose.value,
        )

    async def verify_login(
        self, account_id: str, method: MfaMethod | str, code: str
    ) -> MfaResult[LoginVerification]:
        """Verify the second factor during login.

        Args:
            account_id: Account identifier.
            method: ``totp``, ``email`` or ``backup``.
            code: Code presented by the user.

        Returns:
            LoginVerification, or ``INVALID_CODE`` / ``EXPIRED``. The failure
            never reveals whether the method is enabled.
        """
        try:
            resolved = MfaMethod(method)
        except ValueError:
            logger.info("Unknown MFA method %r for account %s", method, account_id)
            return MfaResult.failure(MfaErrorKind.INVALID_CODE)

        return await self._run(
            "verify_login",
            account_id,
            functools.partial(self._verify_login, account_id, resolved, code),
            method=resolved.value,
        )

    async def _verify_login(
        self, account_id: str, method: MfaMethod, code: str
    ) -> MfaResult[LoginVerification]:
        record = await self._load(account_id)
        now = self._clock()

        if method is MfaMethod.TOTP:
            result = await self._verify_totp(record, code, now)
        elif method is MfaMethod.EMAIL:
            result = await self._verify_email(record, code, now)
        else:
            result = await self._verify_backup(record, code)

        if result.ok:
            await self._audit(MfaEventType.VERIFY_SUCCESS, account_id, method=method)
        else:
            await self._audit(
                MfaEventType.VERIFY_FAILED,
                account_id,
                method=method,
                success=False,
                error_code=result.kind.value if result.kind else None,
            )
        return result

    async def _verify_totp(
        self, record: MfaRecord, code: str, now: datetime
    ) -> MfaResult[LoginVerification]:
        if not record.totp_enabled or not record.totp_secret:
            return MfaResult.failure(MfaErrorKind.INVALID_CODE)
        if not self.totp_engine.validate(record.totp_secret, code, now):
            return MfaResult.failure(MfaErrorKind.INVALID_CODE)

        await self.secret_store.record_totp_use(record.account_id, now)
        return MfaResult.success(
            LoginVerification(
                method=MfaMethod.TOTP,
                used_backup_code=False,
                backup_codes_remaining=record.backup_codes_remaining,
            )
        )

    async def _verify_email(
        self, record: MfaRecord, code: str, now: datetime
    ) -> MfaResult[LoginVerification]:
        if not record.email_mfa_enabled:
            return MfaResult.failure(MfaErrorKind.INVALID_CODE)

        verification = await self.email_otp.verify(record.account_id, OtpPurpose.LOGIN, code)
        if verification is OtpVerification.EXPIRED:
            return MfaResult.failure(MfaErrorKind.EXPIRED)
        if verification is OtpVerification.INVALID:
            return MfaResult.failure(MfaErrorKind.INVALID_CODE)

        await self.secret_store.record_email_use(record.account_id, now)
        return MfaResult.success(
            LoginVerification(
                method=MfaMethod.EMAIL,
                used_backup_code=False,
                backup_codes_remaining=record.backup_codes_remaining,
            )
        )

    async def _verify_backup(
        self, record: MfaRecord, code: str
    ) -> MfaResult[LoginVerification]:
        if not record.any_enabled or not record.backup_codes:
            return MfaResult.failure(MfaErrorKind.INVALID_CODE)

        index = await asyncio.to_thread(self.backup_codes.validate, code, record.backup_codes)
        if index is None:
            return MfaResult.failure(MfaErrorKind.INVALID_CODE)
        if not await self.backup_codes.consume(
            record.account_id, index, record.backup_codes[index]
        ):
            return MfaResult.failure(MfaErrorKind.INVALID_CODE)

        remaining = record.backup_codes_remaining - 1
        logger.info(
            "Backup code used for account %s (%d remaining)", record.account_id, remaining
        )
        return MfaResult.success(
            LoginVerification(
                method=MfaMethod.BACKUP,
                used_backup_code=True,
                backup_codes_remaining=remaining,
            )
        )

    # ── Management ───────────────────────────────────────────────

    async def disable_totp(self, account_id: str, password: str) -> MfaResult[None]:
        """Disable TOTP after password re-confirmation.

        Returns:
            Success, or ``INVALID_PASSWORD`` / ``NOT_ENABLED`` /
            ``LAST_FACTOR_REQUIRED``.
        """
        return await self._run(
            "disable_totp",
            account_id,
            functools.partial(self._disable_totp, account_id, password),
            method=MfaMethod.TOTP.value,
        )

    async def _disable_totp(self, account_id: str, password: str) -> MfaResult[None]:
        if not await self._password_ok(account_id, password):
            return MfaResult.failure(MfaErrorKind.INVALID_PASSWORD)

        record = await self._load(account_id)
        if not record.totp_enabled:
            return MfaResult.failure(MfaErrorKind.NOT_ENABLED)
        if await self._would_drop_last_factor(record):
            return MfaResult.failure(MfaErrorKind.LAST_FACTOR_REQUIRED)

        keep_codes = (
            self.config.retain_backup_codes_with_email and record.email_mfa_enabled
        )
        await self.secret_store.disable_totp(account_id, clear_backup_codes=not keep_codes)
        logger.info("TOTP disabled for account %s", account_id)
        await self._notify(account_id, MfaMethod.TOTP, "disabled")
        await self._audit(
            MfaEventType.TOTP_DISABLED,
            account_id,
            method=MfaMethod.TOTP,
            backup_codes_retained=keep_codes,
        )
        return MfaResult.success(None)

    async def disable_email(self, account_id: str, password: str) -> MfaResult[None]:
        """Disable e-mail MFA after password re-confirmation.

        Returns:
            Success, or ``INVALID_PASSWORD`` / ``NOT_ENABLED`` /
            ``LAST_FACTOR_REQUIRED``.
        """
        return await self._run(
            "disable_email",
            account_id,
            functools.partial(self._disable_email, account_id, password),
            method=MfaMethod.EMAIL.value,
        )

    async def _disable_email(self, account_id: str, password: str) -> MfaResult[None]:
        if not await self._password_ok(account_id, password):
            return MfaResult.failure(MfaErrorKind.INVALID_PASSWORD)

        record = await self._load(account_id)
        if not record.email_mfa_enabled:
            return MfaResult.failure(MfaErrorKind.NOT_ENABLED)
        if await self._would_drop_last_factor(record):
            return MfaResult.failure(MfaErrorKind.LAST_FACTOR_REQUIRED)

        await self.secret_store.set_email_enabled(account_id, False)
        if not record.totp_enabled and record.backup_codes:
            # Codes retained for e-mail MFA have nothing left to back up.
            await self.secret_store.replace_backup_codes(account_id, ())
        logger.info("E-mail MFA disabled for account %s", account_id)
        await self._notify(account_id, MfaMethod.EMAIL, "disabled")
        await self._audit(MfaEventType.EMAIL_DISABLED, account_id, method=MfaMethod.EMAIL)
        return MfaResult.success(None)

    async def regenerate_backup_codes(
        self, account_id: str, password: str
    ) -> MfaResult[BackupCodesIssued]:
        """Replace the whole backup code set.

        Returns:
            The new plaintext codes, or ``INVALID_PASSWORD`` / ``NOT_ENABLED``.
        """
        return await self._run(
            "regenerate_backup_codes",
            account_id,
            functools.partial(self._regenerate_backup_codes, account_id, password),
            method=MfaMethod.BACKUP.value,
        )

    async def _regenerate_backup_codes(
        self, account_id: str, password: str
    ) -> MfaResult[BackupCodesIssued]:
        if not await self._password_ok(account_id, password):
            return MfaResult.failure(MfaErrorKind.INVALID_PASSWORD)

        record = await self._load(account_id)
        if not record.totp_enabled:
            return MfaResult.failure(MfaErrorKind.NOT_ENABLED)

        code_set = await asyncio.to_thread(self.backup_codes.generate_set)
        await self.secret_store.replace_backup_codes(account_id, code_set.entries)
        logger.info("Backup codes regenerated for account %s", account_id)
        await self._notify(account_id, MfaMethod.BACKUP, "regenerated")
        await self._audit(
            MfaEventType.BACKUP_CODES_REGENERATED,
            account_id,
            method=MfaMethod.BACKUP,
            backup_codes=len(code_set.codes),
        )
        return MfaResult.success(BackupCodesIssued(codes=code_set.codes))

    async def get_mfa_status(self, account_id: str) -> MfaResult[MfaStatus]:
        """Summarise the account's MFA configuration (read only)."""
        return await self._run(
            "get_mfa_status",
            account_id,
            functools.partial(self._get_mfa_status, account_id),
            locked=False,
        )

    async def _get_mfa_status(self, account_id: str) -> MfaResult[MfaStatus]:
        record = await self._load(account_id)
        remaining = record.backup_codes_remaining
        return MfaResult.success(
            MfaStatus(
                totp=TotpStatus(
                    enabled=record.totp_enabled,
                    setup_at=record.totp_setup_at,
                    last_used_at=record.totp_last_used_at,
                    backup_codes_remaining=remaining,
                    backup_codes_low=(
                        record.totp_enabled
                        and remaining <= self.config.backup_codes.low_watermark
                    ),
                ),
                email=EmailStatus(
                    enabled=record.email_mfa_enabled,
                    last_used_at=record.email_last_used_at,
                ),
            )
        )

    # ── Housekeeping ─────────────────────────────────────────────

    async def sweep_expired(self) -> int:
        """Evict expired pending secrets, challenges and send windows."""
        removed = await self.pending_store.purge_expired(self._clock())
        removed += await self.email_otp.sweep()
        if removed:
            logger.debug("Swept %d expired MFA entries", removed)
        return removed


__all__: list[str] = [
    "BackupCodesIssued",
    "LoginVerification",
    "TotpStatus",
    "EmailStatus",
    "MfaStatus",
    "MfaOrchestrator",
]
