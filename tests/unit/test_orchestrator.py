"""Tests for the MFA orchestrator flows."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from secure2send_mfa import (
    EmailOtpService,
    InMemoryMfaAuditStore,
    MfaConfig,
    MfaErrorKind,
    MfaEventType,
    MfaMethod,
    MfaOrchestrator,
    MfaStoreError,
    OtpConfig,
    OtpPurpose,
    ResourceIdentifier,
    TotpConfig,
    TotpEngine,
)
from secure2send_mfa.adapters import (
    InMemoryOtpChallengeStore,
    InMemoryOtpRateLimitStore,
    InMemoryPendingSecretStore,
    InMemorySecretStore,
)

from ..fakes import (
    PASSWORD,
    START,
    FakeClock,
    FakePasswordVerifier,
    RecordingDeliveryHook,
    StaticPolicy,
)


def wrong_code(code: str) -> str:
    return "000000" if code != "000000" else "111111"


async def enable_totp(
    orchestrator: MfaOrchestrator, clock: FakeClock
) -> tuple[str, tuple[str, ...]]:
    setup = (await orchestrator.begin_totp_setup("user-1", "alice@example.com")).unwrap()
    code = orchestrator.totp_engine.compute_code(setup.secret, clock())
    issued = (await orchestrator.confirm_totp_setup("user-1", code)).unwrap()
    return setup.secret, issued.codes


async def enable_email(
    orchestrator: MfaOrchestrator, delivery_hook: RecordingDeliveryHook
) -> None:
    (await orchestrator.begin_email_setup("user-1", PASSWORD)).unwrap()
    (await orchestrator.confirm_email_setup("user-1", delivery_hook.last_code())).unwrap()


@pytest.mark.asyncio
class TestTotpSetup:
    async def test_begin_returns_provisioning_payload(
        self, orchestrator: MfaOrchestrator, pending_store: InMemoryPendingSecretStore
    ) -> None:
        result = await orchestrator.begin_totp_setup("user-1", "alice@example.com")

        assert result.ok
        assert result.value.qr_uri.startswith("otpauth://totp/")
        pending = await pending_store.get("user-1", START)
        assert pending.secret == result.value.secret
        assert pending.expires_at == START + timedelta(minutes=10)

    async def test_begin_renders_qr_when_configured(
        self,
        secret_store: InMemorySecretStore,
        pending_store: InMemoryPendingSecretStore,
        email_otp: EmailOtpService,
        clock: FakeClock,
    ) -> None:
        orchestrator = MfaOrchestrator(
            secret_store=secret_store,
            pending_store=pending_store,
            email_otp=email_otp,
            password_verifier=FakePasswordVerifier(),
            config=MfaConfig(totp=TotpConfig(render_qr_code=True)),
            clock=clock,
        )

        result = await orchestrator.begin_totp_setup("user-1")

        assert result.value.qr_data_url.startswith("data:image/svg+xml;base64,")

    async def test_new_setup_invalidates_previous_secret(
        self, orchestrator: MfaOrchestrator, clock: FakeClock
    ) -> None:
        first = (await orchestrator.begin_totp_setup("user-1")).unwrap()
        second = (await orchestrator.begin_totp_setup("user-1")).unwrap()
        stale_code = orchestrator.totp_engine.compute_code(first.secret, clock())
        if stale_code == orchestrator.totp_engine.compute_code(second.secret, clock()):
            pytest.skip("codes collided by chance")

        result = await orchestrator.confirm_totp_setup("user-1", stale_code)

        assert result.kind is MfaErrorKind.INVALID_CODE

    async def test_confirm_enables_totp_with_ten_backup_codes(
        self,
        orchestrator: MfaOrchestrator,
        secret_store: InMemorySecretStore,
        pending_store: InMemoryPendingSecretStore,
        delivery_hook: RecordingDeliveryHook,
        clock: FakeClock,
    ) -> None:
        secret, codes = await enable_totp(orchestrator, clock)

        record = await secret_store.get("user-1")
        assert record.totp_enabled
        assert record.totp_secret == secret
        assert record.totp_setup_at == START
        assert len(codes) == 10
        assert record.backup_codes_remaining == 10
        assert await pending_store.get("user-1", clock()) is None
        assert delivery_hook.notifications == [("user-1", MfaMethod.TOTP, "enabled")]

    async def test_confirm_with_foreign_secret_fails(
        self,
        orchestrator: MfaOrchestrator,
        secret_store: InMemorySecretStore,
        pending_store: InMemoryPendingSecretStore,
        clock: FakeClock,
    ) -> None:
        setup = (await orchestrator.begin_totp_setup("user-1")).unwrap()
        foreign = TotpEngine().generate_secret("mallory").secret
        code = orchestrator.totp_engine.compute_code(foreign, clock())
        if orchestrator.totp_engine.validate(setup.secret, code, clock()):
            pytest.skip("codes collided by chance")

        result = await orchestrator.confirm_totp_setup("user-1", code)

        assert result.kind is MfaErrorKind.INVALID_CODE
        assert await secret_store.get("user-1") is None
        assert await pending_store.get("user-1", clock()) is not None

    async def test_failed_confirm_can_be_retried(
        self, orchestrator: MfaOrchestrator, clock: FakeClock
    ) -> None:
        setup = (await orchestrator.begin_totp_setup("user-1")).unwrap()
        code = orchestrator.totp_engine.compute_code(setup.secret, clock())

        assert not (await orchestrator.confirm_totp_setup("user-1", "abc")).ok
        assert (await orchestrator.confirm_totp_setup("user-1", code)).ok

    async def test_confirm_without_pending(self, orchestrator: MfaOrchestrator) -> None:
        result = await orchestrator.confirm_totp_setup("user-1", "123456")
        assert result.kind is MfaErrorKind.NO_PENDING_SETUP

    async def test_confirm_after_pending_expired(
        self, orchestrator: MfaOrchestrator, clock: FakeClock
    ) -> None:
        setup = (await orchestrator.begin_totp_setup("user-1")).unwrap()
        clock.advance(10 * 60 + 1)
        code = orchestrator.totp_engine.compute_code(setup.secret, clock())

        result = await orchestrator.confirm_totp_setup("user-1", code)

        assert result.kind is MfaErrorKind.NO_PENDING_SETUP

    async def test_begin_when_already_enabled(
        self, orchestrator: MfaOrchestrator, clock: FakeClock
    ) -> None:
        await enable_totp(orchestrator, clock)

        result = await orchestrator.begin_totp_setup("user-1")
        assert result.kind is MfaErrorKind.ALREADY_ENABLED


@pytest.mark.asyncio
class TestEmailSetup:
    async def test_wrong_password_sends_nothing(
        self, orchestrator: MfaOrchestrator, delivery_hook: RecordingDeliveryHook
    ) -> None:
        result = await orchestrator.begin_email_setup("user-1", "hunter2")

        assert result.kind is MfaErrorKind.INVALID_PASSWORD
        assert delivery_hook.emails_sent == []

    async def test_setup_flow(
        self,
        orchestrator: MfaOrchestrator,
        secret_store: InMemorySecretStore,
        delivery_hook: RecordingDeliveryHook,
    ) -> None:
        dispatch = await orchestrator.begin_email_setup("user-1", PASSWORD)
        assert dispatch.ok
        assert delivery_hook.emails_sent[-1][2] is OtpPurpose.SETUP

        result = await orchestrator.confirm_email_setup("user-1", delivery_hook.last_code())

        assert result.ok
        assert (await secret_store.get("user-1")).email_mfa_enabled
        assert ("user-1", MfaMethod.EMAIL, "enabled") in delivery_hook.notifications

    async def test_wrong_code_leaves_state_untouched(
        self,
        orchestrator: MfaOrchestrator,
        secret_store: InMemorySecretStore,
        delivery_hook: RecordingDeliveryHook,
    ) -> None:
        await orchestrator.begin_email_setup("user-1", PASSWORD)

        result = await orchestrator.confirm_email_setup(
            "user-1", wrong_code(delivery_hook.last_code())
        )

        assert result.kind is MfaErrorKind.INVALID_CODE
        assert await secret_store.get("user-1") is None

    async def test_expired_code(
        self,
        orchestrator: MfaOrchestrator,
        delivery_hook: RecordingDeliveryHook,
        clock: FakeClock,
    ) -> None:
        await orchestrator.begin_email_setup("user-1", PASSWORD)
        clock.advance(301)

        result = await orchestrator.confirm_email_setup("user-1", delivery_hook.last_code())

        assert result.kind is MfaErrorKind.EXPIRED

    async def test_already_enabled(
        self, orchestrator: MfaOrchestrator, delivery_hook: RecordingDeliveryHook
    ) -> None:
        await enable_email(orchestrator, delivery_hook)

        result = await orchestrator.begin_email_setup("user-1", PASSWORD)
        assert result.kind is MfaErrorKind.ALREADY_ENABLED

    async def test_delivery_failure(
        self, orchestrator: MfaOrchestrator, delivery_hook: RecordingDeliveryHook
    ) -> None:
        delivery_hook.fail_delivery = True

        result = await orchestrator.begin_email_setup("user-1", PASSWORD)
        assert result.kind is MfaErrorKind.DELIVERY_FAILED

    async def test_setup_code_does_not_log_in(
        self, orchestrator: MfaOrchestrator, delivery_hook: RecordingDeliveryHook
    ) -> None:
        await enable_email(orchestrator, delivery_hook)
        await orchestrator.begin_email_setup("user-2", PASSWORD)
        setup_code = delivery_hook.last_code()

        result = await orchestrator.verify_login("user-1", "email", setup_code)

        assert not result.ok


@pytest.mark.asyncio
class TestLoginVerification:
    async def test_totp_login_stamps_last_use(
        self,
        orchestrator: MfaOrchestrator,
        secret_store: InMemorySecretStore,
        clock: FakeClock,
    ) -> None:
        secret, _ = await enable_totp(orchestrator, clock)
        clock.advance(120)

        result = await orchestrator.verify_login(
            "user-1", MfaMethod.TOTP, orchestrator.totp_engine.compute_code(secret, clock())
        )

        assert result.ok
        assert result.value.method is MfaMethod.TOTP
        assert result.value.used_backup_code is False
        assert (await secret_store.get("user-1")).totp_last_used_at == clock()

    async def test_email_login(
        self,
        orchestrator: MfaOrchestrator,
        secret_store: InMemorySecretStore,
        delivery_hook: RecordingDeliveryHook,
        clock: FakeClock,
    ) -> None:
        await enable_email(orchestrator, delivery_hook)
        assert (await orchestrator.send_login_otp("user-1")).ok
        assert delivery_hook.emails_sent[-1][2] is OtpPurpose.LOGIN

        result = await orchestrator.verify_login("user-1", "email", delivery_hook.last_code())

        assert result.ok
        assert (await secret_store.get("user-1")).email_last_used_at == clock()

    async def test_email_login_expired(
        self,
        orchestrator: MfaOrchestrator,
        delivery_hook: RecordingDeliveryHook,
        clock: FakeClock,
    ) -> None:
        await enable_email(orchestrator, delivery_hook)
        await orchestrator.send_login_otp("user-1")
        clock.advance(301)

        result = await orchestrator.verify_login("user-1", "email", delivery_hook.last_code())

        assert result.kind is MfaErrorKind.EXPIRED

    async def test_send_login_otp_requires_email_mfa(self, orchestrator: MfaOrchestrator) -> None:
        result = await orchestrator.send_login_otp("user-1")
        assert result.kind is MfaErrorKind.NOT_ENABLED

    async def test_backup_login_reports_usage(
        self, orchestrator: MfaOrchestrator, clock: FakeClock
    ) -> None:
        _, codes = await enable_totp(orchestrator, clock)

        result = await orchestrator.verify_login("user-1", "backup", codes[4].lower())

        assert result.ok
        assert result.value.used_backup_code is True
        assert result.value.backup_codes_remaining == 9

    @pytest.mark.parametrize("method", ["totp", "email", "backup"])
    async def test_disabled_method_is_generic_invalid_code(
        self, orchestrator: MfaOrchestrator, method: str
    ) -> None:
        result = await orchestrator.verify_login("user-1", method, "123456")

        assert result.kind is MfaErrorKind.INVALID_CODE

    async def test_unknown_method(self, orchestrator: MfaOrchestrator) -> None:
        result = await orchestrator.verify_login("user-1", "sms", "123456")
        assert result.kind is MfaErrorKind.INVALID_CODE

    async def test_failure_message_is_factor_neutral(
        self, orchestrator: MfaOrchestrator, clock: FakeClock
    ) -> None:
        _, codes = await enable_totp(orchestrator, clock)

        totp_failure = await orchestrator.verify_login("user-1", "totp", "abcdef")
        backup_failure = await orchestrator.verify_login("user-1", "backup", "ZZZZ-ZZZZ")
        email_failure = await orchestrator.verify_login("user-1", "email", "123456")

        messages = {f.error.message for f in (totp_failure, backup_failure, email_failure)}
        assert len(messages) == 1

    async def test_concurrent_backup_use_succeeds_once(
        self, orchestrator: MfaOrchestrator, clock: FakeClock
    ) -> None:
        _, codes = await enable_totp(orchestrator, clock)

        results = await asyncio.gather(
            orchestrator.verify_login("user-1", "backup", codes[0]),
            orchestrator.verify_login("user-1", "backup", codes[0]),
        )

        assert sorted(r.ok for r in results) == [False, True]
        assert [r.kind for r in results].count(MfaErrorKind.INVALID_CODE) == 1

    async def test_concurrent_backup_use_without_shared_lock(
        self, orchestrator: MfaOrchestrator, clock: FakeClock, mfa_config: MfaConfig
    ) -> None:
        """Two workers with separate locks still consume a code only once."""
        _, codes = await enable_totp(orchestrator, clock)
        other_worker = MfaOrchestrator(
            secret_store=orchestrator.secret_store,
            pending_store=orchestrator.pending_store,
            email_otp=orchestrator.email_otp,
            password_verifier=FakePasswordVerifier(),
            config=mfa_config,
            clock=clock,
        )

        results = await asyncio.gather(
            orchestrator.verify_login("user-1", "backup", codes[1]),
            other_worker.verify_login("user-1", "backup", codes[1]),
        )

        assert [r.ok for r in results].count(True) == 1

    async def test_concurrent_totp_confirm_without_shared_lock(
        self, orchestrator: MfaOrchestrator, clock: FakeClock, mfa_config: MfaConfig
    ) -> None:
        """Two workers confirming the same setup issue exactly one backup set."""
        setup = (await orchestrator.begin_totp_setup("user-1")).unwrap()
        code = orchestrator.totp_engine.compute_code(setup.secret, clock())
        other_worker = MfaOrchestrator(
            secret_store=orchestrator.secret_store,
            pending_store=orchestrator.pending_store,
            email_otp=orchestrator.email_otp,
            password_verifier=FakePasswordVerifier(),
            config=mfa_config,
            clock=clock,
        )

        results = await asyncio.gather(
            orchestrator.confirm_totp_setup("user-1", code),
            other_worker.confirm_totp_setup("user-1", code),
        )

        winners = [r for r in results if r.ok]
        assert len(winners) == 1
        loser = next(r for r in results if not r.ok)
        assert loser.kind in (MfaErrorKind.NO_PENDING_SETUP, MfaErrorKind.ALREADY_ENABLED)
        issued = winners[0].value.codes
        assert (await orchestrator.verify_login("user-1", "backup", issued[0])).ok


@pytest.mark.asyncio
class TestManagement:
    async def test_disable_totp_requires_password(
        self, orchestrator: MfaOrchestrator, clock: FakeClock
    ) -> None:
        await enable_totp(orchestrator, clock)

        result = await orchestrator.disable_totp("user-1", "wrong")

        assert result.kind is MfaErrorKind.INVALID_PASSWORD

    async def test_disable_totp_clears_secret_and_codes(
        self,
        orchestrator: MfaOrchestrator,
        secret_store: InMemorySecretStore,
        delivery_hook: RecordingDeliveryHook,
        clock: FakeClock,
    ) -> None:
        _, codes = await enable_totp(orchestrator, clock)

        assert (await orchestrator.disable_totp("user-1", PASSWORD)).ok

        record = await secret_store.get("user-1")
        assert not record.totp_enabled
        assert record.totp_secret is None
        assert record.backup_codes == ()
        assert ("user-1", MfaMethod.TOTP, "disabled") in delivery_hook.notifications
        assert not (await orchestrator.verify_login("user-1", "backup", codes[0])).ok

    async def test_disable_totp_when_not_enabled(self, orchestrator: MfaOrchestrator) -> None:
        result = await orchestrator.disable_totp("user-1", PASSWORD)
        assert result.kind is MfaErrorKind.NOT_ENABLED

    async def test_backup_codes_retained_with_email_when_configured(
        self,
        secret_store: InMemorySecretStore,
        pending_store: InMemoryPendingSecretStore,
        email_otp: EmailOtpService,
        delivery_hook: RecordingDeliveryHook,
        mfa_config: MfaConfig,
        clock: FakeClock,
    ) -> None:
        orchestrator = MfaOrchestrator(
            secret_store=secret_store,
            pending_store=pending_store,
            email_otp=email_otp,
            password_verifier=FakePasswordVerifier(),
            config=MfaConfig(
                totp=mfa_config.totp,
                backup_codes=mfa_config.backup_codes,
                retain_backup_codes_with_email=True,
            ),
            clock=clock,
        )
        _, codes = await enable_totp(orchestrator, clock)
        await enable_email(orchestrator, delivery_hook)

        await orchestrator.disable_totp("user-1", PASSWORD)

        assert (await secret_store.get("user-1")).backup_codes_remaining == 10
        assert (await orchestrator.verify_login("user-1", "backup", codes[0])).ok

    async def test_disable_email(
        self,
        orchestrator: MfaOrchestrator,
        secret_store: InMemorySecretStore,
        delivery_hook: RecordingDeliveryHook,
    ) -> None:
        await enable_email(orchestrator, delivery_hook)

        assert (await orchestrator.disable_email("user-1", "nope")).kind is (
            MfaErrorKind.INVALID_PASSWORD
        )
        assert (await orchestrator.disable_email("user-1", PASSWORD)).ok
        assert not (await secret_store.get("user-1")).email_mfa_enabled
        assert (await orchestrator.disable_email("user-1", PASSWORD)).kind is (
            MfaErrorKind.NOT_ENABLED
        )

    async def test_regenerate_replaces_whole_set(
        self, orchestrator: MfaOrchestrator, clock: FakeClock
    ) -> None:
        _, old_codes = await enable_totp(orchestrator, clock)
        await orchestrator.verify_login("user-1", "backup", old_codes[0])

        result = await orchestrator.regenerate_backup_codes("user-1", PASSWORD)

        assert result.ok
        assert len(result.value.codes) == 10
        assert not (await orchestrator.verify_login("user-1", "backup", old_codes[1])).ok
        status = (await orchestrator.get_mfa_status("user-1")).unwrap()
        assert status.totp.backup_codes_remaining == 10

    async def test_regenerate_requires_totp(
        self, orchestrator: MfaOrchestrator, delivery_hook: RecordingDeliveryHook
    ) -> None:
        await enable_email(orchestrator, delivery_hook)

        result = await orchestrator.regenerate_backup_codes("user-1", PASSWORD)

        assert result.kind is MfaErrorKind.NOT_ENABLED

    async def test_regenerate_requires_password(
        self, orchestrator: MfaOrchestrator, clock: FakeClock
    ) -> None:
        await enable_totp(orchestrator, clock)

        result = await orchestrator.regenerate_backup_codes("user-1", "wrong")

        assert result.kind is MfaErrorKind.INVALID_PASSWORD

    async def test_policy_keeps_last_factor(
        self,
        secret_store: InMemorySecretStore,
        pending_store: InMemoryPendingSecretStore,
        email_otp: EmailOtpService,
        delivery_hook: RecordingDeliveryHook,
        mfa_config: MfaConfig,
        clock: FakeClock,
    ) -> None:
        orchestrator = MfaOrchestrator(
            secret_store=secret_store,
            pending_store=pending_store,
            email_otp=email_otp,
            password_verifier=FakePasswordVerifier(),
            policy=StaticPolicy(required=True),
            config=mfa_config,
            clock=clock,
        )
        await enable_totp(orchestrator, clock)
        await enable_email(orchestrator, delivery_hook)

        assert (await orchestrator.disable_email("user-1", PASSWORD)).ok
        result = await orchestrator.disable_totp("user-1", PASSWORD)

        assert result.kind is MfaErrorKind.LAST_FACTOR_REQUIRED
        assert (await secret_store.get("user-1")).totp_enabled

    async def test_status(
        self,
        orchestrator: MfaOrchestrator,
        delivery_hook: RecordingDeliveryHook,
        clock: FakeClock,
    ) -> None:
        empty = (await orchestrator.get_mfa_status("user-1")).unwrap()
        assert not empty.any_enabled
        assert empty.totp.backup_codes_low is False

        _, codes = await enable_totp(orchestrator, clock)
        await enable_email(orchestrator, delivery_hook)
        for code in codes[:7]:
            await orchestrator.verify_login("user-1", "backup", code)

        status = (await orchestrator.get_mfa_status("user-1")).unwrap()
        payload = status.to_dict()

        assert status.any_enabled
        assert status.totp.enabled and status.email.enabled
        assert status.totp.setup_at == START
        assert status.totp.backup_codes_remaining == 3
        assert status.totp.backup_codes_low is True
        assert payload["totp"]["setup_at"] == START.isoformat()
        assert payload["any_enabled"] is True

    async def test_sweep_expired(
        self, orchestrator: MfaOrchestrator, clock: FakeClock
    ) -> None:
        await orchestrator.begin_totp_setup("user-1")
        clock.advance(11 * 60)

        assert await orchestrator.sweep_expired() == 1


@pytest.mark.asyncio
class TestFailureHandling:
    async def test_store_failure_becomes_unavailable(
        self,
        pending_store: InMemoryPendingSecretStore,
        email_otp: EmailOtpService,
        clock: FakeClock,
    ) -> None:
        broken_store = AsyncMock(spec=InMemorySecretStore)
        broken_store.get.side_effect = MfaStoreError("database is down")
        orchestrator = MfaOrchestrator(
            secret_store=broken_store,
            pending_store=pending_store,
            email_otp=email_otp,
            password_verifier=FakePasswordVerifier(),
            clock=clock,
        )

        result = await orchestrator.verify_login("user-1", "totp", "123456")

        assert result.kind is MfaErrorKind.UNAVAILABLE
        assert "database" not in result.error.message

    async def test_lock_timeout_becomes_unavailable(
        self, orchestrator: MfaOrchestrator, mfa_config: MfaConfig
    ) -> None:
        orchestrator.config = MfaConfig(
            totp=mfa_config.totp,
            backup_codes=mfa_config.backup_codes,
            lock_timeout_seconds=0.05,
        )
        token = await orchestrator.lock_strategy.acquire(
            ResourceIdentifier("mfa_account", "user-1")
        )
        try:
            result = await orchestrator.begin_totp_setup("user-1")
        finally:
            await orchestrator.lock_strategy.release(
                ResourceIdentifier("mfa_account", "user-1"), token
            )

        assert result.kind is MfaErrorKind.UNAVAILABLE

    async def test_notification_failure_does_not_change_result(
        self,
        orchestrator: MfaOrchestrator,
        delivery_hook: RecordingDeliveryHook,
        clock: FakeClock,
    ) -> None:
        delivery_hook.fail_notifications = True

        _, codes = await enable_totp(orchestrator, clock)

        assert len(codes) == 10

    async def test_audit_failure_does_not_change_result(
        self,
        orchestrator: MfaOrchestrator,
        clock: FakeClock,
    ) -> None:
        orchestrator.audit_store = AsyncMock(spec=InMemoryMfaAuditStore)
        orchestrator.audit_store.record.side_effect = RuntimeError("audit sink down")

        _, codes = await enable_totp(orchestrator, clock)

        assert len(codes) == 10


@pytest.mark.asyncio
class TestAuditTrail:
    async def test_events_recorded_without_secrets(
        self,
        orchestrator: MfaOrchestrator,
        audit_store: InMemoryMfaAuditStore,
        clock: FakeClock,
    ) -> None:
        secret, codes = await enable_totp(orchestrator, clock)
        await orchestrator.verify_login("user-1", "backup", codes[0])
        await orchestrator.verify_login("user-1", "totp", "abcdef")

        events = await audit_store.get_events("user-1")
        types = [event.event_type for event in events]

        assert types == [
            MfaEventType.VERIFY_FAILED,
            MfaEventType.VERIFY_SUCCESS,
            MfaEventType.TOTP_ENABLED,
            MfaEventType.TOTP_SETUP_STARTED,
        ]
        assert events[0].error_code == MfaErrorKind.INVALID_CODE.value
        serialized = str([event.to_dict() for event in events])
        assert secret not in serialized
        assert codes[0] not in serialized

    async def test_password_failure_audited(
        self, orchestrator: MfaOrchestrator, audit_store: InMemoryMfaAuditStore
    ) -> None:
        await orchestrator.disable_email("user-1", "wrong")

        events = await audit_store.get_events(
            "user-1", event_types=[MfaEventType.PASSWORD_FAILED]
        )
        assert len(events) == 1
        assert not events[0].success


@pytest.mark.asyncio
class TestEndToEnd:
    async def test_totp_then_backup_codes(
        self, orchestrator: MfaOrchestrator, clock: FakeClock
    ) -> None:
        setup = await orchestrator.begin_totp_setup("user-1", "alice@example.com")
        secret = setup.value.secret
        code = orchestrator.totp_engine.compute_code(secret, clock())

        confirmed = await orchestrator.confirm_totp_setup("user-1", code)
        assert confirmed.ok
        assert len(confirmed.value.codes) == 10

        next_step = orchestrator.totp_engine.compute_code(
            secret, clock() + timedelta(seconds=30)
        )
        assert (await orchestrator.verify_login("user-1", MfaMethod.TOTP, next_step)).ok

        backup = confirmed.value.codes[0]
        first = await orchestrator.verify_login("user-1", MfaMethod.BACKUP, backup)
        assert first.ok and first.value.used_backup_code

        again = await orchestrator.verify_login("user-1", MfaMethod.BACKUP, backup)
        assert again.kind is MfaErrorKind.INVALID_CODE

    async def test_email_setup_rate_limit_and_reset(
        self,
        secret_store: InMemorySecretStore,
        pending_store: InMemoryPendingSecretStore,
        delivery_hook: RecordingDeliveryHook,
        clock: FakeClock,
    ) -> None:
        email_otp = EmailOtpService(
            challenge_store=InMemoryOtpChallengeStore(),
            rate_limit_store=InMemoryOtpRateLimitStore(),
            delivery_hook=delivery_hook,
            config=OtpConfig(max_sends=2, hash_rounds=4),
            clock=clock,
        )
        orchestrator = MfaOrchestrator(
            secret_store=secret_store,
            pending_store=pending_store,
            email_otp=email_otp,
            password_verifier=FakePasswordVerifier(),
            clock=clock,
        )

        first = await orchestrator.begin_email_setup("user-1", PASSWORD)
        second = await orchestrator.begin_email_setup("user-1", PASSWORD)
        third = await orchestrator.begin_email_setup("user-1", PASSWORD)

        assert first.ok and second.ok
        assert third.kind is MfaErrorKind.RATE_LIMITED
        assert third.error.reset_at > clock()
        assert third.to_dict()["reset_at"] == third.error.reset_at.isoformat()
        assert len(delivery_hook.emails_sent) == 2

        clock.now = third.error.reset_at
        assert (await orchestrator.begin_email_setup("user-1", PASSWORD)).ok
