"""Test configuration and fixtures."""

from __future__ import annotations

import pytest

from secure2send_mfa import (
    BackupCodeConfig,
    BackupCodeManager,
    EmailOtpService,
    InMemoryMfaAuditStore,
    MfaConfig,
    MfaOrchestrator,
    OtpConfig,
    TotpConfig,
    TotpEngine,
)
from secure2send_mfa.adapters import (
    InMemoryOtpChallengeStore,
    InMemoryOtpRateLimitStore,
    InMemoryPendingSecretStore,
    InMemorySecretStore,
)

from .fakes import FakeClock, FakePasswordVerifier, RecordingDeliveryHook


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mfa_config() -> MfaConfig:
    """Production defaults, except cheap bcrypt and no QR rendering."""
    return MfaConfig(
        totp=TotpConfig(render_qr_code=False),
        otp=OtpConfig(hash_rounds=4),
        backup_codes=BackupCodeConfig(hash_rounds=4),
    )


@pytest.fixture
def delivery_hook() -> RecordingDeliveryHook:
    return RecordingDeliveryHook()


@pytest.fixture
def secret_store() -> InMemorySecretStore:
    return InMemorySecretStore()


@pytest.fixture
def pending_store() -> InMemoryPendingSecretStore:
    return InMemoryPendingSecretStore()


@pytest.fixture
def challenge_store() -> InMemoryOtpChallengeStore:
    return InMemoryOtpChallengeStore()


@pytest.fixture
def rate_limit_store() -> InMemoryOtpRateLimitStore:
    return InMemoryOtpRateLimitStore()


@pytest.fixture
def audit_store() -> InMemoryMfaAuditStore:
    return InMemoryMfaAuditStore()


@pytest.fixture
def totp_engine(mfa_config: MfaConfig) -> TotpEngine:
    return TotpEngine(mfa_config.totp)


@pytest.fixture
def backup_manager(
    secret_store: InMemorySecretStore, mfa_config: MfaConfig
) -> BackupCodeManager:
    return BackupCodeManager(secret_store, mfa_config.backup_codes)


@pytest.fixture
def email_otp(
    challenge_store: InMemoryOtpChallengeStore,
    rate_limit_store: InMemoryOtpRateLimitStore,
    delivery_hook: RecordingDeliveryHook,
    mfa_config: MfaConfig,
    clock: FakeClock,
) -> EmailOtpService:
    return EmailOtpService(
        challenge_store=challenge_store,
        rate_limit_store=rate_limit_store,
        delivery_hook=delivery_hook,
        config=mfa_config.otp,
        clock=clock,
    )


@pytest.fixture
def orchestrator(
    secret_store: InMemorySecretStore,
    pending_store: InMemoryPendingSecretStore,
    email_otp: EmailOtpService,
    audit_store: InMemoryMfaAuditStore,
    mfa_config: MfaConfig,
    clock: FakeClock,
) -> MfaOrchestrator:
    return MfaOrchestrator(
        secret_store=secret_store,
        pending_store=pending_store,
        email_otp=email_otp,
        password_verifier=FakePasswordVerifier(),
        audit_store=audit_store,
        config=mfa_config,
        clock=clock,
    )
