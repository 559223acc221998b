"""Multi-factor authentication core for Secure2Send.

Supports:
- TOTP (Google Authenticator, Microsoft Authenticator, Authy, etc.)
- Email OTP (via application hook)
- Backup codes (single-use recovery codes)

The API layer talks to :class:`MfaOrchestrator` only. Store adapters live
in :mod:`secure2send_mfa.adapters`.
"""

from .audit import InMemoryMfaAuditStore, MfaAuditEvent, MfaEventType
from .backup_codes import BackupCodeManager, BackupCodeSet
from .config import BackupCodeConfig, MfaConfig, OtpConfig, TotpConfig
from .crypto import SecretCipher
from .exceptions import (
    InvalidMfaRecordError,
    LockTimeoutError,
    MfaDeliveryError,
    MfaDomainError,
    MfaError,
    MfaErrorKind,
    MfaInfrastructureError,
    MfaOperationError,
    MfaStoreError,
)
from .locking import ILockStrategy, InMemoryLockStrategy, ResourceIdentifier
from .models import (
    BackupCodeEntry,
    MfaMethod,
    MfaRecord,
    OtpChallenge,
    OtpPurpose,
    OtpVerification,
    PendingTotpSecret,
    RateLimitDecision,
    RateLimitWindow,
)
from .orchestrator import (
    BackupCodesIssued,
    EmailStatus,
    LoginVerification,
    MfaOrchestrator,
    MfaStatus,
    TotpStatus,
)
from .otp import EmailOtpService, OtpDispatch
from .ports import (
    IMfaAuditStore,
    IMfaDeliveryHook,
    IMfaPolicy,
    IOtpChallengeStore,
    IOtpRateLimitStore,
    IPasswordVerifier,
    IPendingSecretStore,
    ISecretStore,
)
from .results import MfaFailure, MfaResult
from .totp import TotpEngine, TotpSetup

__all__: list[str] = [
    # Orchestrator
    "MfaOrchestrator",
    "BackupCodesIssued",
    "LoginVerification",
    "MfaStatus",
    "TotpStatus",
    "EmailStatus",
    # Services
    "TotpEngine",
    "TotpSetup",
    "BackupCodeManager",
    "BackupCodeSet",
    "EmailOtpService",
    "OtpDispatch",
    "SecretCipher",
    # Ports
    "ISecretStore",
    "IPendingSecretStore",
    "IOtpChallengeStore",
    "IOtpRateLimitStore",
    "IMfaDeliveryHook",
    "IPasswordVerifier",
    "IMfaPolicy",
    "IMfaAuditStore",
    # Models
    "MfaRecord",
    "BackupCodeEntry",
    "PendingTotpSecret",
    "OtpChallenge",
    "RateLimitWindow",
    "RateLimitDecision",
    "OtpPurpose",
    "MfaMethod",
    "OtpVerification",
    # Config
    "MfaConfig",
    "TotpConfig",
    "OtpConfig",
    "BackupCodeConfig",
    # Results and errors
    "MfaResult",
    "MfaFailure",
    "MfaErrorKind",
    "MfaError",
    "MfaDomainError",
    "MfaOperationError",
    "InvalidMfaRecordError",
    "MfaInfrastructureError",
    "MfaStoreError",
    "MfaDeliveryError",
    "LockTimeoutError",
    # Locking
    "ILockStrategy",
    "InMemoryLockStrategy",
    "ResourceIdentifier",
    # Audit
    "MfaAuditEvent",
    "MfaEventType",
    "InMemoryMfaAuditStore",
]
