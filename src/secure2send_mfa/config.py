"""MFA configuration.

All settings are frozen dataclasses with production defaults; the
application builds them once and passes them to the services.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# RFC 4226 recommends at least 128 bits, 160 preferred.
MIN_SECRET_BITS = 160


@dataclass(frozen=True)
class TotpConfig:
    """TOTP configuration.

    Attributes:
        issuer: Application name shown in authenticator apps.
        digits: Number of digits in a code.
        interval: Time step in seconds.
        valid_window: Accepted steps before/after the current one.
        secret_length: Length of the base32 secret (5 bits per character).
        pending_ttl_seconds: Lifetime of an unconfirmed setup secret.
        render_qr_code: Include a QR data URL in setup payloads.
    """

    issuer: str = "Secure2Send Enterprise"
    digits: int = 6
    interval: int = 30
    valid_window: int = 1
    secret_length: int = 32
    pending_ttl_seconds: int = 600  # 10 minutes
    render_qr_code: bool = True

    def __post_init__(self) -> None:
        if self.secret_length * 5 < MIN_SECRET_BITS:
            raise ValueError(
                f"secret_length must encode at least {MIN_SECRET_BITS} bits"
            )
        if self.digits not in (6, 7, 8):
            raise ValueError("digits must be 6, 7 or 8")
        if self.interval <= 0 or self.valid_window < 0:
            raise ValueError("interval must be positive and valid_window >= 0")
        if self.pending_ttl_seconds <= 0:
            raise ValueError("pending_ttl_seconds must be positive")


@dataclass(frozen=True)
class OtpConfig:
    """E-mail OTP configuration.

    Attributes:
        code_length: Number of digits in an OTP code.
        ttl_seconds: Time-to-live of a challenge.
        max_attempts: Failed guesses allowed before a challenge is burned.
        max_sends: Sends allowed per rate-limit window.
        window_seconds: Rate-limit window length.
        hash_rounds: bcrypt cost factor for stored codes.
    """

    code_length: int = 6
    ttl_seconds: int = 300  # 5 minutes
    max_attempts: int = 5
    max_sends: int = 3
    window_seconds: int = 600  # 10 minutes
    hash_rounds: int = 10

    def __post_init__(self) -> None:
        if self.code_length < 4:
            raise ValueError("code_length must be at least 4")
        if min(self.ttl_seconds, self.max_attempts, self.max_sends) <= 0:
            raise ValueError("ttl_seconds, max_attempts and max_sends must be positive")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if not 4 <= self.hash_rounds <= 31:
            raise ValueError("hash_rounds must be between 4 and 31")


@dataclass(frozen=True)
class BackupCodeConfig:
    """Backup code configuration.

    Attributes:
        count: Codes per generated set.
        code_length: Characters per code (presented in groups of 4).
        hash_rounds: bcrypt cost factor.
        low_watermark: Remaining count at or below which status flags "low".
    """

    count: int = 10
    code_length: int = 8
    hash_rounds: int = 10
    low_watermark: int = 3

    def __post_init__(self) -> None:
        if self.count <= 0:
            raise ValueError("count must be positive")
        if self.code_length <= 0 or self.code_length % 4:
            raise ValueError("code_length must be a positive multiple of 4")
        if not 4 <= self.hash_rounds <= 31:
            raise ValueError("hash_rounds must be between 4 and 31")


@dataclass(frozen=True)
class MfaConfig:
    """Top-level MFA configuration.

    Attributes:
        totp: TOTP settings.
        otp: E-mail OTP settings.
        backup_codes: Backup code settings.
        retain_backup_codes_with_email: Keep backup codes when TOTP is
            disabled while e-mail MFA stays enabled.
        lock_timeout_seconds: Wait limit for the per-account lock.
    """

    totp: TotpConfig = field(default_factory=TotpConfig)
    otp: OtpConfig = field(default_factory=OtpConfig)
    backup_codes: BackupCodeConfig = field(default_factory=BackupCodeConfig)
    retain_backup_codes_with_email: bool = False
    lock_timeout_seconds: float = 5.0


__all__: list[str] = [
    "MIN_SECRET_BITS",
    "TotpConfig",
    "OtpConfig",
    "BackupCodeConfig",
    "MfaConfig",
]
