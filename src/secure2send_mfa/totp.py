"""TOTP (Time-based One-Time Password) engine.

Works with any RFC 6238 authenticator app:
- Google Authenticator
- Microsoft Authenticator
- Authy
- 1Password

Uses the pyotp library for secret generation and code computation.
The engine is stateless: persistence of secrets is the caller's job.
"""

from __future__ import annotations

import base64
import binascii
import io
import secrets
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

import pyotp
import qrcode
from qrcode.image.svg import SvgPathImage

from .config import TotpConfig


@dataclass(frozen=True)
class TotpSetup:
    """TOTP setup data returned when starting TOTP enrollment.

    Attributes:
        secret: Base32-encoded TOTP secret.
        qr_uri: otpauth:// URI for QR code generation.
        manual_key: Human-readable key for manual entry.
        qr_data_url: Rendered QR code as a data URL (optional).
    """

    secret: str
    qr_uri: str
    manual_key: str
    qr_data_url: str | None = None

    def with_qr(self, qr_data_url: str) -> TotpSetup:
        return replace(self, qr_data_url=qr_data_url)

    def to_dict(self) -> dict[str, Any]:
        return {
            "secret": self.secret,
            "qr_uri": self.qr_uri,
            "manual_key": self.manual_key,
            "qr_data_url": self.qr_data_url,
        }


class TotpEngine:
    """TOTP engine for authenticator apps.

    Example:
        ```python
        engine = TotpEngine(TotpConfig(issuer="MyApp"))

        setup = engine.generate_secret("alice@example.com")
        print(f"Scan this QR: {setup.qr_uri}")
        print(f"Or enter manually: {setup.manual_key}")

        if engine.validate(setup.secret, "123456", datetime.now(timezone.utc)):
            print("Valid!")
        ```
    """

    def __init__(self, config: TotpConfig | None = None) -> None:
        """Initialize the TOTP engine.

        Args:
            config: TOTP settings (issuer, digits, step, skew window).
        """
        self.config = config or TotpConfig()

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(
            secret,
            digits=self.config.digits,
            interval=self.config.interval,
            issuer=self.config.issuer,
        )

    def generate_secret(self, account_label: str) -> TotpSetup:
        """Generate a new secret and its provisioning data.

        Args:
            account_label: Account name shown in the authenticator app.

        Returns:
            TotpSetup with:
                - secret: Base32 secret (at least 160 bits of entropy)
                - qr_uri: otpauth:// URI embedding issuer, label and secret
                - manual_key: Secret formatted in groups of 4
        """
        secret = pyotp.random_base32(length=self.config.secret_length)
        qr_uri = self._totp(secret).provisioning_uri(
            name=account_label,
            issuer_name=self.config.issuer,
        )
        return TotpSetup(
            secret=secret,
            qr_uri=qr_uri,
            manual_key=self.format_manual_key(secret),
        )

    @staticmethod
    def format_manual_key(secret: str) -> str:
        """Format a secret for manual entry.

        Args:
            secret: Base32 secret.

        Returns:
            Secret formatted as groups of 4 characters.
        """
        secret = secret.rstrip("=")
        return " ".join(secret[i : i + 4] for i in range(0, len(secret), 4))

    @staticmethod
    def render_qr_data_url(uri: str) -> str:
        """Render a provisioning URI as an SVG QR code data URL."""
        image = qrcode.make(uri, image_factory=SvgPathImage)
        buffer = io.BytesIO()
        image.save(buffer)
        encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
        return f"data:image/svg+xml;base64,{encoded}"

    def compute_code(self, secret: str, timestamp: datetime | float) -> str:
        """Compute the code for the time step containing ``timestamp``.

        Args:
            secret: Base32 secret.
            timestamp: Aware datetime or POSIX seconds.

        Returns:
            Zero-padded numeric code.
        """
        return str(self._totp(secret).at(self._as_seconds(timestamp)))

    def validate(self, secret: str, code: str, timestamp: datetime | float) -> bool:
        """Validate a presented code.

        Accepts the current step and ``valid_window`` steps on either side.
        Every candidate is compared in constant time and all comparisons run
        regardless of earlier matches. Malformed input is simply invalid.

        Args:
            secret: Base32 secret.
            code: Code presented by the user.
            timestamp: Verification time.

        Returns:
            True if the code matches one of the accepted steps.
        """
        presented = code.strip() if isinstance(code, str) else ""
        if not self._is_well_formed(presented):
            return False

        for_time = self._as_seconds(timestamp)
        try:
            totp = self._totp(secret)
            candidates = [
                str(totp.at(for_time, offset))
                for offset in range(-self.config.valid_window, self.config.valid_window + 1)
            ]
        except (binascii.Error, ValueError, TypeError):
            # Malformed base32 secret
            return False

        matched = False
        for candidate in candidates:
            matched |= secrets.compare_digest(candidate, presented)
        return matched

    def _is_well_formed(self, code: str) -> bool:
        return len(code) == self.config.digits and code.isascii() and code.isdigit()

    @staticmethod
    def _as_seconds(timestamp: datetime | float) -> int:
        if isinstance(timestamp, datetime):
            return int(timestamp.timestamp())
        return int(timestamp)


__all__: list[str] = ["TotpSetup", "TotpEngine"]
