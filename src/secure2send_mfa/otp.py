"""E-mail OTP service for one-time code delivery.

This service generates, rate-limits and verifies OTP codes, but the
actual sending is delegated to the application via IMfaDeliveryHook.
Challenges and send windows are keyed by ``(account_id, purpose)`` so a
login code never blocks or replaces a setup code.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import bcrypt

from .clock import utc_now
from .config import OtpConfig
from .exceptions import MfaDeliveryError, MfaErrorKind
from .models import OtpChallenge, OtpVerification
from .results import MfaResult

if TYPE_CHECKING:
    from datetime import datetime

    from .clock import Clock
    from .models import OtpPurpose
    from .ports import IMfaDeliveryHook, IOtpChallengeStore, IOtpRateLimitStore

logger = logging.getLogger("secure2send.mfa.otp")


@dataclass(frozen=True)
class OtpDispatch:
    """Receipt for a sent OTP.

    Attributes:
        expires_at: When the code stops working.
        sends_remaining: Sends left in the current rate-limit window.
        reset_at: When the rate-limit window resets.
    """

    expires_at: datetime
    sends_remaining: int
    reset_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "expires_at": self.expires_at.isoformat(),
            "sends_remaining": self.sends_remaining,
            "reset_at": self.reset_at.isoformat(),
        }


class EmailOtpService:
    """E-mail OTP service.

    Example:
        ```python
        class MyEmailHook(IMfaDeliveryHook):
            async def send_email_otp(self, account_id, code, purpose, expires_at):
                user = await users.get(account_id)
                await mailgun.send(to=user.email, body=f"Your code is: {code}")

        email_otp = EmailOtpService(
            challenge_store=InMemoryOtpChallengeStore(),
            rate_limit_store=InMemoryOtpRateLimitStore(),
            delivery_hook=MyEmailHook(),
        )

        result = await email_otp.send("user-123", OtpPurpose.LOGIN)
        outcome = await email_otp.verify("user-123", OtpPurpose.LOGIN, "123456")
        ```
    """

    def __init__(
        self,
        *,
        challenge_store: IOtpChallengeStore,
        rate_limit_store: IOtpRateLimitStore,
        delivery_hook: IMfaDeliveryHook,
        config: OtpConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize e-mail OTP service.

        Args:
            challenge_store: Storage for OTP challenges.
            rate_limit_store: Storage for send windows.
            delivery_hook: Hook to send OTP via e-mail.
            config: OTP configuration.
            clock: Time source.
        """
        self.challenge_store = challenge_store
        self.rate_limit_store = rate_limit_store
        self.delivery_hook = delivery_hook
        self.config = config or OtpConfig()
        self._clock = clock

    def _generate_code(self) -> str:
        """Generate a uniform numeric code, leading zeros allowed."""
        code = secrets.randbelow(10**self.config.code_length)
        return str(code).zfill(self.config.code_length)

    def hash_code(self, code: str) -> str:
        """Hash a code with a fresh bcrypt salt."""
        salt = bcrypt.gensalt(rounds=self.config.hash_rounds)
        return bcrypt.hashpw(code.encode(), salt).decode()

    def _matches(self, presented: str, code_hash: str) -> bool:
        if len(presented) != self.config.code_length or not (
            presented.isascii() and presented.isdigit()
        ):
            return False
        try:
            return bcrypt.checkpw(presented.encode(), code_hash.encode())
        except ValueError:
            logger.warning("Stored OTP hash is malformed")
            return False

    async def send(self, account_id: str, purpose: OtpPurpose) -> MfaResult[OtpDispatch]:
        """Generate and send an OTP, subject to the send rate limit.

        Args:
            account_id: Recipient account.
            purpose: Setup or login.

        Returns:
            OtpDispatch on success; ``RATE_LIMITED`` (with ``reset_at``) or
            ``DELIVERY_FAILED`` otherwise.
        """
        now = self._clock()
        decision = await self.rate_limit_store.hit(
            account_id,
            purpose,
            limit=self.config.max_sends,
            window_seconds=self.config.window_seconds,
            now=now,
        )
        if not decision.allowed:
            logger.warning(
                "OTP send rate limit reached for account %s (%s) until %s",
                account_id,
                purpose.value,
                decision.reset_at.isoformat(),
            )
            return MfaResult.failure(MfaErrorKind.RATE_LIMITED, reset_at=decision.reset_at)

        code = self._generate_code()
        challenge = OtpChallenge(
            challenge_id=uuid4().hex,
            account_id=account_id,
            purpose=purpose,
            code_hash=await asyncio.to_thread(self.hash_code, code),
            created_at=now,
            expires_at=now + timedelta(seconds=self.config.ttl_seconds),
        )
        await self.challenge_store.put(challenge)

        try:
            await self.delivery_hook.send_email_otp(
                account_id, code, purpose, challenge.expires_at
            )
        except MfaDeliveryError as exc:
            logger.warning(
                "OTP delivery failed for account %s (%s): %s", account_id, purpose.value, exc
            )
            return MfaResult.failure(MfaErrorKind.DELIVERY_FAILED)
        except Exception:
            logger.exception(
                "OTP delivery failed for account %s (%s)", account_id, purpose.value
            )
            return MfaResult.failure(MfaErrorKind.DELIVERY_FAILED)

        logger.info(
            "OTP sent for account %s (%s), expires at %s",
            account_id,
            purpose.value,
            challenge.expires_at.isoformat(),
        )
        return MfaResult.success(
            OtpDispatch(
                expires_at=challenge.expires_at,
                sends_remaining=decision.remaining,
                reset_at=decision.reset_at,
            )
        )

    async def verify(
        self, account_id: str, purpose: OtpPurpose, code: str
    ) -> OtpVerification:
        """Verify and consume an OTP.

        Args:
            account_id: Account that received the code.
            purpose: Purpose the code was issued for.
            code: Code presented by the user.

        Returns:
            ``OK`` for exactly one successful caller per challenge;
            ``EXPIRED`` if no live challenge exists; ``INVALID`` otherwise.
        """
        now = self._clock()
        challenge = await self.challenge_store.get(account_id, purpose)
        if challenge is None or challenge.is_expired(now):
            return OtpVerification.EXPIRED
        if challenge.consumed:
            return OtpVerification.INVALID

        presented = code.strip() if isinstance(code, str) else ""
        if not await asyncio.to_thread(self._matches, presented, challenge.code_hash):
            await self._record_failure(challenge)
            return OtpVerification.INVALID

        if not await self.challenge_store.consume(
            account_id, purpose, challenge.challenge_id
        ):
            return OtpVerification.INVALID

        logger.info("OTP verified for account %s (%s)", account_id, purpose.value)
        return OtpVerification.OK

    async def _record_failure(self, challenge: OtpChallenge) -> None:
        attempts = await self.challenge_store.record_failure(
            challenge.account_id, challenge.purpose, challenge.challenge_id
        )
        if attempts >= self.config.max_attempts:
            logger.warning(
                "Too many failed OTP attempts for account %s (%s); code revoked",
                challenge.account_id,
                challenge.purpose.value,
            )
            await self.challenge_store.delete(
                challenge.account_id, challenge.purpose, challenge.challenge_id
            )

    async def sweep(self) -> int:
        """Evict expired challenges and rate-limit windows."""
        now = self._clock()
        removed = await self.challenge_store.purge_expired(now)
        removed += await self.rate_limit_store.purge_expired(now)
        return removed


__all__: list[str] = ["OtpDispatch", "EmailOtpService"]
