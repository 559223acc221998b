"""Redis implementations of the ephemeral MFA stores.

Pending TOTP secrets, OTP challenges and send windows live in Redis so
every worker sees the same state. Expiry is delegated to key TTLs and all
compare-and-set operations run as Lua scripts.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from redis.exceptions import RedisError

from ..exceptions import MfaStoreError
from ..models import (
    OtpChallenge,
    OtpPurpose,
    PendingTotpSecret,
    RateLimitDecision,
    RateLimitWindow,
)
from ..ports import IOtpChallengeStore, IOtpRateLimitStore, IPendingSecretStore

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger("secure2send.mfa.redis")

_DISCARD_SCRIPT = """
if redis.call("HGET", KEYS[1], "secret") == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""

_CONSUME_SCRIPT = """
if redis.call("HGET", KEYS[1], "id") == ARGV[1]
    and redis.call("HGET", KEYS[1], "consumed") == "0" then
    redis.call("HSET", KEYS[1], "consumed", "1")
    return 1
end
return 0
"""

_RECORD_FAILURE_SCRIPT = """
if redis.call("HGET", KEYS[1], "id") == ARGV[1] then
    return redis.call("HINCRBY", KEYS[1], "attempts", 1)
end
return 0
"""

_DELETE_IF_SCRIPT = """
if redis.call("HGET", KEYS[1], "id") == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""

# KEYS: [window_key]  ARGV: [limit, window_ms, now_ms]
_HIT_SCRIPT = """
local count = redis.call("HINCRBY", KEYS[1], "count", 1)
if count == 1 then
    redis.call("HSET", KEYS[1], "start", ARGV[3])
    redis.call("PEXPIRE", KEYS[1], ARGV[2])
end
local ttl = redis.call("PTTL", KEYS[1])
if count > tonumber(ARGV[1]) then
    redis.call("HINCRBY", KEYS[1], "count", -1)
    return {0, count - 1, ttl}
end
return {1, count, ttl}
"""


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode()
    return str(value)


def _as_int(value: Any) -> int:
    return int(_text(value))


def _decode_hash(raw: dict[Any, Any]) -> dict[str, str]:
    return {_text(key): _text(value) for key, value in raw.items()}


def _to_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


class _RedisStore:
    """Shared plumbing: key layout, script evaluation and error wrapping."""

    def __init__(
        self,
        redis: Redis,  # type: ignore[type-arg]
        prefix: str = "mfa",
    ) -> None:
        """
        Args:
            redis: An initialized redis.asyncio.Redis client.
            prefix: Key prefix for Redis keys.
        """
        self._redis = redis
        self._prefix = prefix

    async def _eval(self, script: str, key: str, *args: Any) -> Any:
        try:
            result_raw = self._redis.eval(script, 1, key, *args)  # type: ignore[no-untyped-call]
            return await result_raw if hasattr(result_raw, "__await__") else result_raw
        except RedisError as exc:
            logger.error("Redis script failed for key %s: %s", key, exc)
            raise MfaStoreError(f"Redis operation failed: {exc}") from exc


class RedisPendingSecretStore(_RedisStore, IPendingSecretStore):
    """Pending TOTP secrets as Redis hashes that expire with the setup window."""

    def _key(self, account_id: str) -> str:
        return f"{self._prefix}:pending_totp:{account_id}"

    async def put(self, pending: PendingTotpSecret) -> None:
        key = self._key(pending.account_id)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.delete(key)
                pipe.hset(
                    key,
                    mapping={
                        "secret": pending.secret,
                        "created_at": pending.created_at.isoformat(),
                        "expires_at": pending.expires_at.isoformat(),
                    },
                )
                pipe.pexpireat(key, _to_ms(pending.expires_at))
                await pipe.execute()
        except RedisError as exc:
            raise MfaStoreError(f"Failed to store pending TOTP secret: {exc}") from exc

    async def get(self, account_id: str, now: datetime) -> PendingTotpSecret | None:
        try:
            raw = await self._redis.hgetall(self._key(account_id))
        except RedisError as exc:
            raise MfaStoreError(f"Failed to load pending TOTP secret: {exc}") from exc
        if not raw:
            return None

        data = _decode_hash(raw)
        pending = PendingTotpSecret(
            account_id=account_id,
            secret=data["secret"],
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )
        return None if pending.is_expired(now) else pending

    async def discard(self, account_id: str, secret: str) -> bool:
        result = await self._eval(_DISCARD_SCRIPT, self._key(account_id), secret)
        return _as_int(result) == 1

    async def purge_expired(self, now: datetime) -> int:
        # Keys expire on their own.
        return 0


class RedisOtpChallengeStore(_RedisStore, IOtpChallengeStore):
    """OTP challenges as Redis hashes keyed by account and purpose."""

    def _key(self, account_id: str, purpose: OtpPurpose) -> str:
        return f"{self._prefix}:otp:{account_id}:{purpose.value}"

    async def put(self, challenge: OtpChallenge) -> None:
        key = self._key(challenge.account_id, challenge.purpose)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.delete(key)
                pipe.hset(
                    key,
                    mapping={
                        "id": challenge.challenge_id,
                        "code_hash": challenge.code_hash,
                        "created_at": challenge.created_at.isoformat(),
                        "expires_at": challenge.expires_at.isoformat(),
                        "consumed": "1" if challenge.consumed else "0",
                        "attempts": str(challenge.attempts),
                    },
                )
                pipe.pexpireat(key, _to_ms(challenge.expires_at))
                await pipe.execute()
        except RedisError as exc:
            raise MfaStoreError(f"Failed to store OTP challenge: {exc}") from exc

    async def get(self, account_id: str, purpose: OtpPurpose) -> OtpChallenge | None:
        try:
            raw = await self._redis.hgetall(self._key(account_id, purpose))
        except RedisError as exc:
            raise MfaStoreError(f"Failed to load OTP challenge: {exc}") from exc
        if not raw:
            return None

        data = _decode_hash(raw)
        return OtpChallenge(
            challenge_id=data["id"],
            account_id=account_id,
            purpose=purpose,
            code_hash=data["code_hash"],
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            consumed=data.get("consumed") == "1",
            attempts=int(data.get("attempts", "0")),
        )

    async def consume(
        self, account_id: str, purpose: OtpPurpose, challenge_id: str
    ) -> bool:
        result = await self._eval(
            _CONSUME_SCRIPT, self._key(account_id, purpose), challenge_id
        )
        return _as_int(result) == 1

    async def record_failure(
        self, account_id: str, purpose: OtpPurpose, challenge_id: str
    ) -> int:
        result = await self._eval(
            _RECORD_FAILURE_SCRIPT, self._key(account_id, purpose), challenge_id
        )
        return _as_int(result)

    async def delete(
        self, account_id: str, purpose: OtpPurpose, challenge_id: str | None = None
    ) -> None:
        key = self._key(account_id, purpose)
        if challenge_id is not None:
            await self._eval(_DELETE_IF_SCRIPT, key, challenge_id)
            return
        try:
            await self._redis.delete(key)
        except RedisError as exc:
            raise MfaStoreError(f"Failed to delete OTP challenge: {exc}") from exc

    async def purge_expired(self, now: datetime) -> int:
        # Keys expire on their own.
        return 0


class RedisOtpRateLimitStore(_RedisStore, IOtpRateLimitStore):
    """Fixed-window send counters.

    The window starts at the first send and is closed by the key TTL, so
    the reset time follows the Redis server clock.
    """

    def _key(self, account_id: str, purpose: OtpPurpose) -> str:
        return f"{self._prefix}:otp_rate:{account_id}:{purpose.value}"

    async def hit(
        self,
        account_id: str,
        purpose: OtpPurpose,
        *,
        limit: int,
        window_seconds: int,
        now: datetime,
    ) -> RateLimitDecision:
        result = await self._eval(
            _HIT_SCRIPT,
            self._key(account_id, purpose),
            str(limit),
            str(window_seconds * 1000),
            str(_to_ms(now)),
        )
        allowed, count, ttl_ms = (_as_int(item) for item in result)
        if ttl_ms < 0:
            ttl_ms = window_seconds * 1000
        return RateLimitDecision(
            allowed=allowed == 1,
            send_count=count,
            reset_at=now + timedelta(milliseconds=ttl_ms),
            limit=limit,
        )

    async def peek(
        self, account_id: str, purpose: OtpPurpose, now: datetime
    ) -> RateLimitWindow | None:
        key = self._key(account_id, purpose)
        try:
            count, start = await self._redis.hmget(key, "count", "start")
            ttl_ms = await self._redis.pttl(key)
        except RedisError as exc:
            raise MfaStoreError(f"Failed to read OTP send window: {exc}") from exc
        if count is None or start is None or _as_int(ttl_ms) < 0:
            return None
        return RateLimitWindow(
            window_start=_from_ms(_as_int(start)),
            send_count=_as_int(count),
            reset_at=now + timedelta(milliseconds=_as_int(ttl_ms)),
        )

    async def purge_expired(self, now: datetime) -> int:
        # Keys expire on their own.
        return 0


__all__: list[str] = [
    "RedisPendingSecretStore",
    "RedisOtpChallengeStore",
    "RedisOtpRateLimitStore",
]
