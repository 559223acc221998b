"""Store adapters: in-memory (tests), Redis (ephemeral state), SQLAlchemy (records)."""

from __future__ import annotations

from .memory import (
    InMemoryOtpChallengeStore,
    InMemoryOtpRateLimitStore,
    InMemoryPendingSecretStore,
    InMemorySecretStore,
)
from .redis_stores import (
    RedisOtpChallengeStore,
    RedisOtpRateLimitStore,
    RedisPendingSecretStore,
)
from .sqlalchemy_store import SQLAlchemySecretStore, create_schema

__all__ = [
    "InMemorySecretStore",
    "InMemoryPendingSecretStore",
    "InMemoryOtpChallengeStore",
    "InMemoryOtpRateLimitStore",
    "RedisPendingSecretStore",
    "RedisOtpChallengeStore",
    "RedisOtpRateLimitStore",
    "SQLAlchemySecretStore",
    "create_schema",
]
