"""Per-account locking for MFA read-modify-write sequences.

The orchestrator serialises all mutating operations for one account
through an :class:`ILockStrategy`. Stores stay atomic on their own
(compare-and-set), so the lock is what keeps multi-step flows such as
"validate backup code, then consume it" consistent inside one process.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable
from uuid import uuid4

from .exceptions import LockTimeoutError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger("secure2send.mfa.locking")


@dataclass(frozen=True)
class ResourceIdentifier:
    """
    Identifies a single lockable resource.

    Examples:
        >>> ResourceIdentifier("mfa_account", "user-123")
    """

    resource_type: str
    resource_id: str

    def __str__(self) -> str:
        return f"{self.resource_type}:{self.resource_id}"


@runtime_checkable
class ILockStrategy(Protocol):
    """Lock strategy protocol for per-resource mutual exclusion."""

    async def acquire(self, resource: ResourceIdentifier, *, timeout: float = 10.0) -> str:
        """
        Acquire a lock for the given resource.

        Args:
            resource: The resource to lock.
            timeout: Maximum time to wait for the lock.

        Returns:
            A unique lock token required for release.

        Raises:
            LockTimeoutError: If the lock cannot be acquired within the timeout.
        """
        ...

    async def release(self, resource: ResourceIdentifier, token: str) -> None:
        """Release a previously acquired lock."""
        ...


@dataclass
class _LockState:
    """State for a single resource lock."""

    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    token: str | None = None
    users: int = 0


class InMemoryLockStrategy(ILockStrategy):
    """
    In-memory implementation of ILockStrategy.

    ``asyncio.Lock`` wakes waiters in FIFO order. Entries are removed once
    nobody holds or waits for them, so idle accounts cost no memory.
    Suitable for single-process deployments and tests.
    """

    def __init__(self) -> None:
        self._locks: dict[ResourceIdentifier, _LockState] = {}

    async def acquire(self, resource: ResourceIdentifier, *, timeout: float = 10.0) -> str:
        state = self._locks.setdefault(resource, _LockState())
        state.users += 1
        try:
            await asyncio.wait_for(state.lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError as err:
            self._forget(resource, state)
            logger.warning("Lock acquisition timed out after %.1fs: %s", timeout, resource)
            raise LockTimeoutError(f"Lock acquisition timeout after {timeout}s") from err
        except asyncio.CancelledError:
            self._forget(resource, state)
            raise

        state.token = uuid4().hex
        logger.debug("Lock acquired: %s", resource)
        return state.token

    async def release(self, resource: ResourceIdentifier, token: str) -> None:
        state = self._locks.get(resource)
        if state is None or state.token != token:
            logger.warning("Attempted to release invalid or expired lock: %s", resource)
            return

        state.token = None
        state.lock.release()
        self._forget(resource, state)
        logger.debug("Lock released: %s", resource)

    def _forget(self, resource: ResourceIdentifier, state: _LockState) -> None:
        state.users -= 1
        if state.users <= 0 and self._locks.get(resource) is state:
            del self._locks[resource]

    @property
    def active_count(self) -> int:
        """Number of resources currently held or waited on."""
        return len(self._locks)


@contextlib.asynccontextmanager
async def hold(
    strategy: ILockStrategy, resource: ResourceIdentifier, *, timeout: float = 10.0
) -> AsyncIterator[None]:
    """Hold ``resource`` for the duration of the ``async with`` block."""
    token = await strategy.acquire(resource, timeout=timeout)
    try:
        yield
    finally:
        await strategy.release(resource, token)


__all__: list[str] = [
    "ResourceIdentifier",
    "ILockStrategy",
    "InMemoryLockStrategy",
    "hold",
]
