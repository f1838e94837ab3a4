"""
Per-vehicle chain locking.

A chain write reads the current predecessor, validates against it and
writes; two writers doing that concurrently on the same vehicle would both
validate against the same stale predecessor. The lock makes the sequence
exclusive per (owner, vehicle):

- an asyncio.Lock per chain key, per event loop, for writers in this process
- a Redis lease (SET NX PX) for writers in other processes
"""

import asyncio
import logging
import uuid
import weakref
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Iterable, Optional

from redis.exceptions import RedisError

from mileage_chain.app.core.config import settings
from mileage_chain.app.core.exceptions import ChainLockTimeoutError
from mileage_chain.app.core.tenant import TenantContext

logger = logging.getLogger("mileage.locks")

LEASE_PREFIX = "chain_lock:"

# asyncio.Lock is bound to the loop it is first awaited on. A chain key keeps
# its lock only while a holder or waiter references it.
_loop_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, weakref.WeakValueDictionary[str, asyncio.Lock]]" = (
    weakref.WeakKeyDictionary()
)


def _local_lock(key: str) -> asyncio.Lock:
    loop = asyncio.get_running_loop()
    locks = _loop_locks.get(loop)
    if locks is None:
        locks = weakref.WeakValueDictionary()
        _loop_locks[loop] = locks
    lock = locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        locks[key] = lock
    return lock


class ChainLockManager:
    """Grants exclusive access to one vehicle's chain."""

    def __init__(
        self,
        redis=None,
        ttl_seconds: int = None,
        wait_seconds: float = None,
        poll_interval: float = None,
    ):
        self.redis = redis
        self.ttl_ms = int((ttl_seconds or settings.chain_lock_ttl_seconds) * 1000)
        self.wait_seconds = settings.chain_lock_wait_seconds if wait_seconds is None else wait_seconds
        self.poll_interval = poll_interval or settings.chain_lock_poll_interval_seconds

    @asynccontextmanager
    async def hold(self, ctx: TenantContext, vehicle_id: int) -> AsyncIterator[None]:
        """
        Hold the chain lock for `vehicle_id` within the caller's tenant.

        Raises:
            ChainLockTimeoutError: lock not acquired within wait_seconds
        """
        key = ctx.chain_key(vehicle_id)
        loop = asyncio.get_running_loop()
        started = loop.time()
        lock = _local_lock(key)

        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.wait_seconds)
        except asyncio.TimeoutError:
            logger.warning("Chain lock wait timed out for %s", key)
            raise ChainLockTimeoutError(ctx.owner_id, vehicle_id, self.wait_seconds)

        token = None
        try:
            remaining = self.wait_seconds - (loop.time() - started)
            token = await self._acquire_lease(ctx, vehicle_id, remaining)
            yield
        finally:
            if token is not None:
                await self._release_lease(key, token)
            lock.release()

    @asynccontextmanager
    async def hold_many(self, ctx: TenantContext, vehicle_ids: Iterable[int]) -> AsyncIterator[None]:
        """Hold several chains at once, always acquired in ascending vehicle order."""
        async with AsyncExitStack() as stack:
            for vehicle_id in sorted(set(vehicle_ids)):
                await stack.enter_async_context(self.hold(ctx, vehicle_id))
            yield

    async def _acquire_lease(self, ctx: TenantContext, vehicle_id: int, remaining: float) -> Optional[str]:
        if self.redis is None:
            return None

        name = LEASE_PREFIX + ctx.chain_key(vehicle_id)
        token = uuid.uuid4().hex
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(remaining, 0)

        while True:
            try:
                acquired = await self.redis.set(name, token, nx=True, px=self.ttl_ms)
            except RedisError as e:
                logger.warning("Redis unavailable for chain lease %s, using local lock only: %s", name, e)
                return None

            if acquired:
                return token

            if loop.time() >= deadline:
                logger.warning("Chain lease %s held elsewhere past wait limit", name)
                raise ChainLockTimeoutError(ctx.owner_id, vehicle_id, self.wait_seconds)

            await asyncio.sleep(self.poll_interval)

    async def _release_lease(self, key: str, token: str) -> None:
        name = LEASE_PREFIX + key
        try:
            current = await self.redis.get(name)
            if isinstance(current, bytes):
                current = current.decode()
            if current == token:
                await self.redis.delete(name)
        except RedisError as e:
            # The lease expires on its own after ttl
            logger.warning("Failed to release chain lease %s: %s", name, e)
