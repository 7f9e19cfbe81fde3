"""Transactional lock store backed by Redis optimistic transactions."""

import json
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from loguru import logger
from redis import asyncio as aioredis
from redis.exceptions import RedisError, WatchError

from ..config import Config
from ..errors import (
    BackendError,
    LeaseExpiredError,
    LeaseNotFoundError,
    PoolExhaustedError,
    TransactionConflictError,
)
from ..redis_client import check_redis_health, close_redis_client, create_redis_client
from .base import Claim, LockStore, SlotStatus, utcnow, validate_claim_args


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


class RedisLockStore(LockStore):
    """
    Redis-backed lock store.

    Layout (all keys under one prefix):
    - {prefix}:{pool}:slot:{slot_name}   JSON claim document
    - {prefix}:{pool}:lease:{lease_id}   slot_name (lookup by lease id)
    - {prefix}:{pool}:holder:{holder}    slot_name (lookup by holder)

    Every mutation runs as WATCH / read / MULTI / EXEC. If another client
    touches a watched key before EXEC, Redis aborts the transaction and the
    whole read-decide-write step is retried from scratch, so concurrent
    claims for a pool are serialized and never hand out the same slot.
    Commands are buffered client-side until EXEC, so a cancelled call
    leaves nothing half-written.
    """

    def __init__(
        self,
        redis: Optional[aioredis.Redis] = None,
        url: Optional[str] = None,
        prefix: Optional[str] = None,
        max_retries: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            redis: Existing client to use (not closed by close())
            url: Redis URL for a client created on first use
            prefix: Key prefix (defaults to Config.LOCK_KEY_PREFIX)
            max_retries: Transaction attempts before giving up
            clock: Time source, for tests
        """
        self._redis = redis
        self._owns_client = redis is None
        self._url = url or Config.REDIS_URL
        self._prefix = prefix or Config.LOCK_KEY_PREFIX
        self._max_retries = max_retries or Config.LOCK_TRANSACTION_RETRIES
        self._clock = clock or utcnow

    async def _get_redis(self) -> aioredis.Redis:
        if self._redis is None:
            try:
                self._redis = await create_redis_client(self._url)
            except RedisError as e:
                raise BackendError(f"failed to connect to Redis at {self._url}: {e}") from e
        return self._redis

    def _slot_key(self, pool: str, slot_name: str) -> str:
        return f"{self._prefix}:{pool}:slot:{slot_name}"

    def _lease_key(self, pool: str, lease_id: str) -> str:
        return f"{self._prefix}:{pool}:lease:{lease_id}"

    def _holder_key(self, pool: str, holder: str) -> str:
        return f"{self._prefix}:{pool}:holder:{holder}"

    @staticmethod
    def _decode(raw: Any) -> Optional[Claim]:
        if raw is None:
            return None
        return Claim.from_dict(json.loads(raw))

    @staticmethod
    def _encode(claim: Claim) -> str:
        return json.dumps(claim.to_dict())

    async def _transact(
        self, operation: str, body: Callable[[Any], Awaitable[Any]]
    ) -> Any:
        """
        Run body(pipe) as an optimistic transaction, retrying on conflicts.

        body must WATCH every key it reads before calling pipe.multi().
        Domain errors raised by body propagate unchanged.
        """
        redis = await self._get_redis()

        for attempt in range(1, self._max_retries + 1):
            try:
                async with redis.pipeline(transaction=True) as pipe:
                    return await body(pipe)
            except WatchError:
                logger.debug(
                    f"Transaction conflict in {operation} (attempt {attempt}/{self._max_retries})"
                )
                continue
            except RedisError as e:
                logger.error(f"Redis failure in {operation}: {e}")
                raise BackendError(f"redis {operation} failed: {e}") from e

        logger.warning(f"Giving up on {operation} after {self._max_retries} conflicting attempts")
        raise TransactionConflictError(
            f"redis {operation} aborted after {self._max_retries} conflicting attempts"
        )

    async def _watch_by_lease(self, pipe, pool: str, lease_id: str) -> tuple[str, Claim]:
        """WATCH and load the claim a lease id points at."""
        lease_key = self._lease_key(pool, lease_id)
        await pipe.watch(lease_key)
        slot_name = _text(await pipe.get(lease_key))
        if slot_name is None:
            raise LeaseNotFoundError(pool, lease_id=lease_id)

        slot_key = self._slot_key(pool, slot_name)
        await pipe.watch(slot_key)
        claim = self._decode(await pipe.get(slot_key))
        if claim is None or claim.lease_id != lease_id:
            raise LeaseNotFoundError(pool, lease_id=lease_id)
        return slot_key, claim

    async def claim(
        self, pool: str, slot_names: list[str], holder: str, ttl: timedelta
    ) -> Claim:
        validate_claim_args(slot_names, holder, ttl)
        slot_keys = [self._slot_key(pool, name) for name in slot_names]

        async def _claim(pipe) -> Claim:
            await pipe.watch(*slot_keys)
            existing = [self._decode(raw) for raw in await pipe.mget(slot_keys)]
            now = self._clock()

            for current in existing:
                if current is not None and current.holder == holder and not current.is_expired(now):
                    logger.debug(
                        f"Re-claim by {holder} returns existing slot {pool}/{current.slot_name}"
                    )
                    return current

            for slot_name, slot_key, current in zip(slot_names, slot_keys, existing):
                if current is not None and not current.is_expired(now):
                    continue

                stale_holder_key = None
                if current is not None and current.holder != holder:
                    stale_holder_key = self._holder_key(pool, current.holder)
                    await pipe.watch(stale_holder_key)
                    if _text(await pipe.get(stale_holder_key)) != slot_name:
                        stale_holder_key = None

                claim = Claim.create(pool, slot_name, holder, ttl, now=now)
                pipe.multi()
                if current is not None:
                    pipe.delete(self._lease_key(pool, current.lease_id))
                if stale_holder_key is not None:
                    pipe.delete(stale_holder_key)
                pipe.set(slot_key, self._encode(claim))
                pipe.set(self._lease_key(pool, claim.lease_id), slot_name)
                pipe.set(self._holder_key(pool, holder), slot_name)
                await pipe.execute()
                return claim

            raise PoolExhaustedError(pool)

        claim = await self._transact("claim", _claim)
        logger.info(f"Claimed {pool}/{claim.slot_name} for {holder} (lease={claim.lease_id})")
        return claim

    async def release(self, pool: str, lease_id: str) -> None:
        async def _release(pipe) -> Claim:
            slot_key, claim = await self._watch_by_lease(pipe, pool, lease_id)
            holder_key = self._holder_key(pool, claim.holder)
            await pipe.watch(holder_key)
            holder_slot = _text(await pipe.get(holder_key))

            pipe.multi()
            pipe.delete(slot_key, self._lease_key(pool, lease_id))
            if holder_slot == claim.slot_name:
                pipe.delete(holder_key)
            await pipe.execute()
            return claim

        claim = await self._transact("release", _release)
        logger.info(f"Released {pool}/{claim.slot_name} (lease={lease_id})")

    async def release_by_holder(self, pool: str, holder: str) -> None:
        holder_key = self._holder_key(pool, holder)

        async def _release_by_holder(pipe) -> Claim:
            await pipe.watch(holder_key)
            slot_name = _text(await pipe.get(holder_key))
            if slot_name is None:
                raise LeaseNotFoundError(pool, holder=holder)

            slot_key = self._slot_key(pool, slot_name)
            await pipe.watch(slot_key)
            claim = self._decode(await pipe.get(slot_key))
            if claim is None or claim.holder != holder or claim.is_expired(self._clock()):
                raise LeaseNotFoundError(pool, holder=holder)

            pipe.multi()
            pipe.delete(slot_key, self._lease_key(pool, claim.lease_id), holder_key)
            await pipe.execute()
            return claim

        claim = await self._transact("release_by_holder", _release_by_holder)
        logger.info(f"Released {pool}/{claim.slot_name} held by {holder}")

    async def renew(self, pool: str, lease_id: str, ttl: timedelta) -> Claim:
        if ttl <= timedelta(0):
            raise ValueError(f"ttl must be > 0, got {ttl}")

        async def _renew(pipe) -> Claim:
            slot_key, claim = await self._watch_by_lease(pipe, pool, lease_id)
            now = self._clock()
            if claim.is_expired(now):
                raise LeaseExpiredError(pool, lease_id, claim.expires_at)

            renewed = Claim(
                pool=claim.pool,
                slot_name=claim.slot_name,
                lease_id=claim.lease_id,
                holder=claim.holder,
                claimed_at=claim.claimed_at,
                expires_at=now + ttl,
            )
            pipe.multi()
            pipe.set(slot_key, self._encode(renewed))
            await pipe.execute()
            return renewed

        renewed = await self._transact("renew", _renew)
        logger.info(f"Renewed {pool}/{renewed.slot_name} until {renewed.expires_at.isoformat()}")
        return renewed

    async def status(self, pool: str, slot_names: list[str]) -> list[SlotStatus]:
        if not slot_names:
            return []
        redis = await self._get_redis()
        try:
            raw_docs = await redis.mget([self._slot_key(pool, name) for name in slot_names])
        except RedisError as e:
            logger.error(f"Redis failure in status: {e}")
            raise BackendError(f"redis status failed: {e}") from e

        now = self._clock()
        statuses = []
        for slot_name, raw in zip(slot_names, raw_docs):
            claim = self._decode(raw)
            if claim is not None and not claim.is_expired(now):
                statuses.append(SlotStatus(slot_name=slot_name, claimed=True, claim=claim))
            else:
                statuses.append(SlotStatus(slot_name=slot_name, claimed=False))
        return statuses

    async def validate_lease(self, pool: str, lease_id: str) -> Claim:
        redis = await self._get_redis()
        try:
            slot_name = _text(await redis.get(self._lease_key(pool, lease_id)))
            raw = None
            if slot_name is not None:
                raw = await redis.get(self._slot_key(pool, slot_name))
        except RedisError as e:
            logger.error(f"Redis failure in validate_lease: {e}")
            raise BackendError(f"redis validate_lease failed: {e}") from e

        claim = self._decode(raw)
        if claim is None or claim.lease_id != lease_id:
            logger.debug(f"Lease {lease_id} not found in pool {pool}")
            raise LeaseNotFoundError(pool, lease_id=lease_id)
        if claim.is_expired(self._clock()):
            logger.debug(f"Lease {lease_id} in pool {pool} expired at {claim.expires_at.isoformat()}")
            raise LeaseExpiredError(pool, lease_id, claim.expires_at)
        return claim

    async def health(self) -> tuple[bool, str]:
        """PING Redis; connection failures are reported, not raised."""
        try:
            redis = await self._get_redis()
        except BackendError as e:
            return False, str(e)
        try:
            healthy, message = await check_redis_health(redis)
        except RedisError as e:
            healthy, message = False, f"Redis error: {e}"
        if not healthy:
            logger.warning(f"Redis health check failed: {message}")
        return healthy, message

    async def close(self) -> None:
        """Close the Redis client if this store created it."""
        if self._redis is None or not self._owns_client:
            return
        client, self._redis = self._redis, None
        try:
            await close_redis_client(client)
        except RedisError as e:
            raise BackendError(f"failed to close Redis client: {e}") from e
