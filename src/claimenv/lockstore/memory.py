"""In-process lock store for local development and tests."""

import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from loguru import logger

from ..errors import LeaseExpiredError, LeaseNotFoundError, PoolExhaustedError
from .base import Claim, LockStore, SlotStatus, utcnow, validate_claim_args


class InMemoryLockStore(LockStore):
    """
    Mutex-guarded map of (pool, slot_name) -> Claim.

    One lock covers every operation for its whole duration, so the
    scan-and-write in claim() is serialized the same way a transaction
    would serialize it. Nothing awaits while the lock is held.

    Only coordinates callers inside a single process.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._lock = threading.Lock()
        self._slots: dict[tuple[str, str], Claim] = {}
        self._clock = clock or utcnow

    def _find_by_lease(self, pool: str, lease_id: str) -> Optional[Claim]:
        for (claim_pool, _), claim in self._slots.items():
            if claim_pool == pool and claim.lease_id == lease_id:
                return claim
        return None

    async def claim(
        self, pool: str, slot_names: list[str], holder: str, ttl: timedelta
    ) -> Claim:
        validate_claim_args(slot_names, holder, ttl)

        with self._lock:
            now = self._clock()

            for slot_name in slot_names:
                existing = self._slots.get((pool, slot_name))
                if existing is not None and existing.holder == holder and not existing.is_expired(now):
                    logger.debug(f"Re-claim by {holder} returns existing slot {pool}/{slot_name}")
                    return existing

            for slot_name in slot_names:
                existing = self._slots.get((pool, slot_name))
                if existing is None or existing.is_expired(now):
                    claim = Claim.create(pool, slot_name, holder, ttl, now=now)
                    self._slots[(pool, slot_name)] = claim
                    logger.info(f"Claimed {pool}/{slot_name} for {holder} (lease={claim.lease_id})")
                    return claim

        raise PoolExhaustedError(pool)

    async def release(self, pool: str, lease_id: str) -> None:
        with self._lock:
            claim = self._find_by_lease(pool, lease_id)
            if claim is None:
                raise LeaseNotFoundError(pool, lease_id=lease_id)
            del self._slots[(pool, claim.slot_name)]
        logger.info(f"Released {pool}/{claim.slot_name} (lease={lease_id})")

    async def release_by_holder(self, pool: str, holder: str) -> None:
        with self._lock:
            now = self._clock()
            for (claim_pool, slot_name), claim in list(self._slots.items()):
                if claim_pool == pool and claim.holder == holder and not claim.is_expired(now):
                    del self._slots[(pool, slot_name)]
                    logger.info(f"Released {pool}/{slot_name} held by {holder}")
                    return
        raise LeaseNotFoundError(pool, holder=holder)

    async def renew(self, pool: str, lease_id: str, ttl: timedelta) -> Claim:
        if ttl <= timedelta(0):
            raise ValueError(f"ttl must be > 0, got {ttl}")

        with self._lock:
            now = self._clock()
            claim = self._find_by_lease(pool, lease_id)
            if claim is None:
                raise LeaseNotFoundError(pool, lease_id=lease_id)
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
            self._slots[(pool, claim.slot_name)] = renewed

        logger.info(f"Renewed {pool}/{renewed.slot_name} until {renewed.expires_at.isoformat()}")
        return renewed

    async def status(self, pool: str, slot_names: list[str]) -> list[SlotStatus]:
        with self._lock:
            now = self._clock()
            statuses = []
            for slot_name in slot_names:
                claim = self._slots.get((pool, slot_name))
                if claim is not None and not claim.is_expired(now):
                    statuses.append(SlotStatus(slot_name=slot_name, claimed=True, claim=claim))
                else:
                    statuses.append(SlotStatus(slot_name=slot_name, claimed=False))
            return statuses

    async def validate_lease(self, pool: str, lease_id: str) -> Claim:
        with self._lock:
            now = self._clock()
            claim = self._find_by_lease(pool, lease_id)

        if claim is None:
            raise LeaseNotFoundError(pool, lease_id=lease_id)
        if claim.is_expired(now):
            raise LeaseExpiredError(pool, lease_id, claim.expires_at)
        return claim

    async def close(self) -> None:
        return None
