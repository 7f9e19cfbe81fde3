"""Engine binding pool configuration, the lock store and the secret store."""

from loguru import logger

from .errors import CloseError
from .lease import Lease
from .lockstore.base import LockStore, SlotStatus
from .pools import ClaimenvConfig
from .secretstore.base import SecretStore


class Engine:
    """
    Lease lifecycle (claim, validate, renew, release) bound to secret I/O.

    Built once per process from explicit dependencies; holds no global
    state. Every secret read or write is preceded by validate_lease, which
    is what keeps writers to a slot mutually exclusive: the secret store
    itself does no coordination, and a whole-value write is not a
    compare-and-swap.
    """

    def __init__(
        self,
        config: ClaimenvConfig,
        lock_store: LockStore,
        secret_store: SecretStore,
        holder: str,
    ):
        if not holder or not holder.strip():
            raise ValueError("holder must not be empty")
        self.config = config
        self.lock_store = lock_store
        self.secret_store = secret_store
        self.holder = holder

    async def claim(self, pool_name: str) -> Lease:
        """
        Claim a free slot in pool_name for this engine's holder.

        Raises:
            PoolNotFoundError: If the pool is not configured
            PoolExhaustedError: If every slot is actively claimed
        """
        pool = self.config.pool(pool_name)
        claim = await self.lock_store.claim(pool_name, pool.slot_names(), self.holder, pool.ttl)
        return Lease.from_claim(claim, pool.secrets_for_slot(claim.slot_name))

    async def release(self, lease: Lease) -> None:
        """Validate and release the claim behind lease."""
        await self.lock_store.validate_lease(lease.pool, lease.lease_id)
        await self.lock_store.release(lease.pool, lease.lease_id)

    async def release_by_holder(self, pool_name: str) -> None:
        """Release this holder's claim in pool_name without a lease file."""
        await self.lock_store.release_by_holder(pool_name, self.holder)

    async def renew(self, lease: Lease) -> Lease:
        """
        Extend lease by the pool's TTL.

        The secret names already resolved in lease are carried over as-is.
        """
        pool = self.config.pool(lease.pool)
        claim = await self.lock_store.renew(lease.pool, lease.lease_id, pool.ttl)
        return Lease.from_claim(claim, lease.secrets)

    async def status(self, pool_name: str) -> list[SlotStatus]:
        pool = self.config.pool(pool_name)
        return await self.lock_store.status(pool_name, pool.slot_names())

    async def read_key(self, lease: Lease, key: str) -> str:
        await self.lock_store.validate_lease(lease.pool, lease.lease_id)
        secret_name = lease.secret_name(key)
        return await self.secret_store.read(secret_name)

    async def read_all(self, lease: Lease) -> dict[str, str]:
        """Read every key of the claimed slot; returns key -> value."""
        await self.lock_store.validate_lease(lease.pool, lease.lease_id)
        values = {}
        for key, secret_name in lease.secrets.items():
            values[key] = await self.secret_store.read(secret_name)
        return values

    async def write_key(self, lease: Lease, key: str, value: str) -> None:
        await self.lock_store.validate_lease(lease.pool, lease.lease_id)
        secret_name = lease.secret_name(key)
        await self.secret_store.write(secret_name, value)
        logger.info(f"Wrote {key} to {lease.pool}/{lease.slot_name}")

    def secret_name(self, lease: Lease, key: str) -> str:
        """Secret name for key, without touching any backend."""
        return lease.secret_name(key)

    async def health(self) -> tuple[bool, str]:
        """Connectivity of the lock store, as (healthy, message)."""
        return await self.lock_store.health()

    async def close(self) -> None:
        """
        Close both stores.

        Raises:
            CloseError: Carrying every failure, if any store failed to close
        """
        errors = []
        for store in (self.lock_store, self.secret_store):
            try:
                await store.close()
            except Exception as e:
                logger.error(f"Failed to close {type(store).__name__}: {e}")
                errors.append(e)
        if errors:
            raise CloseError(errors)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
