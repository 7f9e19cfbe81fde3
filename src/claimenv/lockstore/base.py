"""Lock store contract and the value types it produces."""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    """Current wall-clock time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Claim:
    """
    Allocation record for one slot in a pool.

    The lease_id is generated at claim time and is the only credential that
    proves ownership on later release/renew/validate calls.

    Invariants:
    - at most one active (non-expired) claim per (pool, slot_name)
    - an expired claim never blocks allocation and never validates
    - expires_at > claimed_at
    """

    pool: str
    slot_name: str
    lease_id: str
    holder: str
    claimed_at: datetime
    expires_at: datetime

    @classmethod
    def create(
        cls,
        pool: str,
        slot_name: str,
        holder: str,
        ttl: timedelta,
        now: Optional[datetime] = None,
    ) -> "Claim":
        """
        Create a fresh claim with a new lease id.

        Args:
            pool: Pool name
            slot_name: Slot being claimed
            holder: Identity of the claimant
            ttl: Lease duration (must be > 0)
            now: Claim time (defaults to the current time)

        Returns:
            New Claim instance
        """
        now = now or utcnow()
        return cls(
            pool=pool,
            slot_name=slot_name,
            lease_id=str(uuid.uuid4()),
            holder=holder,
            claimed_at=now,
            expires_at=now + ttl,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True once wall-clock time has passed expires_at."""
        return (now or utcnow()) > self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "pool": self.pool,
            "slot_name": self.slot_name,
            "lease_id": self.lease_id,
            "holder": self.holder,
            "claimed_at": self.claimed_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Claim":
        return cls(
            pool=data["pool"],
            slot_name=data["slot_name"],
            lease_id=data["lease_id"],
            holder=data["holder"],
            claimed_at=datetime.fromisoformat(data["claimed_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )


@dataclass(frozen=True)
class SlotStatus:
    """Read-only projection of one slot; derived on demand, never stored."""

    slot_name: str
    claimed: bool
    claim: Optional[Claim] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"slot_name": self.slot_name, "claimed": self.claimed}
        if self.claim is not None:
            data["claim"] = self.claim.to_dict()
        return data


def validate_claim_args(slot_names: list[str], holder: str, ttl: timedelta) -> None:
    """
    Validate arguments shared by every LockStore.claim implementation.

    Raises:
        ValueError: If slot_names is empty or has duplicates, holder is
            blank, or ttl is not positive
    """
    if not slot_names:
        raise ValueError("slot_names must not be empty")
    if len(set(slot_names)) != len(slot_names):
        raise ValueError(f"slot_names must be unique, got {slot_names}")
    if not holder or not holder.strip():
        raise ValueError("holder must not be empty")
    if ttl <= timedelta(0):
        raise ValueError(f"ttl must be > 0, got {ttl}")


class LockStore(ABC):
    """
    Exclusive, time-bounded leases on the slots of named pools.

    Implementations must make claim() atomic: two concurrent callers can
    never both allocate the same slot.
    """

    @abstractmethod
    async def claim(
        self, pool: str, slot_names: list[str], holder: str, ttl: timedelta
    ) -> Claim:
        """
        Find or create an allocation for holder in pool.

        An active claim already held by holder is returned unchanged.
        Otherwise the first free (unclaimed or expired) slot in slot_names
        order is claimed.

        Raises:
            PoolExhaustedError: If no slot is free
        """

    @abstractmethod
    async def release(self, pool: str, lease_id: str) -> None:
        """
        Clear the claim whose lease id matches.

        Raises:
            LeaseNotFoundError: If no claim carries lease_id
        """

    @abstractmethod
    async def release_by_holder(self, pool: str, holder: str) -> None:
        """
        Clear holder's active claim without needing the lease id.

        Used for crash recovery when the local lease file is lost.

        Raises:
            LeaseNotFoundError: If holder has no active claim in pool
        """

    @abstractmethod
    async def renew(self, pool: str, lease_id: str, ttl: timedelta) -> Claim:
        """
        Extend expires_at to now + ttl.

        Raises:
            LeaseNotFoundError: If no claim carries lease_id
            LeaseExpiredError: If the claim already expired
        """

    @abstractmethod
    async def status(self, pool: str, slot_names: list[str]) -> list[SlotStatus]:
        """Return one SlotStatus per requested slot, in the same order."""

    @abstractmethod
    async def validate_lease(self, pool: str, lease_id: str) -> Claim:
        """
        Read-only freshness and ownership check.

        Raises:
            LeaseNotFoundError: If no claim carries lease_id
            LeaseExpiredError: If the claim has expired
        """

    async def health(self) -> tuple[bool, str]:
        """
        Report whether the backend is reachable, as (healthy, message).

        Stores without a connection are always healthy.
        """
        return True, f"{type(self).__name__} has no remote backend"

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
