"""Lock stores: exclusive, time-bounded claims on pool slots."""

from .base import Claim, LockStore, SlotStatus
from .memory import InMemoryLockStore
from .redis_store import RedisLockStore

__all__ = ["Claim", "InMemoryLockStore", "LockStore", "RedisLockStore", "SlotStatus"]
