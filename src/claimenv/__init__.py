"""claimenv - exclusive, time-bounded claims on pooled credential sets."""

__version__ = "0.1.0"

from .engine import Engine
from .errors import (
    BackendError,
    ClaimenvError,
    CloseError,
    ConfigError,
    KeyNotDefinedError,
    LeaseExpiredError,
    LeaseNotFoundError,
    PoolExhaustedError,
    PoolNotFoundError,
)
from .lease import Lease
from .lockstore import Claim, InMemoryLockStore, LockStore, RedisLockStore, SlotStatus
from .secretstore import InMemorySecretStore, SecretStore

__all__ = [
    "BackendError",
    "Claim",
    "ClaimenvError",
    "CloseError",
    "ConfigError",
    "Engine",
    "InMemoryLockStore",
    "InMemorySecretStore",
    "KeyNotDefinedError",
    "Lease",
    "LeaseExpiredError",
    "LeaseNotFoundError",
    "LockStore",
    "PoolExhaustedError",
    "PoolNotFoundError",
    "RedisLockStore",
    "SecretStore",
    "SlotStatus",
    "__version__",
]
