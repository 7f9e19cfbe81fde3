"""Build lock and secret stores from the backend section of the config."""

from .engine import Engine
from .errors import ConfigError
from .lockstore import InMemoryLockStore, LockStore, RedisLockStore
from .pools import ClaimenvConfig, LockBackendConfig, SecretBackendConfig
from .secretstore import InMemorySecretStore, SecretStore

LOCK_BACKENDS = ("memory", "redis")
SECRET_BACKENDS = ("memory", "gcp-secret-manager")


def build_lock_store(cfg: LockBackendConfig) -> LockStore:
    if cfg.type == "memory":
        return InMemoryLockStore()
    if cfg.type == "redis":
        return RedisLockStore(url=cfg.url, prefix=cfg.prefix)
    raise ConfigError(f"unknown lock backend type: '{cfg.type}' (expected one of {', '.join(LOCK_BACKENDS)})")


def build_secret_store(cfg: SecretBackendConfig) -> SecretStore:
    if cfg.type == "memory":
        return InMemorySecretStore()
    if cfg.type == "gcp-secret-manager":
        if not cfg.project:
            raise ConfigError("backend.secrets.project is required for gcp-secret-manager")
        from .secretstore.gcp import GCPSecretStore

        return GCPSecretStore(project=cfg.project)
    raise ConfigError(
        f"unknown secret backend type: '{cfg.type}' (expected one of {', '.join(SECRET_BACKENDS)})"
    )


def build_engine(config: ClaimenvConfig, holder: str) -> Engine:
    """Wire an Engine from config; the engine never sees the type tags."""
    return Engine(
        config=config,
        lock_store=build_lock_store(config.lock),
        secret_store=build_secret_store(config.secrets),
        holder=holder,
    )
