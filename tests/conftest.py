"""Pytest fixtures and test utilities for the claimenv test suite."""

from datetime import datetime, timedelta, timezone

import fakeredis
import pytest

from claimenv.engine import Engine
from claimenv.lockstore import InMemoryLockStore, RedisLockStore
from claimenv.pools import (
    ClaimenvConfig,
    LockBackendConfig,
    PoolConfig,
    SecretBackendConfig,
    SlotConfig,
)
from claimenv.secretstore import InMemorySecretStore


# ============================================================================
# CLOCK
# ============================================================================


class FakeClock:
    """Controllable time source; call it to get "now"."""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


# ============================================================================
# REDIS FIXTURES
# ============================================================================


@pytest.fixture
def redis_server():
    """One in-memory Redis server; clients created from it share state."""
    return fakeredis.FakeServer()


@pytest.fixture
async def redis_client(redis_server):
    """
    Provide a clean Redis connection.

    Yields:
        Async Redis client backed by fakeredis

    Cleanup:
        Flushes the database and closes the client
    """
    client = fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True)
    try:
        await client.flushdb()
        yield client
    finally:
        await client.flushdb()
        await client.aclose()


# ============================================================================
# LOCK STORE FIXTURES
# ============================================================================


@pytest.fixture
def memory_lock_store(clock):
    return InMemoryLockStore(clock=clock)


@pytest.fixture
def redis_lock_store(redis_client, clock):
    return RedisLockStore(redis=redis_client, prefix="test", clock=clock)


@pytest.fixture(params=["memory", "redis"])
def lock_store(request, clock, redis_client):
    """Every LockStore implementation, for contract tests."""
    if request.param == "memory":
        return InMemoryLockStore(clock=clock)
    return RedisLockStore(redis=redis_client, prefix="test", clock=clock)


# ============================================================================
# ENGINE FIXTURES
# ============================================================================


TEST_POOL = PoolConfig(
    name="testpool",
    slots=(SlotConfig(name="alpha"), SlotConfig(name="beta")),
    keys=("SHOPIFY_API_KEY", "APP_URL"),
    ttl=timedelta(hours=1),
)


@pytest.fixture
def claimenv_config():
    return ClaimenvConfig(
        lock=LockBackendConfig(type="memory"),
        secrets=SecretBackendConfig(type="memory"),
        pools={"testpool": TEST_POOL},
    )


@pytest.fixture
def secret_store():
    return InMemorySecretStore()


@pytest.fixture
def engine(claimenv_config, lock_store, secret_store):
    """Engine over each lock store implementation with an in-memory secret store."""
    return Engine(
        config=claimenv_config,
        lock_store=lock_store,
        secret_store=secret_store,
        holder="test-holder",
    )


@pytest.fixture
def engine_for(engine):
    """
    Build engines sharing engine's stores but claiming as another holder.

    Returns:
        Callable: engine_for(holder) -> Engine
    """

    def _engine_for(holder: str) -> Engine:
        return Engine(
            config=engine.config,
            lock_store=engine.lock_store,
            secret_store=engine.secret_store,
            holder=holder,
        )

    return _engine_for
