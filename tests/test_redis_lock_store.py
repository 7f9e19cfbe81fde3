"""
Redis Lock Store Tests

Covers the parts of RedisLockStore the shared contract tests cannot see:
- key layout and index maintenance
- optimistic transaction retries and conflict limits
- mutual exclusion across independent clients
- backend error translation
- cancellation mid-transaction
- health checks
- client ownership on close()
"""

import asyncio
import json
from datetime import timedelta

import fakeredis
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import WatchError

from claimenv.errors import (
    BackendError,
    LeaseNotFoundError,
    PoolExhaustedError,
    TransactionConflictError,
)
from claimenv.lockstore import RedisLockStore
from claimenv.lockstore import redis_store as redis_store_module

SLOTS = ["alpha", "beta"]
TTL = timedelta(hours=1)


@pytest.mark.asyncio
@pytest.mark.requires_redis
async def test_claim_writes_slot_lease_and_holder_keys(redis_lock_store, redis_client):
    """
    Verify claim() stores the claim document and both lookup indexes.
    """
    claim = await redis_lock_store.claim("testpool", SLOTS, "holder-a", TTL)

    doc = json.loads(await redis_client.get("test:testpool:slot:alpha"))
    assert doc["lease_id"] == claim.lease_id
    assert doc["holder"] == "holder-a"
    assert await redis_client.get(f"test:testpool:lease:{claim.lease_id}") == "alpha"
    assert await redis_client.get("test:testpool:holder:holder-a") == "alpha"
    assert await redis_client.exists("test:testpool:slot:beta") == 0


@pytest.mark.asyncio
@pytest.mark.requires_redis
async def test_release_removes_every_key(redis_lock_store, redis_client):
    """
    Verify release() leaves no trace of the claim behind.
    """
    claim = await redis_lock_store.claim("testpool", SLOTS, "holder-a", TTL)
    await redis_lock_store.release("testpool", claim.lease_id)

    assert await redis_client.keys("test:*") == []


@pytest.mark.asyncio
@pytest.mark.requires_redis
async def test_release_by_holder_removes_every_key(redis_lock_store, redis_client):
    await redis_lock_store.claim("testpool", SLOTS, "holder-a", TTL)
    await redis_lock_store.release_by_holder("testpool", "holder-a")

    assert await redis_client.keys("test:*") == []


@pytest.mark.asyncio
@pytest.mark.requires_redis
async def test_superseding_expired_claim_cleans_old_indexes(redis_lock_store, redis_client, clock):
    """
    Verify a new claim over an expired one drops the stale lease and holder indexes.
    """
    stale = await redis_lock_store.claim("testpool", ["alpha"], "holder-a", TTL)
    clock.advance(hours=2)

    fresh = await redis_lock_store.claim("testpool", ["alpha"], "holder-b", TTL)

    assert await redis_client.exists(f"test:testpool:lease:{stale.lease_id}") == 0
    assert await redis_client.exists("test:testpool:holder:holder-a") == 0
    assert await redis_client.get(f"test:testpool:lease:{fresh.lease_id}") == "alpha"
    assert await redis_client.get("test:testpool:holder:holder-b") == "alpha"

    with pytest.raises(LeaseNotFoundError):
        await redis_lock_store.release_by_holder("testpool", "holder-a")


@pytest.mark.asyncio
@pytest.mark.requires_redis
async def test_release_with_dangling_lease_index_is_not_found(redis_lock_store, redis_client):
    """
    A lease index pointing at a slot owned by another lease never validates.
    """
    claim = await redis_lock_store.claim("testpool", SLOTS, "holder-a", TTL)
    await redis_client.set("test:testpool:lease:forged", claim.slot_name)

    with pytest.raises(LeaseNotFoundError):
        await redis_lock_store.release("testpool", "forged")
    with pytest.raises(LeaseNotFoundError):
        await redis_lock_store.validate_lease("testpool", "forged")

    assert (await redis_lock_store.validate_lease("testpool", claim.lease_id)).holder == "holder-a"


@pytest.mark.asyncio
@pytest.mark.requires_redis
async def test_concurrent_claims_across_clients_never_share_a_slot(redis_server, clock):
    """
    Verify independent clients racing for a pool each get a distinct slot.
    """
    slots = ["s1", "s2", "s3"]
    clients = [
        fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True) for _ in range(8)
    ]
    stores = [RedisLockStore(redis=client, prefix="race", clock=clock) for client in clients]

    try:
        results = await asyncio.gather(
            *(store.claim("racepool", slots, f"holder-{i}", TTL) for i, store in enumerate(stores)),
            return_exceptions=True,
        )
    finally:
        for client in clients:
            await client.aclose()

    claims = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]

    assert sorted(c.slot_name for c in claims) == slots
    assert len({c.holder for c in claims}) == 3
    assert len(failures) == 5
    assert all(isinstance(f, PoolExhaustedError) for f in failures)


@pytest.mark.asyncio
@pytest.mark.requires_redis
async def test_transact_retries_after_watched_key_changes(redis_lock_store, redis_server):
    """
    Verify a write by another client between WATCH and EXEC forces a retry.
    """
    intruder = fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True)
    attempts = 0

    async def body(pipe):
        nonlocal attempts
        attempts += 1
        await pipe.watch("test:counter")
        await pipe.get("test:counter")
        if attempts == 1:
            await intruder.set("test:counter", "intruder")
        pipe.multi()
        pipe.set("test:counter", "mine")
        await pipe.execute()
        return attempts

    try:
        assert await redis_lock_store._transact("test", body) == 2
        assert await intruder.get("test:counter") == "mine"
    finally:
        await intruder.aclose()


@pytest.mark.asyncio
@pytest.mark.requires_redis
async def test_transact_gives_up_after_max_retries(redis_client, clock):
    store = RedisLockStore(redis=redis_client, prefix="test", max_retries=3, clock=clock)
    attempts = 0

    async def body(pipe):
        nonlocal attempts
        attempts += 1
        raise WatchError("conflict")

    with pytest.raises(TransactionConflictError):
        await store._transact("test", body)
    assert attempts == 3


@pytest.mark.asyncio
@pytest.mark.requires_redis
async def test_transact_wraps_redis_errors(redis_lock_store):
    async def body(pipe):
        raise RedisConnectionError("connection reset")

    with pytest.raises(BackendError, match="connection reset"):
        await redis_lock_store._transact("test", body)


def _block_pipeline_at(monkeypatch, redis_client, method):
    """
    Make the first pipeline stall inside pipe.<method> until cancelled.

    Returns an Event set once the stall is reached.
    """
    reached = asyncio.Event()
    original_pipeline = redis_client.pipeline
    calls = 0

    def pipeline(*args, **kwargs):
        nonlocal calls
        calls += 1
        pipe = original_pipeline(*args, **kwargs)
        if calls == 1:
            original = getattr(pipe, method)

            async def stalled(*a, **kw):
                reached.set()
                await asyncio.Event().wait()
                return await original(*a, **kw)

            setattr(pipe, method, stalled)
        return pipe

    monkeypatch.setattr(redis_client, "pipeline", pipeline)
    return reached


@pytest.mark.asyncio
@pytest.mark.requires_redis
@pytest.mark.parametrize("stall_at", ["mget", "execute"])
async def test_cancelled_claim_writes_nothing(
    redis_lock_store, redis_client, monkeypatch, stall_at
):
    """
    Verify a claim cancelled after WATCH (before or after MULTI) leaves no keys
    behind and the slot stays claimable.
    """
    reached = _block_pipeline_at(monkeypatch, redis_client, stall_at)

    task = asyncio.create_task(redis_lock_store.claim("testpool", SLOTS, "holder-a", TTL))
    await asyncio.wait_for(reached.wait(), timeout=5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert await redis_client.keys("test:*") == []

    claim = await redis_lock_store.claim("testpool", SLOTS, "holder-b", TTL)
    assert claim.slot_name == "alpha"
    assert await redis_client.get("test:testpool:holder:holder-b") == "alpha"
    assert await redis_client.get("test:testpool:holder:holder-a") is None


@pytest.mark.asyncio
@pytest.mark.requires_redis
async def test_health_reports_reachable_redis(redis_lock_store):
    healthy, message = await redis_lock_store.health()

    assert healthy is True
    assert "succeeded" in message


@pytest.mark.asyncio
async def test_health_reports_failed_ping():
    class DownRedis:
        async def ping(self):
            raise RedisConnectionError("connection refused")

    store = RedisLockStore(redis=DownRedis(), prefix="test")

    healthy, message = await store.health()

    assert healthy is False
    assert "connection refused" in message


@pytest.mark.asyncio
async def test_health_reports_connect_failure(monkeypatch):
    async def failing_connect(url=None):
        raise RedisConnectionError("refused")

    monkeypatch.setattr(redis_store_module, "create_redis_client", failing_connect)
    store = RedisLockStore(url="redis://unreachable:6379", prefix="test")

    healthy, message = await store.health()

    assert healthy is False
    assert "unreachable" in message


@pytest.mark.asyncio
async def test_connect_failure_raises_backend_error(monkeypatch):
    """
    Verify a store that cannot reach Redis reports a BackendError.
    """

    async def failing_connect(url=None):
        raise RedisConnectionError("refused")

    monkeypatch.setattr(redis_store_module, "create_redis_client", failing_connect)
    store = RedisLockStore(url="redis://unreachable:6379", prefix="test")

    with pytest.raises(BackendError, match="unreachable"):
        await store.claim("testpool", SLOTS, "holder-a", TTL)


@pytest.mark.asyncio
async def test_close_only_closes_owned_client(monkeypatch, redis_server):
    closed = []

    async def fake_connect(url=None):
        return fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True)

    async def fake_close(client):
        closed.append(client)

    monkeypatch.setattr(redis_store_module, "create_redis_client", fake_connect)
    monkeypatch.setattr(redis_store_module, "close_redis_client", fake_close)

    injected = fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True)
    borrowed = RedisLockStore(redis=injected, prefix="test")
    await borrowed.status("testpool", SLOTS)
    await borrowed.close()
    assert closed == []
    assert await injected.ping()
    await injected.aclose()

    owned = RedisLockStore(url="redis://fake:6379", prefix="test")
    await owned.status("testpool", SLOTS)
    await owned.close()
    assert len(closed) == 1

    # Second close is a no-op
    await owned.close()
    assert len(closed) == 1
