"""Async Redis client construction and health checks."""

import asyncio
import time
from typing import Any, Optional, Tuple

from loguru import logger

from redis import asyncio as aioredis

from .config import Config

_REDIS_SLOW_OPERATION_MS = 100.0


class InstrumentedRedis(aioredis.Redis):
    """Redis client that logs slow commands."""

    async def execute_command(self, *args: Any, **options: Any) -> Any:
        command = "unknown"
        if args:
            command = args[0]
            if isinstance(command, bytes):
                command = command.decode("utf-8", errors="ignore")
            else:
                command = str(command)
        start_time = time.perf_counter()
        try:
            return await super().execute_command(*args, **options)
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000.0
            if duration_ms > _REDIS_SLOW_OPERATION_MS:
                logger.warning(
                    "Slow Redis operation detected (command={}, duration_ms={:.2f})",
                    command,
                    duration_ms,
                )


async def create_redis_client(url: Optional[str] = None) -> aioredis.Redis:
    """
    Create a pooled Redis client and verify it with PING.

    Connection failures are retried with exponential backoff up to
    Config.REDIS_CONNECT_RETRIES attempts.

    Args:
        url: Redis URL (defaults to Config.REDIS_URL)

    Returns:
        Connected client; the caller owns it and must close it

    Raises:
        redis.ConnectionError / redis.TimeoutError: When retries are exhausted
    """
    url = url or Config.REDIS_URL

    for attempt in range(1, Config.REDIS_CONNECT_RETRIES + 1):
        pool = aioredis.ConnectionPool.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=Config.REDIS_MAX_CONNECTIONS,
            socket_connect_timeout=Config.REDIS_SOCKET_CONNECT_TIMEOUT,
            socket_timeout=Config.REDIS_SOCKET_TIMEOUT,
        )
        client = InstrumentedRedis(connection_pool=pool)
        try:
            await client.ping()
            _log_pool_stats(pool, "ready")
            return client
        except (aioredis.ConnectionError, aioredis.TimeoutError) as exc:
            logger.warning(
                "Redis connection attempt {}/{} failed: {}",
                attempt,
                Config.REDIS_CONNECT_RETRIES,
                exc,
            )
            await client.aclose()
            await pool.disconnect()
            if attempt >= Config.REDIS_CONNECT_RETRIES:
                logger.error("Redis connection retries exhausted")
                raise
            backoff = min(
                Config.REDIS_CONNECT_RETRY_DELAY * (2 ** (attempt - 1)),
                Config.REDIS_CONNECT_RETRY_MAX_DELAY,
            )
            await asyncio.sleep(backoff)


def _log_pool_stats(pool: aioredis.ConnectionPool, context: str) -> None:
    in_use = len(getattr(pool, "_in_use_connections", ()))
    available = len(getattr(pool, "_available_connections", ()))
    logger.debug(
        "Redis pool {}: in_use={}, idle={}, max={}",
        context,
        in_use,
        available,
        pool.max_connections,
    )


async def close_redis_client(client: aioredis.Redis) -> None:
    """Close a client created by create_redis_client and its pool."""
    await client.aclose()
    await client.connection_pool.disconnect()


async def check_redis_health(client: aioredis.Redis) -> Tuple[bool, str]:
    """Ping Redis to verify connectivity and return status."""
    try:
        result = await client.ping()
        if result is True or result == "PONG":
            return True, "Redis ping succeeded"
        return False, f"Unexpected Redis ping response: {result}"
    except (aioredis.ConnectionError, aioredis.TimeoutError) as exc:
        return False, f"Redis connection failed: {exc}"
