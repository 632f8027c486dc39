"""
Store connection management.
Handles creation and teardown of the shared async Redis client.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as redis
from redis.exceptions import RedisError

from jobqueue.exceptions import StoreError

logger = logging.getLogger(__name__)


def create_client(url: str) -> redis.Redis:
    """
    Create the async Redis client for a connection string.

    No connection is opened until the first command.

    Args:
        url: Redis connection URL.

    Returns:
        Redis: The client instance.
    """
    client = redis.from_url(
        url,
        decode_responses=True,
        encoding="utf-8",
        health_check_interval=30,
    )
    logger.info("Queue store client configured", extra={"url": _redact(url)})
    return client


async def close_client(client: redis.Redis) -> None:
    """Close the client and its connection pool."""
    await client.aclose()
    logger.info("Queue store connection closed")


@asynccontextmanager
async def store_errors(operation: str) -> AsyncIterator[None]:
    """
    Translate Redis failures into StoreError.

    Used at the producer/admin boundary so callers can tell connection-level
    problems apart from not-found or business failures.
    """
    try:
        yield
    except RedisError as e:
        logger.error(
            "Store operation failed",
            extra={"operation": operation, "error": str(e)},
        )
        raise StoreError(f"{operation} failed: {e}") from e


def _redact(url: str) -> str:
    """Hide the password part of a connection URL."""
    if "@" not in url:
        return url
    scheme, _, rest = url.partition("://")
    _, _, host = rest.rpartition("@")
    return f"{scheme}://***@{host}"
