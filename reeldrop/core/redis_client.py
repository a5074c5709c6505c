# reeldrop/core/redis_client.py
from __future__ import annotations

"""
ReelDrop — Redis Client (Async)
===============================
Single wrapper for Redis access, owned by the `ServiceContext`.

What this provides
------------------
• Resilient connection manager with retries & backoff
• Pooled async client with health checks
• Generic JSON set/get helpers (presigned URL cache)
• Async **distributed lock** (native lock preferred; `SET NX` fallback), used
  to keep a single in-flight transcode trigger per file

Public API
----------
- await redis.connect() / await redis.close() / await redis.is_connected()
- redis.client
- await redis.json_set(key, value, ttl_seconds=None)
- await redis.json_get(key, default=None)
- async with redis.lock(name, timeout=30, blocking_timeout=0): ...

Failure semantics
-----------------
• `lock` raises `LockNotAcquiredError` (a `TimeoutError`) when not acquired in time.
• Helpers raise `RuntimeError` when called before `connect()`.
"""

import asyncio
import inspect
import json
import logging
import os
import random
import time
from contextlib import asynccontextmanager
from typing import Any, Optional, Protocol
from urllib.parse import urlparse

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger("reeldrop.redis")


class LockNotAcquiredError(TimeoutError):
    """Lock held by someone else past `blocking_timeout`."""

# ─────────────────────────────────────────────────────────────────────────────
# Tunables (env-aware sensible defaults)
# ─────────────────────────────────────────────────────────────────────────────
MAX_RETRIES = int(os.getenv("REDIS_CONNECT_MAX_RETRIES", "5"))
BASE_DELAY = float(os.getenv("REDIS_CONNECT_BASE_DELAY", "0.3"))  # seconds
HEALTH_CHECK_INTERVAL = int(os.getenv("REDIS_HEALTH_CHECK_INTERVAL", "30"))
SOCKET_TIMEOUT = float(os.getenv("REDIS_SOCKET_TIMEOUT", "3"))
SOCKET_CONNECT_TIMEOUT = float(os.getenv("REDIS_SOCKET_CONNECT_TIMEOUT", "3"))
POOL_MAX_CONNECTIONS = int(os.getenv("REDIS_POOL_MAX_CONNECTIONS", "64"))
CLIENT_NAME = os.getenv("REDIS_CLIENT_NAME", "reeldrop-api")


class _RedisProto(Protocol):
    async def ping(self) -> Any: ...
    async def set(self, name: str, value: Any, *, ex: Optional[int] = None, nx: Optional[bool] = None) -> Any: ...
    async def get(self, name: str) -> Any: ...
    async def delete(self, *names: Any) -> Any: ...
    async def close(self) -> Any: ...


# ─────────────────────────────────────────────────────────────────────────────
# Client
# ─────────────────────────────────────────────────────────────────────────────
class RedisClient:
    """
    Redis connection manager (asyncio).

    Parameters
    ----------
    redis_url : str
        `redis://` or `rediss://` URL.
    """

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self._client: Optional[_RedisProto] = None

    # ── lifecycle ────────────────────────────────────────────────────────────
    async def connect(self) -> None:
        """
        Establish a connection with retries.

        Steps
        -----
        - **[Step 1]** Reuse a healthy client when possible.
        - **[Step 2]** Attempt connection with backoff and jitter.
        """
        if self._client:
            try:
                await self._client.ping()
                return
            except RedisError:
                self._client = None

        last_err: Optional[Exception] = None
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                self._client = self._build_client()
                await self._client.ping()
                logger.info("Connected to Redis")
                return
            except (RedisError, OSError) as e:
                last_err = e
                delay = self._backoff(attempt)
                logger.warning(
                    "Redis connect attempt %s/%s failed: %r (retrying in %.2fs)",
                    attempt, MAX_RETRIES, e, delay,
                )
                await asyncio.sleep(delay)

        self._client = None
        logger.error("Redis connection failed after %s retries.", MAX_RETRIES)
        raise RuntimeError("Redis connection failed") from last_err

    async def close(self) -> None:
        """Gracefully close connection & pool."""
        if not self._client:
            return
        try:
            await self._client.close()
            logger.info("Redis connection closed.")
        except RedisError as e:
            logger.warning("Error closing Redis connection: %s", e)
        finally:
            self._client = None

    async def is_connected(self) -> bool:
        """Return True if `PING` succeeds (healthy connection)."""
        if not self._client:
            return False
        try:
            return bool(await self._client.ping())
        except RedisError:
            return False

    @property
    def client(self) -> _RedisProto:
        """Low-level client; ensure `connect()` was called at startup."""
        if not self._client:
            raise RuntimeError("Redis client not initialized. Call connect() first.")
        return self._client

    # ── JSON helpers ─────────────────────────────────────────────────────────
    async def json_set(self, key: str, value: Any, *, ttl_seconds: Optional[int] = None) -> None:
        """Generic JSON setter with optional TTL."""
        data = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
        if ttl_seconds:
            await self.client.set(key, data, ex=int(ttl_seconds))
        else:
            await self.client.set(key, data)

    async def json_get(self, key: str, default: Any = None) -> Any:
        """Generic JSON getter with a default on miss/parse error."""
        raw = await self.client.get(key)
        if raw is None:
            return default
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8", errors="replace")
        try:
            return json.loads(raw)
        except ValueError:
            return default

    # ── lock ─────────────────────────────────────────────────────────────────
    @asynccontextmanager
    async def lock(
        self,
        name: str,
        *,
        timeout: int = 30,
        blocking_timeout: float = 0,
        sleep: float = 0.1,
    ):
        """
        Async distributed lock.

        Priority & Behavior
        -------------------
        1) **Native Redis lock** (`client.lock(...)`) when the client exposes it.
        2) **SET NX EX spin-lock** otherwise; only the owner token releases.

        Raises
        ------
        LockNotAcquiredError
            If the lock is not acquired within `blocking_timeout` seconds
            (`0` means a single attempt).
        """
        rc = self.client

        if hasattr(rc, "lock"):
            lock_obj = rc.lock(name, timeout=timeout, sleep=sleep, blocking_timeout=blocking_timeout or None)
            res = lock_obj.acquire(blocking=blocking_timeout > 0)
            acquired = bool(await res if inspect.isawaitable(res) else res)
            if not acquired:
                raise LockNotAcquiredError(f"Failed to acquire lock: {name}")
            try:
                yield
            finally:
                try:
                    rel = lock_obj.release()
                    if inspect.isawaitable(rel):
                        await rel
                except RedisError:
                    logger.debug("Redis lock release failed (expired?)", exc_info=True)
            return

        token = f"{time.time_ns()}-{os.getpid()}-{random.randint(0, 1_000_000)}"
        deadline = time.monotonic() + max(0.0, float(blocking_timeout))
        while True:
            if await rc.set(name, token, ex=int(timeout), nx=True):
                break
            if time.monotonic() >= deadline:
                raise LockNotAcquiredError(f"Failed to acquire lock: {name}")
            await asyncio.sleep(sleep)
        try:
            yield
        finally:
            val = await rc.get(name)
            if isinstance(val, (bytes, bytearray)):
                val = val.decode("utf-8", errors="ignore")
            if val == token:
                await rc.delete(name)

    # ── internals ───────────────────────────────────────────────────────────
    def _build_client(self) -> _RedisProto:
        """Instantiate a pooled Redis client from the URL."""
        url = self.redis_url.strip()
        client_kwargs = dict(
            decode_responses=True,
            health_check_interval=HEALTH_CHECK_INTERVAL,
            socket_keepalive=True,
            socket_timeout=SOCKET_TIMEOUT,
            socket_connect_timeout=SOCKET_CONNECT_TIMEOUT,
            retry_on_timeout=True,
            max_connections=POOL_MAX_CONNECTIONS,
            client_name=CLIENT_NAME,
        )
        if urlparse(url).scheme == "rediss" and os.getenv("REDIS_SSL_CERT_REQS", "required").lower() == "none":
            client_kwargs["ssl_cert_reqs"] = None  # dev only
        return redis.Redis.from_url(url, **client_kwargs)

    @staticmethod
    def _backoff(attempt: int) -> float:
        # Exponential backoff with jitter (cap at 3s)
        return min(3.0, BASE_DELAY * (2 ** (attempt - 1))) + random.uniform(0, 0.25)
