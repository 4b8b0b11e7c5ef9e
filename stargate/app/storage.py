"""Key/value backends holding serialized session records."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from .config import SessionStorageSettings


LOGGER = logging.getLogger("stargate.storage")

STORE_TIMEOUT_SECONDS = 5.0
SWEEP_INTERVAL_SECONDS = 60.0


class StorageError(RuntimeError):
    """Raised when the configured storage cannot be reached."""


class SessionStorage:
    """Minimal key/value interface used by the session store."""

    async def get(self, key: str) -> Optional[bytes]:  # pragma: no cover - interface
        raise NotImplementedError

    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def delete(self, key: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def reset(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def ping(self) -> None:
        return None

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        return None


class MemoryStorage(SessionStorage):
    """Single process storage with lazy expiry and a periodic sweeper."""

    def __init__(self, *, sweep_interval: float = SWEEP_INTERVAL_SECONDS) -> None:
        self._store: dict[str, tuple[bytes, Optional[float]]] = {}
        self._lock = asyncio.Lock()
        self._sweep_interval = sweep_interval
        self._sweeper: asyncio.Task[None] | None = None

    @staticmethod
    def _now() -> float:
        return asyncio.get_running_loop().time()

    async def get(self, key: str) -> Optional[bytes]:
        async with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= self._now():
                self._store.pop(key, None)
                return None
            return value

    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> None:
        if not key or not value:
            return
        async with self._lock:
            expires_at = None
            if ttl:
                expires_at = self._now() + ttl
            self._store[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._store.pop(key, None)

    async def reset(self) -> None:
        async with self._lock:
            self._store.clear()

    async def sweep(self) -> int:
        """Drop expired entries and return how many were removed."""

        async with self._lock:
            now = self._now()
            expired = [
                key
                for key, (_, expires_at) in self._store.items()
                if expires_at is not None and expires_at <= now
            ]
            for key in expired:
                del self._store[key]
        if expired:
            LOGGER.debug("swept %d expired sessions", len(expired))
        return len(expired)

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            await self.sweep()

    async def start(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever(), name="stargate-session-sweeper")

    async def close(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None

    def __len__(self) -> int:
        return len(self._store)


def _split_addr(addr: str) -> tuple[str, int]:
    host, _, port = addr.strip().rpartition(":")
    if not host:
        return addr.strip() or "localhost", 6379
    try:
        return host, int(port)
    except ValueError as exc:
        raise StorageError(f"Invalid redis address: {addr!r}") from exc


class RedisStorage(SessionStorage):
    """Redis backed storage; every key lives under ``prefix``."""

    def __init__(
        self,
        *,
        addr: str,
        password: str | None = None,
        db: int = 0,
        prefix: str = "stargate:session:",
        client: "redis.Redis | None" = None,
    ) -> None:
        if not prefix.endswith(":"):
            prefix = f"{prefix}:"
        self._prefix = prefix
        if client is None:
            host, port = _split_addr(addr)
            client = redis.Redis(
                host=host,
                port=port,
                password=password,
                db=db,
                socket_timeout=STORE_TIMEOUT_SECONDS,
                socket_connect_timeout=STORE_TIMEOUT_SECONDS,
            )
        self._client = client

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def client(self) -> "redis.Redis":
        return self._client

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Optional[bytes]:
        if not key:
            return None
        try:
            return await self._client.get(self._key(key))
        except RedisError as exc:
            raise StorageError("redis get failed") from exc

    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> None:
        if not key or not value:
            return
        try:
            await self._client.set(name=self._key(key), value=value, ex=ttl or None)
        except RedisError as exc:
            raise StorageError("redis set failed") from exc

    async def delete(self, key: str) -> None:
        if not key:
            return
        try:
            await self._client.delete(self._key(key))
        except RedisError as exc:
            raise StorageError("redis delete failed") from exc

    async def reset(self) -> None:
        try:
            batch: list[bytes | str] = []
            async for key in self._client.scan_iter(match=f"{self._prefix}*", count=100):
                batch.append(key)
                if len(batch) >= 100:
                    await self._client.delete(*batch)
                    batch.clear()
            if batch:
                await self._client.delete(*batch)
        except RedisError as exc:
            raise StorageError("redis reset failed") from exc

    async def ping(self) -> None:
        try:
            await asyncio.wait_for(self._client.ping(), timeout=STORE_TIMEOUT_SECONDS)
        except (RedisError, asyncio.TimeoutError, OSError) as exc:
            raise StorageError("redis ping failed") from exc

    async def start(self) -> None:
        await self.ping()
        LOGGER.info("session storage configured to use redis")

    async def close(self) -> None:
        await self._client.aclose()


def build_storage(config: SessionStorageSettings) -> SessionStorage:
    if config.enabled:
        return RedisStorage(
            addr=config.redis_addr,
            password=config.redis_password,
            db=config.redis_db,
            prefix=config.redis_key_prefix,
        )
    LOGGER.debug("using in-memory session storage")
    return MemoryStorage()


__all__ = [
    "MemoryStorage",
    "RedisStorage",
    "STORE_TIMEOUT_SECONDS",
    "SessionStorage",
    "StorageError",
    "build_storage",
]
