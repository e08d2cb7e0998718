from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol


class IdempotencyStore(Protocol):
    """Remembers stream events whose handler ran to completion.

    A key is marked only after the handler returned, so a handler that fails
    part way through sees the same event again on retry. Handlers with side
    effects must tolerate that; `RegistryWorker` does so with the applied-event
    log kept next to the registry state.
    """

    def seen(self, key: str) -> bool:
        ...

    def mark(self, key: str, *, ttl_seconds: int) -> None:
        ...


@dataclass
class InMemoryIdempotencyStore:
    _expires: dict[str, float]

    def __init__(self) -> None:
        self._expires = {}

    def _evict(self, now: float) -> None:
        for k in [k for k, exp in self._expires.items() if exp <= now]:
            del self._expires[k]

    def seen(self, key: str) -> bool:
        self._evict(time.time())
        return key in self._expires

    def mark(self, key: str, *, ttl_seconds: int) -> None:
        self._expires[key] = time.time() + ttl_seconds


class RedisIdempotencyStore:
    def __init__(self, redis_client, *, key_prefix: str):
        self._client = redis_client
        self._prefix = key_prefix.rstrip(":")

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    def seen(self, key: str) -> bool:
        return bool(self._client.exists(self._key(key)))

    def mark(self, key: str, *, ttl_seconds: int) -> None:
        # SET NX prevents concurrent duplicates from double-processing.
        self._client.set(self._key(key), "1", ex=ttl_seconds, nx=True)
