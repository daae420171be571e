"""
metrics_gateway.auth.cache

Process-wide auth caches.

Responsibilities:
- Provide an internally synchronized cache wrapper around `cachetools`.
- Derive structured cache keys for credential+scope requests.
- Group the four caches the engine uses (contexts, project trees, user scopes, user IDs).
"""

from __future__ import annotations

import hashlib
import threading
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from datetime import timedelta
from typing import Generic, TypeVar

from cachetools import Cache, TTLCache

from metrics_gateway.auth.context import AuthorizationContext
from metrics_gateway.identity.models import AuthRequest, Scope
from metrics_gateway.settings import Settings

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

_MISSING = object()


class SharedCache(Generic[K, V]):
    """
    Thread-safe map with optional per-entry expiry.

    Readers never see a half-written entry. Two callers missing the same key
    may both compute the value; the last `set` wins.
    """

    def __init__(
        self,
        *,
        maxsize: int,
        ttl: timedelta | None = None,
        timer: Callable[[], float] | None = None,
    ) -> None:
        if ttl is None:
            self._cache: Cache = Cache(maxsize=maxsize)
        elif timer is None:
            self._cache = TTLCache(maxsize=maxsize, ttl=ttl.total_seconds())
        else:
            self._cache = TTLCache(maxsize=maxsize, ttl=ttl.total_seconds(), timer=timer)
        self._lock = threading.Lock()

    def get(self, key: K) -> V | None:
        with self._lock:
            value = self._cache.get(key, _MISSING)
        return None if value is _MISSING else value

    def set(self, key: K, value: V) -> None:
        with self._lock:
            self._cache[key] = value

    def sweep(self) -> None:
        with self._lock:
            expire = getattr(self._cache, "expire", None)
            if expire is not None:
                expire()

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


def _digest(secret: str) -> str:
    return hashlib.sha256(secret.encode()).hexdigest() if secret else ""


@dataclass(frozen=True, slots=True)
class CredentialKey:
    """
    Identifies a credential+scope combination. Secrets enter as SHA-256 digests.
    """

    token: str
    user_id: str
    username: str
    password: str
    user_domain_id: str
    user_domain_name: str
    scope: Scope

    @classmethod
    def of(cls, request: AuthRequest) -> CredentialKey:
        if request.token and not request.has_user:
            return cls(
                token=_digest(request.token),
                user_id="",
                username="",
                password="",
                user_domain_id="",
                user_domain_name="",
                scope=request.scope,
            )
        return cls(
            token="",
            user_id=request.user_id,
            username=request.username,
            password=_digest(request.password),
            user_domain_id=request.user_domain_id,
            user_domain_name=request.user_domain_name,
            scope=request.scope,
        )


@dataclass(frozen=True, slots=True)
class CacheEntry:
    context: AuthorizationContext
    endpoint_url: str


class AuthCache:
    def __init__(self, settings: Settings, *, timer: Callable[[], float] | None = None) -> None:
        ttl = settings.token_cache_time
        size = settings.cache_max_entries
        self.contexts: SharedCache[CredentialKey, CacheEntry] = SharedCache(
            maxsize=size, ttl=ttl, timer=timer
        )
        self.project_trees: SharedCache[str, tuple[str, ...]] = SharedCache(
            maxsize=size, ttl=ttl, timer=timer
        )
        self.user_scopes: SharedCache[str, tuple[Scope, ...]] = SharedCache(
            maxsize=size, ttl=ttl, timer=timer
        )
        # Usernames are assumed stable for the life of the process.
        self.user_ids: SharedCache[tuple[str, str], str] = SharedCache(maxsize=size)

    def _all(self) -> tuple[SharedCache, ...]:
        return (self.contexts, self.project_trees, self.user_scopes, self.user_ids)

    def sweep(self) -> None:
        for cache in self._all():
            cache.sweep()

    def clear(self) -> None:
        for cache in self._all():
            cache.clear()


# --- Module Notes -----------------------------------------------------------
# TTLCache purges lazily on access; `AuthCache.sweep` is run periodically by
# the app (see `api.app`) so idle entries do not hold memory until the next hit.
