"""
metrics_gateway.auth.registry

Monitoring role registry and domain index.

Responsibilities:
- Map the configured monitoring role names to role IDs.
- Keep the domain ID <-> name bijection.
- Expose both as an immutable, versioned snapshot with an explicit refresh.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from metrics_gateway.identity.client import IdentityClient
from metrics_gateway.observability.logging import get_logger
from metrics_gateway.settings import RegistryRefresh

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RegistrySnapshot:
    version: int
    # role-id -> role-name, restricted to monitoring roles
    monitoring_roles: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    # domain-id -> domain-name
    domain_names: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    # domain-name -> domain-id
    domain_ids: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    loaded_at: float = 0.0

    @property
    def loaded(self) -> bool:
        return self.version > 0

    def is_monitoring_role(self, role_id: str) -> bool:
        return role_id in self.monitoring_roles

    def domain_name(self, domain_id: str) -> str:
        return self.domain_names.get(domain_id, "")

    def domain_id(self, domain_name: str) -> str:
        return self.domain_ids.get(domain_name, "")


class RoleRegistry:
    """
    Holds the current `RegistrySnapshot`. Readers take `snapshot` without locking.
    Loads list roles and domains unlocked, then publish a new snapshot under the
    lock; concurrent loads may both list, but versions stay strictly increasing.
    """

    def __init__(
        self,
        *,
        role_names: list[str],
        policy: RegistryRefresh = "never",
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._role_names = list(role_names)
        self._policy = policy
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot = RegistrySnapshot(version=0)

    @property
    def snapshot(self) -> RegistrySnapshot:
        return self._snapshot

    @property
    def role_names(self) -> list[str]:
        return list(self._role_names)

    def ensure_loaded(self, client: IdentityClient) -> RegistrySnapshot:
        """
        Current snapshot for readers. Loads on first use, and again once the
        `on_ttl` policy considers it stale.
        """
        snap = self._snapshot
        if snap.loaded and not self._stale(snap):
            return snap
        return self._load(client, if_stale=True)

    def on_reauth(self, client: IdentityClient) -> RegistrySnapshot:
        if self._policy == "on_reauth" and self._snapshot.loaded:
            return self.refresh(client)
        return self.ensure_loaded(client)

    def refresh(self, client: IdentityClient) -> RegistrySnapshot:
        return self._load(client, if_stale=False)

    def _stale(self, snap: RegistrySnapshot) -> bool:
        return self._policy == "on_ttl" and self._clock() - snap.loaded_at >= self._ttl

    def _load(self, client: IdentityClient, *, if_stale: bool) -> RegistrySnapshot:
        # No lock while listing: a 401 here re-authenticates, which calls back into
        # `on_reauth` on this same thread.
        wanted = set(self._role_names)
        roles = {r.id: r.name for r in client.list_roles() if r.name in wanted}

        names: dict[str, str] = {}
        ids: dict[str, str] = {}
        for domain in client.list_projects(is_domain=True, enabled=True):
            names[domain.id] = domain.name
            ids[domain.name] = domain.id

        with self._lock:
            current = self._snapshot
            if if_stale and current.loaded and not self._stale(current):
                # Another load published while this one was listing.
                return current
            snap = RegistrySnapshot(
                version=current.version + 1,
                monitoring_roles=MappingProxyType(roles),
                domain_names=MappingProxyType(names),
                domain_ids=MappingProxyType(ids),
                loaded_at=self._clock(),
            )
            self._snapshot = snap

        if not roles:
            log.warning("no_monitoring_roles_found", configured=self._role_names)
        log.info(
            "registry_loaded",
            version=snap.version,
            roles=sorted(roles.values()),
            domains=len(names),
        )
        return snap


# --- Module Notes -----------------------------------------------------------
# With the default "never" policy the registry is loaded once per process; call
# `refresh` (or choose another policy) when roles or domains change upstream.
