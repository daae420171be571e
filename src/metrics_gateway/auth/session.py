"""
metrics_gateway.auth.session

The gateway's own privileged identity-provider session.

Responsibilities:
- Create the shared service connection once (double-checked, under a lock).
- Authenticate the service account, serializing concurrent re-authentications.
- Back off exponentially, with jitter, after consecutive logon failures.
- Publish token, catalog and metrics endpoint as one immutable `SessionState`.
"""

from __future__ import annotations

import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from metrics_gateway.auth.errors import not_available
from metrics_gateway.auth.registry import RoleRegistry
from metrics_gateway.identity.catalog import EndpointNotFoundError, endpoint_url
from metrics_gateway.identity.client import IdentityClient, IdentityError, build_http_client
from metrics_gateway.identity.models import AuthRequest, Scope
from metrics_gateway.observability.logging import get_logger
from metrics_gateway.settings import Settings

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SessionState:
    token: str = ""
    catalog: tuple[dict[str, Any], ...] = ()
    endpoint_url: str = ""


class ServiceSession:
    def __init__(
        self,
        *,
        settings: Settings,
        registry: RoleRegistry,
        http_factory: Callable[[Settings], httpx.Client] = build_http_client,
        sleep: Callable[[float], None] = time.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._settings = settings
        self._registry = registry
        self._http_factory = http_factory
        self._sleep = sleep
        self._rng = rng

        # Guards creation/replacement of the shared connection.
        self._conn_lock = threading.Lock()
        # Serializes logons so a burst of 401s does not storm the provider.
        self._reauth_lock = threading.Lock()

        self._client: IdentityClient | None = None
        self._state = SessionState()
        self._stored_token = settings.keystone_token or ""
        self.failures = 0

    @property
    def configured(self) -> bool:
        s = self._settings
        return bool(s.keystone_username or s.keystone_token)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def registry(self) -> RoleRegistry:
        return self._registry

    def service_url(self) -> str:
        return self._state.endpoint_url

    def backoff_bound(self) -> float:
        """Upper bound (seconds) of the jitter window for the next failed logon."""
        return float(2**self.failures)

    def client(self) -> IdentityClient:
        client = self._client
        if client is not None:
            return client

        with self._conn_lock:
            if self._client is None:
                log.info("identity_connection_setup", auth_url=self._settings.keystone_auth_url)
                candidate = self._connect()
                try:
                    self._reauthenticate(candidate, seen=None)
                except Exception:
                    candidate.close()
                    self._state = SessionState()
                    raise
                self._client = candidate
            return self._client

    def ensure_authenticated(self) -> IdentityClient:
        client = self.client()
        if not self._state.token:
            self._reauthenticate(client, seen=None)
        return client

    def reauthenticate(self) -> None:
        client = self._client
        if client is None:
            # First use logs on as part of connecting.
            self.client()
            return
        self._reauthenticate(client, seen=None)

    def close(self) -> None:
        with self._conn_lock:
            if self._client is not None:
                self._client.close()
                self._client = None
            self._state = SessionState()

    def _connect(self) -> IdentityClient:
        http = self._http_factory(self._settings)
        client: IdentityClient

        def on_unauthorized(rejected: str) -> None:
            # Skip the logon if another thread already replaced the rejected token.
            self._reauthenticate(client, seen=rejected)

        client = IdentityClient(
            http=http,
            token_source=lambda: self._state.token,
            on_unauthorized=on_unauthorized,
        )
        return client

    def _service_request(self) -> AuthRequest:
        s = self._settings
        scope = Scope(
            project_name=s.keystone_project_name or "",
            domain_name=s.keystone_project_domain_name or "",
        )
        if s.keystone_username and s.keystone_password:
            return AuthRequest(
                username=s.keystone_username,
                password=s.keystone_password,
                user_domain_name=s.keystone_user_domain_name or "",
                scope=scope,
            )
        return AuthRequest(token=self._stored_token, scope=scope)

    def _reauthenticate(self, client: IdentityClient, *, seen: str | None) -> None:
        with self._reauth_lock:
            if seen is not None and self._state.token and self._state.token != seen:
                return

            request = self._service_request()
            log.info(
                "service_logon",
                user=self._settings.keystone_username or "",
                user_domain=self._settings.keystone_user_domain_name or "",
                scope=str(request.scope),
            )
            try:
                token = client.create_token(request)
            except IdentityError as e:
                # Wait a random time in [0, 2^failures) seconds before giving up.
                delay = self._rng() * self.backoff_bound()
                self._sleep(delay)
                self.failures += 1
                self._stored_token = ""
                self._state = SessionState()
                log.error(
                    "service_logon_failed",
                    error=str(e),
                    sequential_errors=self.failures,
                    backoff_seconds=round(delay, 3),
                )
                raise not_available(
                    f"cannot obtain token: {e} ({self.failures} sequential errors)"
                ) from e

            try:
                url = endpoint_url(token.catalog)
            except EndpointNotFoundError as e:
                log.warning("service_endpoint_missing", error=str(e))
                url = ""

            self._stored_token = token.token
            self._state = SessionState(token=token.token, catalog=token.catalog, endpoint_url=url)
            if self._settings.backoff_reset_on_success:
                self.failures = 0

        # Outside the reauth lock: registry listings may themselves hit a 401.
        try:
            self._registry.on_reauth(client)
        except IdentityError as e:
            raise not_available(f"cannot load roles and domains: {e}") from e


# --- Module Notes -----------------------------------------------------------
# With `backoff_reset_on_success` disabled the failure counter only grows, which
# reproduces the behaviour of older deployments (backoff window never shrinks).
