"""
metrics_gateway.identity.client

HTTP client boundary for the Keystone v3 identity provider.

Responsibilities:
- Create and verify tokens (`/v3/auth/tokens`).
- List projects, role assignments, users and roles, draining every page.
- Separate "provider answered with an error" from "provider unreachable".
- Re-authenticate once and retry when the held token is rejected (HTTP 401).
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

import httpx

from metrics_gateway.identity.models import AuthRequest, IdentityToken, Project, Ref, RoleAssignment
from metrics_gateway.settings import Settings

SUBJECT_TOKEN_HEADER = "X-Subject-Token"
AUTH_TOKEN_HEADER = "X-Auth-Token"


class IdentityError(Exception):
    pass


class IdentityProviderError(IdentityError):
    """The provider answered, but with an error status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message

    @property
    def is_rejection(self) -> bool:
        # 4xx: the provider looked at the request and refused it.
        return 400 <= self.status_code < 500


class IdentityUnavailableError(IdentityError):
    """The provider could not be reached or returned an unreadable payload."""


def identity_base_url(auth_url: str) -> str:
    url = auth_url.rstrip("/")
    if not url.endswith("/v3"):
        url += "/v3"
    return url + "/"


def build_http_client(settings: Settings, **kwargs: Any) -> httpx.Client:
    """
    A fresh connection to the identity endpoint, optionally through the
    configured forward proxy.
    """

    return httpx.Client(
        base_url=identity_base_url(settings.keystone_auth_url),
        proxy=settings.proxy_url or None,
        timeout=settings.request_timeout,
        headers={"Accept": "application/json"},
        **kwargs,
    )


class IdentityClient:
    """
    Thin synchronous Keystone v3 client.

    `token_source` supplies the token sent as `X-Auth-Token` for privileged
    calls. `on_unauthorized` is invoked with the rejected token when such a call
    is answered with 401; the call is then retried once with whatever token
    `token_source` returns.
    """

    def __init__(
        self,
        *,
        http: httpx.Client,
        token_source: Callable[[], str] | None = None,
        on_unauthorized: Callable[[str], None] | None = None,
    ) -> None:
        self._http = http
        self._token_source = token_source
        self._on_unauthorized = on_unauthorized

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> IdentityClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # --- tokens --------------------------------------------------------------

    def create_token(self, request: AuthRequest) -> IdentityToken:
        # Token creation authenticates by itself; a 401 here is a rejection, not a stale token.
        r = self._send(
            "POST",
            "auth/tokens",
            json=request.to_keystone(),
            authenticated=False,
        )
        return self._parse_token(r, r.headers.get(SUBJECT_TOKEN_HEADER, ""))

    def get_token(self, subject_token: str) -> IdentityToken:
        r = self._send("GET", "auth/tokens", headers={SUBJECT_TOKEN_HEADER: subject_token})
        return self._parse_token(r, r.headers.get(SUBJECT_TOKEN_HEADER) or subject_token)

    # --- listings ------------------------------------------------------------

    def list_projects(
        self,
        *,
        parent_id: str | None = None,
        is_domain: bool | None = None,
        enabled: bool | None = None,
    ) -> Iterator[Project]:
        params = _query(parent_id=parent_id, is_domain=is_domain, enabled=enabled)
        for raw in self._paginate("projects", "projects", params):
            yield Project.parse(raw)

    def get_project(self, project_id: str) -> Project:
        body = self._json(self._send("GET", f"projects/{project_id}"))
        try:
            return Project.parse(body["project"])
        except (KeyError, TypeError) as e:
            raise IdentityUnavailableError(f"malformed project record: {e}") from e

    def list_role_assignments(
        self, *, user_id: str, effective: bool = True
    ) -> Iterator[RoleAssignment]:
        params = {"user.id": user_id}
        if effective:
            params["effective"] = "true"
        for raw in self._paginate("role_assignments", "role_assignments", params):
            yield RoleAssignment.parse(raw)

    def list_users(
        self,
        *,
        name: str | None = None,
        domain_id: str | None = None,
        enabled: bool | None = None,
    ) -> Iterator[Ref]:
        params = _query(name=name, domain_id=domain_id, enabled=enabled)
        for raw in self._paginate("users", "users", params):
            yield Ref.parse(raw)

    def list_roles(self) -> list[Ref]:
        return [Ref.parse(raw) for raw in self._paginate("roles", "roles", {})]

    # --- plumbing ------------------------------------------------------------

    def _paginate(self, path: str, key: str, params: dict[str, str]) -> Iterator[dict[str, Any]]:
        url: str | None = path
        query: dict[str, str] | None = params
        while url:
            body = self._json(self._send("GET", url, params=query))
            try:
                items = body[key]
            except KeyError as e:
                raise IdentityUnavailableError(f"listing {path} lacks {key!r}") from e
            yield from items
            # `links.next` is absolute and already carries the query.
            url = (body.get("links") or {}).get("next")
            query = None

    def _send(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        authenticated: bool = True,
    ) -> httpx.Response:
        retried = False
        while True:
            send_headers = dict(headers or {})
            token = ""
            if authenticated and self._token_source is not None:
                token = self._token_source()
                if token:
                    send_headers[AUTH_TOKEN_HEADER] = token
            try:
                r = self._http.request(method, url, params=params, json=json, headers=send_headers)
            except httpx.TransportError as e:
                raise IdentityUnavailableError(f"{method} {url}: {e}") from e

            if (
                r.status_code == 401
                and authenticated
                and self._on_unauthorized is not None
                and not retried
            ):
                retried = True
                self._on_unauthorized(token)
                continue

            if r.status_code >= 400:
                raise IdentityProviderError(r.status_code, _error_message(r))
            return r

    @staticmethod
    def _json(r: httpx.Response) -> dict[str, Any]:
        try:
            body = r.json()
        except ValueError as e:
            raise IdentityUnavailableError(f"invalid JSON from identity provider: {e}") from e
        if not isinstance(body, dict):
            raise IdentityUnavailableError("unexpected JSON document from identity provider")
        return body

    def _parse_token(self, r: httpx.Response, token: str) -> IdentityToken:
        body = self._json(r)
        try:
            return IdentityToken.from_response(body, token)
        except (KeyError, TypeError, AttributeError) as e:
            raise IdentityUnavailableError(f"malformed token payload: {e}") from e


def _query(**kwargs: str | bool | None) -> dict[str, str]:
    params: dict[str, str] = {}
    for key, value in kwargs.items():
        if value is None or value == "":
            continue
        params[key] = ("true" if value else "false") if isinstance(value, bool) else value
    return params


def _error_message(r: httpx.Response) -> str:
    try:
        return r.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return r.text or r.reason_phrase


# --- Module Notes -----------------------------------------------------------
# One IdentityClient owns one httpx.Client. The service session keeps a long-lived
# one; end-user token creation always gets a short-lived one of its own.
