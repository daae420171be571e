"""
tests.conftest

Shared fixtures: settings and an in-memory Keystone v3 stub served through respx.

Responsibilities:
- Provide a `KeystoneStub` with users, domains, projects, roles and assignments.
- Wire an `Authenticator` whose service session never really sleeps.
"""

from __future__ import annotations

import itertools
import json
import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

import httpx
import pytest
import respx

from metrics_gateway.auth.cache import AuthCache
from metrics_gateway.auth.keystone import Authenticator
from metrics_gateway.auth.registry import RoleRegistry
from metrics_gateway.auth.session import ServiceSession
from metrics_gateway.settings import Settings

KEYSTONE_URL = "http://keystone.test/v3"
METRICS_URL = "http://metrics.test/"


@dataclass
class StubUser:
    id: str
    name: str
    domain_id: str
    password: str


@dataclass
class StubProject:
    id: str
    name: str
    domain_id: str
    parent_id: str = ""
    enabled: bool = True
    is_domain: bool = False


@dataclass
class KeystoneStub:
    """
    Just enough of Keystone v3 for the auth engine. Listings are paginated with
    `page_size` entries per page and absolute `links.next` URLs.
    """

    page_size: int = 2
    catalog: list[dict[str, Any]] = field(
        default_factory=lambda: [
            {
                "type": "metrics",
                "name": "maia",
                "endpoints": [{"interface": "public", "region": "eu", "url": METRICS_URL}],
            }
        ]
    )
    users: dict[str, StubUser] = field(default_factory=dict)
    projects: dict[str, StubProject] = field(default_factory=dict)
    roles: dict[str, str] = field(default_factory=dict)
    # (user_id, project_id, role_id)
    assignments: list[tuple[str, str, str]] = field(default_factory=list)
    tokens: dict[str, dict[str, Any]] = field(default_factory=dict)
    calls: list[tuple[str, str]] = field(default_factory=list)
    down: bool = False
    fail_status: int | None = None
    # path -> status, for failing a single endpoint
    fail_paths: dict[str, int] = field(default_factory=dict)
    # When set, every 401 waits here so concurrent callers are all rejected together.
    unauthorized_barrier: threading.Barrier | None = None
    _ids: Iterator[int] = field(default_factory=lambda: itertools.count(1))

    # --- fixtures ------------------------------------------------------------

    def add_domain(self, id: str, name: str) -> None:
        self.projects[id] = StubProject(id=id, name=name, domain_id="", is_domain=True)

    def add_project(
        self, id: str, name: str, domain_id: str, parent_id: str = "", **kw: Any
    ) -> None:
        self.projects[id] = StubProject(
            id=id, name=name, domain_id=domain_id, parent_id=parent_id or domain_id, **kw
        )

    def add_user(self, id: str, name: str, domain_id: str, password: str) -> None:
        self.users[id] = StubUser(id=id, name=name, domain_id=domain_id, password=password)

    def assign(self, user_id: str, project_id: str, role_name: str) -> None:
        role_id = next(rid for rid, name in self.roles.items() if name == role_name)
        self.assignments.append((user_id, project_id, role_id))

    def revoke(self, token: str) -> None:
        self.tokens.pop(token, None)

    def count(self, method: str, path: str) -> int:
        return sum(1 for c in self.calls if c == (method, path))

    # --- dispatch ------------------------------------------------------------

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/v3")
        self.calls.append((request.method, path))
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        if self.fail_status is not None:
            return _error(self.fail_status, "injected failure")
        if path in self.fail_paths:
            return _error(self.fail_paths[path], "injected failure")

        if path == "/auth/tokens" and request.method == "POST":
            return self._create_token(request)
        if not self._service_authorized(request):
            if self.unauthorized_barrier is not None:
                self.unauthorized_barrier.wait(timeout=5)
            return _error(401, "The request you have made requires authentication.")
        if path == "/auth/tokens":
            return self._get_token(request)
        if path == "/roles":
            roles = [{"id": k, "name": v} for k, v in self.roles.items()]
            return self._page(request, "roles", roles)
        if path == "/projects":
            return self._list_projects(request)
        if path.startswith("/projects/"):
            project = self.projects.get(path.rsplit("/", 1)[1])
            if project is None:
                return _error(404, "Could not find project.")
            return httpx.Response(200, json={"project": _project_json(project)})
        if path == "/role_assignments":
            return self._list_assignments(request)
        if path == "/users":
            return self._list_users(request)
        return _error(404, f"unknown path {path}")

    def _service_authorized(self, request: httpx.Request) -> bool:
        return request.headers.get("X-Auth-Token", "") in self.tokens

    def _create_token(self, request: httpx.Request) -> httpx.Response:
        auth = json.loads(request.content)["auth"]
        identity = auth["identity"]
        if identity["methods"] == ["token"]:
            previous = self.tokens.get(identity["token"]["id"])
            if previous is None:
                return _error(404, "Could not find token.")
            user = self.users[previous["user"]["id"]]
        else:
            user = self._find_user(identity["password"]["user"])
            if user is None or user.password != identity["password"]["user"]["password"]:
                return _error(401, "The request you have made requires authentication.")

        payload: dict[str, Any] = {
            "user": self._user_json(user),
            "expires_at": "2030-01-01T00:00:00.000000Z",
            "catalog": self.catalog,
            "roles": [],
        }
        scope = auth.get("scope")
        if scope and "project" in scope:
            project = self._find_project(scope["project"])
            if project is None:
                return _error(401, "Could not find project.")
            roles = self._roles_on(user.id, project.id)
            if not roles:
                return _error(401, "User has no access to project.")
            domain = self.projects[project.domain_id]
            payload["project"] = {
                "id": project.id,
                "name": project.name,
                "domain": {"id": domain.id, "name": domain.name},
            }
            payload["roles"] = roles
        elif scope and "domain" in scope:
            domain = self._find_domain(scope["domain"])
            if domain is None:
                return _error(401, "Could not find domain.")
            payload["domain"] = {"id": domain.id, "name": domain.name}

        token = f"tok-{next(self._ids)}-{user.name}-0123456789abcdef"
        self.tokens[token] = payload
        return httpx.Response(201, json={"token": payload}, headers={"X-Subject-Token": token})

    def _get_token(self, request: httpx.Request) -> httpx.Response:
        subject = request.headers.get("X-Subject-Token", "")
        payload = self.tokens.get(subject)
        if payload is None:
            return _error(404, f"Could not find token: {subject}.")
        return httpx.Response(200, json={"token": payload}, headers={"X-Subject-Token": subject})

    def _list_projects(self, request: httpx.Request) -> httpx.Response:
        q = request.url.params
        # Keystone lists regular projects unless is_domain=true is asked for.
        is_domain = q.get("is_domain", "false") == "true"
        items = [
            _project_json(p)
            for p in self.projects.values()
            if p.is_domain == is_domain
            and ("parent_id" not in q or p.parent_id == q["parent_id"])
            and ("enabled" not in q or p.enabled == (q["enabled"] == "true"))
        ]
        return self._page(request, "projects", items)

    def _list_assignments(self, request: httpx.Request) -> httpx.Response:
        user_id = request.url.params.get("user.id")
        items = [
            {"role": {"id": r}, "user": {"id": u}, "scope": {"project": {"id": p}}}
            for u, p, r in self.assignments
            if u == user_id
        ]
        return self._page(request, "role_assignments", items)

    def _list_users(self, request: httpx.Request) -> httpx.Response:
        q = request.url.params
        items = [
            {"id": u.id, "name": u.name, "domain_id": u.domain_id}
            for u in self.users.values()
            if q.get("name", u.name) == u.name and q.get("domain_id", u.domain_id) == u.domain_id
        ]
        return self._page(request, "users", items)

    def _page(self, request: httpx.Request, key: str, items: list[dict[str, Any]]) -> httpx.Response:
        params = dict(request.url.params)
        page = int(params.pop("page", "0"))
        chunk = items[page * self.page_size : (page + 1) * self.page_size]
        next_url = None
        if (page + 1) * self.page_size < len(items):
            params["page"] = str(page + 1)
            next_url = f"{KEYSTONE_URL}{request.url.path.removeprefix('/v3')}?{urlencode(params)}"
        return httpx.Response(200, json={key: chunk, "links": {"next": next_url}})

    # --- lookups -------------------------------------------------------------

    def _find_user(self, ref: dict[str, Any]) -> StubUser | None:
        if "id" in ref:
            return self.users.get(ref["id"])
        domain = self._find_domain(ref.get("domain") or {})
        if domain is None:
            return None
        return next(
            (u for u in self.users.values() if u.name == ref["name"] and u.domain_id == domain.id),
            None,
        )

    def _find_domain(self, ref: dict[str, Any]) -> StubProject | None:
        return next(
            (
                p
                for p in self.projects.values()
                if p.is_domain and (p.id == ref.get("id") or p.name == ref.get("name"))
            ),
            None,
        )

    def _find_project(self, ref: dict[str, Any]) -> StubProject | None:
        if "id" in ref:
            return self.projects.get(ref["id"])
        domain = self._find_domain(ref.get("domain") or {})
        if domain is None:
            return None
        return next(
            (
                p
                for p in self.projects.values()
                if not p.is_domain and p.name == ref["name"] and p.domain_id == domain.id
            ),
            None,
        )

    def _roles_on(self, user_id: str, project_id: str) -> list[dict[str, str]]:
        return [
            {"id": r, "name": self.roles[r]}
            for u, p, r in self.assignments
            if u == user_id and p == project_id
        ]

    def _user_json(self, user: StubUser) -> dict[str, Any]:
        domain = self.projects[user.domain_id]
        return {"id": user.id, "name": user.name, "domain": {"id": domain.id, "name": domain.name}}


def _project_json(p: StubProject) -> dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "domain_id": p.domain_id,
        "parent_id": p.parent_id,
        "enabled": p.enabled,
        "is_domain": p.is_domain,
    }


def _error(status: int, message: str) -> httpx.Response:
    return httpx.Response(status, json={"error": {"code": status, "message": message}})


def populated_stub() -> KeystoneStub:
    stub = KeystoneStub()
    stub.add_domain("d-default", "Default")
    stub.add_domain("d-monsoon", "monsoon")
    stub.roles = {
        "r-viewer": "monitoring_viewer",
        "r-admin": "monitoring_admin",
        "r-member": "member",
        "r-cloud": "admin",
    }
    stub.add_project("p-service", "service", "d-default")
    stub.add_project("p1", "proj", "d-monsoon")
    stub.add_project("p2", "other", "d-monsoon")
    stub.add_project("p1-a", "proj-a", "d-monsoon", parent_id="p1")
    stub.add_project("p1-b", "proj-b", "d-monsoon", parent_id="p1")
    stub.add_project("p1-a-x", "proj-a-x", "d-monsoon", parent_id="p1-a")
    stub.add_project("p1-c", "proj-c", "d-monsoon", parent_id="p1", enabled=False)

    stub.add_user("u-service", "maia", "d-default", "service-secret")
    stub.add_user("u-alice", "alice", "d-monsoon", "alice-pw")
    stub.add_user("u-bob", "bob", "d-monsoon", "bob-pw")
    stub.assign("u-service", "p-service", "admin")
    stub.assign("u-alice", "p2", "member")
    stub.assign("u-alice", "p1", "monitoring_viewer")
    stub.assign("u-bob", "p2", "member")
    return stub


@pytest.fixture
def settings() -> Settings:
    return Settings(
        env="test",
        keystone_auth_url=KEYSTONE_URL,
        keystone_username="maia",
        keystone_password="service-secret",
        keystone_user_domain_name="Default",
        keystone_project_name="service",
        keystone_project_domain_name="Default",
        keystone_roles="monitoring_viewer,monitoring_admin",
    )


@pytest.fixture
def keystone() -> Iterator[KeystoneStub]:
    stub = populated_stub()
    with respx.mock(assert_all_called=False) as router:
        router.route(host="keystone.test").mock(side_effect=stub)
        yield stub


@dataclass
class SleepRecorder:
    delays: list[float] = field(default_factory=list)

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


def make_session(settings: Settings, sleeps: SleepRecorder, **kwargs: Any) -> ServiceSession:
    registry = RoleRegistry(
        role_names=settings.monitoring_role_names,
        policy=settings.registry_refresh,
        ttl_seconds=settings.registry_ttl.total_seconds(),
    )
    kwargs.setdefault("rng", lambda: 0.5)
    return ServiceSession(settings=settings, registry=registry, sleep=sleeps, **kwargs)


@pytest.fixture
def authenticator(
    settings: Settings, keystone: KeystoneStub, sleeps: SleepRecorder
) -> Iterator[Authenticator]:
    auth = Authenticator(
        settings=settings,
        session=make_session(settings, sleeps),
        cache=AuthCache(settings),
    )
    yield auth
    auth.close()


# --- Module Notes -----------------------------------------------------------
# The stub requires a valid service token for every call except token creation,
# which is how a real Keystone behaves for listings and token verification.
