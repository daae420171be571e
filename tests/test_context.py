"""
tests.test_context

Authorization context construction and trust-boundary headers.
"""

from __future__ import annotations

from metrics_gateway.auth.context import build_context, trust_headers
from metrics_gateway.identity.models import IdentityToken


def _token(**overrides) -> IdentityToken:
    body = {
        "token": {
            "user": {"id": "u1", "name": "alice", "domain": {"id": "d1", "name": "monsoon"}},
            "project": {"id": "p1", "name": "proj", "domain": {"id": "d1", "name": "monsoon"}},
            "roles": [{"id": "r1", "name": "monitoring_viewer"}],
            "expires_at": "2030-01-01T00:00:00Z",
            **overrides,
        }
    }
    return IdentityToken.from_response(body, "secret-token")


def test_project_scoped_token_maps_to_context() -> None:
    ctx = build_context(_token())

    assert ctx.roles == ("monitoring_viewer",)
    assert ctx.auth["project_id"] == "p1"
    assert ctx.auth["project_name"] == "proj"
    assert ctx.auth["project_domain_name"] == "monsoon"
    assert ctx.auth["user_name"] == "alice"
    assert ctx.auth["token"] == "secret-token"
    assert ctx.auth["token-expiry"] == "2030-01-01T00:00:00Z"
    # No domain scope on a project token: the keys are absent, not empty.
    assert "domain_id" not in ctx.auth
    assert "domain_name" not in ctx.auth
    assert all(ctx.auth.values())


def test_request_attributes_carry_ids_only() -> None:
    ctx = build_context(_token())

    assert dict(ctx.request) == {"user_id": "u1", "domain_id": "", "project_id": "p1"}


def test_domain_scoped_token_omits_project_keys() -> None:
    ctx = build_context(_token(project=None, domain={"id": "d1", "name": "monsoon"}, roles=[]))

    assert ctx.roles == ()
    assert ctx.domain_id == "d1"
    assert not any(k.startswith("project_") for k in ctx.auth)


def test_trust_headers_for_project_scope() -> None:
    token = _token(roles=[{"id": "r1", "name": "monitoring_viewer"}, {"id": "r2", "name": "member"}])
    headers = trust_headers(build_context(token))
    names = [n for n, _ in headers]

    assert ("X-Project-Id", "p1") in headers
    assert "X-Domain-Id" not in names
    assert [v for n, v in headers if n == "X-Roles"] == ["monitoring_viewer", "member"]
    assert ("X-Auth-Token", "secret-token") in headers


def test_trust_headers_for_domain_scope() -> None:
    ctx = build_context(_token(project=None, domain={"id": "d1", "name": "monsoon"}))
    headers = dict(trust_headers(ctx))

    assert headers["X-Domain-Id"] == "d1"
    assert headers["X-Domain-Name"] == "monsoon"
    assert "X-Project-Id" not in headers


def test_to_dict_hides_token() -> None:
    data = build_context(_token()).to_dict()

    assert "token" not in data["auth"]
    assert data["roles"] == ["monitoring_viewer"]
