"""
metrics_gateway.auth.context

Authorization context built from a verified token.

Responsibilities:
- Flatten an `IdentityToken` into the policy-facing `AuthorizationContext`.
- Derive the trust-boundary headers forwarded to downstream handlers.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from metrics_gateway.identity.models import IdentityToken

TRUST_HEADERS = (
    "X-User-Id",
    "X-User-Name",
    "X-User-Domain-Id",
    "X-User-Domain-Name",
    "X-Project-Id",
    "X-Project-Name",
    "X-Project-Domain-Id",
    "X-Project-Domain-Name",
    "X-Domain-Id",
    "X-Domain-Name",
    "X-Roles",
    "X-Auth-Token",
    "X-Auth-Token-Expiry",
)


@dataclass(frozen=True, slots=True)
class AuthorizationContext:
    """
    Resolved caller identity.

    `auth` carries every non-empty identity attribute, `request` only the
    user/domain/project IDs the policy engine matches targets against.
    """

    auth: Mapping[str, str]
    roles: tuple[str, ...]
    request: Mapping[str, str]

    @property
    def user_id(self) -> str:
        return self.auth.get("user_id", "")

    @property
    def project_id(self) -> str:
        return self.auth.get("project_id", "")

    @property
    def domain_id(self) -> str:
        return self.auth.get("domain_id", "")

    def to_dict(self) -> dict[str, object]:
        auth = {k: v for k, v in self.auth.items() if k != "token"}
        return {"auth": auth, "roles": list(self.roles), "request": dict(self.request)}


def build_context(token: IdentityToken) -> AuthorizationContext:
    auth = {
        "user_id": token.user.id,
        "user_name": token.user.name,
        "user_domain_id": token.user.domain.id,
        "user_domain_name": token.user.domain.name,
        "domain_id": token.domain.id,
        "domain_name": token.domain.name,
        "project_id": token.project.id,
        "project_name": token.project.name,
        "project_domain_id": token.project.domain.id,
        "project_domain_name": token.project.domain.name,
        "token": token.token,
        "token-expiry": token.expires_at,
    }
    return AuthorizationContext(
        auth=MappingProxyType({k: v for k, v in auth.items() if v}),
        roles=tuple(role.name for role in token.roles),
        request=MappingProxyType(
            {
                "user_id": token.user.id,
                "domain_id": token.domain.id,
                "project_id": token.project.id,
            }
        ),
    )


def trust_headers(context: AuthorizationContext) -> list[tuple[str, str]]:
    """
    Headers describing the authenticated caller. `X-Roles` repeats once per role.
    Project-scoped callers get `X-Project-*`, domain-scoped ones `X-Domain-*`.
    """

    auth = context.auth
    headers = [
        ("X-User-Id", auth.get("user_id", "")),
        ("X-User-Name", auth.get("user_name", "")),
        ("X-User-Domain-Id", auth.get("user_domain_id", "")),
        ("X-User-Domain-Name", auth.get("user_domain_name", "")),
    ]
    if auth.get("project_id"):
        headers += [
            ("X-Project-Id", auth["project_id"]),
            ("X-Project-Name", auth.get("project_name", "")),
            ("X-Project-Domain-Id", auth.get("project_domain_id", "")),
            ("X-Project-Domain-Name", auth.get("project_domain_name", "")),
        ]
    else:
        headers += [
            ("X-Domain-Id", auth.get("domain_id", "")),
            ("X-Domain-Name", auth.get("domain_name", "")),
        ]
    headers += [("X-Roles", role) for role in context.roles]
    headers += [
        ("X-Auth-Token", auth.get("token", "")),
        ("X-Auth-Token-Expiry", auth.get("token-expiry", "")),
    ]
    return headers
