"""
metrics_gateway.identity.models

Identity provider domain types.

Responsibilities:
- Describe a credential+scope request (`AuthRequest`) and its `Scope`.
- Hold verified token payloads (`IdentityToken`) parsed from Keystone v3 responses.
- Hold the listing records the auth engine consumes (projects, role assignments).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class Scope:
    """Project or domain a token is requested for; all-empty means unscoped."""

    project_id: str = ""
    project_name: str = ""
    domain_id: str = ""
    domain_name: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.project_id or self.project_name or self.domain_id or self.domain_name)

    def to_keystone(self) -> dict[str, Any] | None:
        if self.project_id:
            return {"project": {"id": self.project_id}}
        if self.project_name:
            return {"project": {"name": self.project_name, "domain": self._domain_ref()}}
        if self.domain_id or self.domain_name:
            return {"domain": self._domain_ref()}
        return None

    def _domain_ref(self) -> dict[str, str]:
        if self.domain_id:
            return {"id": self.domain_id}
        return {"name": self.domain_name}

    def __str__(self) -> str:
        if self.is_empty:
            return "<unscoped>"
        project = self.project_id or self.project_name
        domain = self.domain_id or self.domain_name
        return f"{project}@{domain}" if domain else project


@dataclass(frozen=True, slots=True)
class AuthRequest:
    """
    Normalized credentials presented by a caller.

    Either `token` is set, or a password together with `user_id` or
    `username` + user domain.
    """

    token: str = field(default="", repr=False)
    user_id: str = ""
    username: str = ""
    password: str = field(default="", repr=False)
    user_domain_id: str = ""
    user_domain_name: str = ""
    scope: Scope = field(default_factory=Scope)

    @property
    def has_user(self) -> bool:
        return bool(self.username or self.user_id)

    @property
    def principal(self) -> str:
        # Human readable user reference for log lines; never includes secrets.
        if self.user_id:
            return self.user_id
        if self.username:
            return f"{self.username}@{self.user_domain_name or self.user_domain_id}"
        return "<token>"

    def to_keystone(self) -> dict[str, Any]:
        """Request body for `POST /v3/auth/tokens`."""
        if self.token and not self.has_user:
            identity: dict[str, Any] = {"methods": ["token"], "token": {"id": self.token}}
        else:
            user: dict[str, Any] = {"password": self.password}
            if self.user_id:
                user["id"] = self.user_id
            else:
                user["name"] = self.username
                user["domain"] = (
                    {"id": self.user_domain_id}
                    if self.user_domain_id
                    else {"name": self.user_domain_name}
                )
            identity = {"methods": ["password"], "password": {"user": user}}

        auth: dict[str, Any] = {"identity": identity}
        scope = self.scope.to_keystone()
        if scope is not None:
            auth["scope"] = scope
        return {"auth": auth}


@dataclass(frozen=True, slots=True)
class Ref:
    id: str = ""
    name: str = ""

    @classmethod
    def parse(cls, raw: dict[str, Any] | None) -> Ref:
        raw = raw or {}
        return cls(id=raw.get("id") or "", name=raw.get("name") or "")


@dataclass(frozen=True, slots=True)
class DomainRef:
    id: str = ""
    name: str = ""
    domain: Ref = field(default_factory=Ref)

    @classmethod
    def parse(cls, raw: dict[str, Any] | None) -> DomainRef:
        raw = raw or {}
        return cls(
            id=raw.get("id") or "",
            name=raw.get("name") or "",
            domain=Ref.parse(raw.get("domain")),
        )


@dataclass(frozen=True, slots=True)
class IdentityToken:
    """Verified token payload (`token` object of a Keystone v3 token response)."""

    user: DomainRef
    project: DomainRef
    domain: Ref
    roles: tuple[Ref, ...]
    token: str = field(repr=False)
    expires_at: str
    catalog: tuple[dict[str, Any], ...] = field(default=(), repr=False)

    @classmethod
    def from_response(cls, body: dict[str, Any], token: str) -> IdentityToken:
        data = body["token"]
        return cls(
            user=DomainRef.parse(data.get("user")),
            project=DomainRef.parse(data.get("project")),
            domain=Ref.parse(data.get("domain")),
            roles=tuple(Ref.parse(r) for r in data.get("roles") or ()),
            token=token,
            expires_at=data.get("expires_at") or "",
            catalog=tuple(data.get("catalog") or ()),
        )


@dataclass(frozen=True, slots=True)
class Project:
    id: str
    name: str
    domain_id: str
    parent_id: str = ""
    enabled: bool = True

    @classmethod
    def parse(cls, raw: dict[str, Any]) -> Project:
        return cls(
            id=raw["id"],
            name=raw.get("name") or "",
            domain_id=raw.get("domain_id") or "",
            parent_id=raw.get("parent_id") or "",
            enabled=bool(raw.get("enabled", True)),
        )


@dataclass(frozen=True, slots=True)
class RoleAssignment:
    role_id: str
    user_id: str
    project_id: str = ""
    domain_id: str = ""

    @classmethod
    def parse(cls, raw: dict[str, Any]) -> RoleAssignment:
        scope = raw.get("scope") or {}
        return cls(
            role_id=(raw.get("role") or {}).get("id", ""),
            user_id=(raw.get("user") or {}).get("id", ""),
            project_id=(scope.get("project") or {}).get("id", ""),
            domain_id=(scope.get("domain") or {}).get("id", ""),
        )


# --- Module Notes -----------------------------------------------------------
# The raw catalog is kept on IdentityToken so endpoint lookup (see
# `identity.catalog`) can run after the token payload is parsed.
