"""
metrics_gateway.auth.credentials

Credential normalization for inbound requests.

Responsibilities:
- Accept a Keystone token (`X-Auth-Token`) or HTTP basic auth, as decoded by
  the FastAPI security schemes in `auth.deps`.
- Parse the compound basic-auth username `<user>[@<domain>][|<scope>]`.
- Apply `project_id` / `domain_id` query overrides.

Username format:
    user part   `name@domain` (named user), `name` + `X-User-Domain-Name` header,
                or a bare user ID
    scope part  `project@domain` (named project), `@domain` (domain scope),
                a bare project ID, or nothing (unscoped)
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace

from metrics_gateway.auth.errors import missing_credentials
from metrics_gateway.auth.scopes import ScopeResolver
from metrics_gateway.identity.models import AuthRequest, Scope


@dataclass(frozen=True, slots=True)
class PresentedCredentials:
    """What the caller sent, before any parsing: a token or a basic-auth pair."""

    token: str = field(default="", repr=False)
    username: str = ""
    password: str = field(default="", repr=False)
    # `X-User-Domain-Name`, used when the basic-auth username names no domain.
    user_domain_hint: str = ""


@dataclass(frozen=True, slots=True)
class ExtractedCredentials:
    request: AuthRequest
    # Query parameters that were turned into scope and must not be forwarded.
    consumed_params: tuple[str, ...] = ()


def parse_username(username: str, *, header_user_domain: str = "") -> tuple[AuthRequest, bool]:
    """
    Split a compound username into user and scope fields.
    Returns the request (without password) and whether a scope was given.
    """

    user_part, _, scope_part = username.partition("|")
    user_parts = user_part.split("@")

    if len(user_parts) > 1:
        fields = {"username": user_parts[0], "user_domain_name": user_parts[1]}
    elif header_user_domain:
        fields = {"username": user_parts[0], "user_domain_name": header_user_domain}
    else:
        fields = {"user_id": user_parts[0]}

    scope = Scope()
    if scope_part:
        scope_parts = scope_part.split("@")
        if len(scope_parts) >= 2:
            # The domain is mandatory whenever a project is named.
            scope = Scope(project_name=scope_parts[0], domain_name=scope_parts[1])
        else:
            scope = Scope(project_id=scope_parts[0])

    return AuthRequest(scope=scope, **fields), bool(scope_part)


class CredentialExtractor:
    def __init__(self, *, scope_resolver: ScopeResolver | None = None) -> None:
        self._scope_resolver = scope_resolver

    def extract(
        self,
        credentials: PresentedCredentials,
        query_params: Mapping[str, str],
        *,
        guess_scope: bool,
    ) -> ExtractedCredentials:
        if credentials.token:
            request = AuthRequest(token=credentials.token)
        elif credentials.username:
            parsed, scoped = parse_username(
                credentials.username, header_user_domain=credentials.user_domain_hint
            )
            request = replace(parsed, password=credentials.password)
            overridden = bool(query_params.get("project_id") or query_params.get("domain_id"))
            if not scoped and not overridden and guess_scope and self._scope_resolver is not None:
                request = self._scope_resolver.resolve(request)
        else:
            raise missing_credentials(
                "Authorization header missing (no username/password or token)"
            )

        return _apply_overrides(request, query_params)


def _apply_overrides(request: AuthRequest, query_params: Mapping[str, str]) -> ExtractedCredentials:
    # Project and domain scope are mutually exclusive; project_id wins.
    if project_id := query_params.get("project_id"):
        return ExtractedCredentials(
            request=replace(request, scope=Scope(project_id=project_id)),
            consumed_params=("project_id",),
        )
    if domain_id := query_params.get("domain_id"):
        return ExtractedCredentials(
            request=replace(request, scope=Scope(domain_id=domain_id)),
            consumed_params=("domain_id",),
        )
    return ExtractedCredentials(request=request)
