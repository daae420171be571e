"""
metrics_gateway.auth.scopes

User lookups and default scope selection.

Responsibilities:
- Resolve `name@domain` to a user ID (cached without expiry).
- List the projects a user holds a monitoring role on (cached per user).
- Pick a default project scope for basic-auth callers that did not name one.
"""

from __future__ import annotations

from dataclasses import replace

from metrics_gateway.auth.cache import AuthCache
from metrics_gateway.auth.errors import no_permission, not_available, wrong_credentials
from metrics_gateway.auth.session import ServiceSession
from metrics_gateway.identity.client import (
    IdentityError,
    IdentityProviderError,
    IdentityUnavailableError,
)
from metrics_gateway.identity.models import AuthRequest, Scope
from metrics_gateway.observability.logging import get_logger

log = get_logger(__name__)


class UnknownUserError(LookupError):
    pass


class UserDirectory:
    def __init__(self, *, session: ServiceSession, cache: AuthCache) -> None:
        self._session = session
        self._cache = cache

    def user_id(self, username: str, user_domain: str) -> str:
        key = (username, user_domain)
        cached = self._cache.user_ids.get(key)
        if cached is not None:
            return cached

        user_id = self._fetch_user_id(username, user_domain)
        self._cache.user_ids.set(key, user_id)
        return user_id

    def _fetch_user_id(self, username: str, user_domain: str) -> str:
        client = self._session.client()
        domain_id = self._session.registry.ensure_loaded(client).domain_id(user_domain)
        if not domain_id:
            raise UnknownUserError(f"no such user {username}@{user_domain} (unknown domain)")
        for user in client.list_users(name=username, domain_id=domain_id, enabled=True):
            return user.id
        raise UnknownUserError(f"no such user {username}@{user_domain}")

    def user_projects(self, user_id: str) -> list[Scope]:
        cached = self._cache.user_scopes.get(user_id)
        if cached is not None:
            return list(cached)

        try:
            scopes = self._fetch_user_projects(user_id)
        except IdentityError as e:
            log.error("user_projects_failed", user_id=user_id, error=str(e))
            raise

        self._cache.user_scopes.set(user_id, tuple(scopes))
        return scopes

    def _fetch_user_projects(self, user_id: str) -> list[Scope]:
        client = self._session.client()
        registry = self._session.registry.ensure_loaded(client)
        scopes: list[Scope] = []
        # Effective assignments already include inherited and group-derived roles.
        for ra in client.list_role_assignments(user_id=user_id, effective=True):
            if not (registry.is_monitoring_role(ra.role_id) and ra.project_id):
                continue
            project = client.get_project(ra.project_id)
            scopes.append(
                Scope(
                    project_id=ra.project_id,
                    project_name=project.name,
                    domain_id=project.domain_id,
                    domain_name=registry.domain_name(project.domain_id),
                )
            )
        return scopes


class ScopeResolver:
    def __init__(self, *, directory: UserDirectory, role_names: list[str]) -> None:
        self._directory = directory
        self._role_names = role_names

    def resolve(self, request: AuthRequest) -> AuthRequest:
        """
        Return `request` scoped to the first project the user may monitor.
        Only the IDs are copied so the provider does not see conflicting names.
        """

        user_id = request.user_id or self._lookup_user(request)
        try:
            projects = self._directory.user_projects(user_id)
        except IdentityError as e:
            raise not_available(str(e)) from e

        if not projects:
            raise no_permission(
                f"User {user_id} ({request.username}@{request.user_domain_name}) does not have "
                f"monitoring authorization on any project in any domain "
                f"(required roles: {','.join(self._role_names)})"
            )

        first = projects[0]
        if first.project_id:
            scope = Scope(project_id=first.project_id)
        else:
            scope = Scope(domain_id=first.domain_id)
        return replace(request, scope=scope)

    def _lookup_user(self, request: AuthRequest) -> str:
        try:
            return self._directory.user_id(request.username, request.user_domain_name)
        except UnknownUserError as e:
            raise wrong_credentials(str(e)) from e
        except IdentityUnavailableError as e:
            raise not_available(str(e)) from e
        except IdentityProviderError as e:
            if e.is_rejection:
                raise wrong_credentials(str(e)) from e
            raise not_available(str(e)) from e


# --- Module Notes -----------------------------------------------------------
# Assignments come back in provider order, so the default project is stable for
# as long as the user's role assignments do not change.
