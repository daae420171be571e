"""
metrics_gateway.auth.keystone

Keystone-backed authenticator (composition root of the auth engine).

Responsibilities:
- Authenticate credential+scope requests, answering repeat requests from cache.
- Verify bare client tokens through the service session; create tokens for
  everything else on a fresh, independent connection.
- Classify provider failures into auth error kinds.
- Expose project-tree, user-project and user-ID lookups to the HTTP layer.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass

import httpx

from metrics_gateway.auth.cache import AuthCache, CacheEntry, CredentialKey
from metrics_gateway.auth.context import AuthorizationContext, build_context, trust_headers
from metrics_gateway.auth.credentials import CredentialExtractor, PresentedCredentials
from metrics_gateway.auth.errors import (
    AuthenticationError,
    missing_credentials,
    not_available,
    wrong_credentials,
)
from metrics_gateway.auth.projects import ProjectTreeResolver
from metrics_gateway.auth.registry import RoleRegistry
from metrics_gateway.auth.scopes import ScopeResolver, UserDirectory
from metrics_gateway.auth.session import ServiceSession
from metrics_gateway.identity.catalog import EndpointNotFoundError, endpoint_url
from metrics_gateway.identity.client import (
    IdentityClient,
    IdentityError,
    IdentityProviderError,
    IdentityUnavailableError,
    build_http_client,
)
from metrics_gateway.identity.models import AuthRequest, IdentityToken, Scope
from metrics_gateway.observability.logging import get_logger, truncate_token
from metrics_gateway.settings import Settings

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class AuthenticatedRequest:
    context: AuthorizationContext
    endpoint_url: str
    consumed_params: tuple[str, ...] = ()

    @property
    def headers(self) -> list[tuple[str, str]]:
        return trust_headers(self.context)


class Authenticator:
    def __init__(
        self,
        *,
        settings: Settings,
        session: ServiceSession | None = None,
        cache: AuthCache | None = None,
        client_factory: Callable[[], IdentityClient] | None = None,
    ) -> None:
        self._settings = settings
        self.cache = cache or AuthCache(settings)
        self.session = session or ServiceSession(
            settings=settings,
            registry=RoleRegistry(
                role_names=settings.monitoring_role_names,
                policy=settings.registry_refresh,
                ttl_seconds=settings.registry_ttl.total_seconds(),
            ),
        )
        self._client_factory = client_factory or (
            lambda: IdentityClient(http=build_http_client(settings))
        )

        self.directory = UserDirectory(session=self.session, cache=self.cache)
        self.extractor = CredentialExtractor(
            scope_resolver=ScopeResolver(
                directory=self.directory,
                role_names=settings.monitoring_role_names,
            )
        )
        self.project_tree = ProjectTreeResolver(
            session=self.session,
            cache=self.cache,
            max_depth=settings.max_project_depth,
        )

    def start(self) -> None:
        # Fail fast on a misconfigured service account.
        if self.session.configured:
            self.session.client()

    def close(self) -> None:
        self.session.close()

    def service_url(self) -> str:
        """Metrics endpoint from the service catalog; empty without a service session."""
        return self.session.service_url()

    def authenticate(self, request: AuthRequest) -> tuple[AuthorizationContext, str]:
        """Service-to-service use: always creates a token on a fresh connection."""
        entry = self._authenticate(request, client_request=False)
        return entry.context, entry.endpoint_url

    def authenticate_request(
        self,
        credentials: PresentedCredentials,
        query_params: Mapping[str, str],
        *,
        guess_scope: bool,
    ) -> AuthenticatedRequest:
        try:
            extracted = self.extractor.extract(credentials, query_params, guess_scope=guess_scope)
        except AuthenticationError as e:
            log.info("credentials_rejected", kind=e.kind.value, error=e.message)
            raise

        entry = self._authenticate(extracted.request, client_request=True)
        return AuthenticatedRequest(
            context=entry.context,
            endpoint_url=entry.endpoint_url,
            consumed_params=extracted.consumed_params,
        )

    def child_projects(self, project_id: str) -> list[str]:
        return self.project_tree.child_projects(project_id)

    def user_projects(self, user_id: str) -> list[Scope]:
        try:
            return self.directory.user_projects(user_id)
        except IdentityError as e:
            raise not_available(str(e)) from e

    def user_id(self, username: str, user_domain: str) -> str:
        return self.directory.user_id(username, user_domain)

    def _authenticate(self, request: AuthRequest, *, client_request: bool) -> CacheEntry:
        key = CredentialKey.of(request)
        entry = self.cache.contexts.get(key)
        if entry is not None:
            log.debug(
                "token_cache_hit",
                user=request.principal,
                token_prefix=truncate_token(request.token),
            )
            return entry

        if request.token and not request.has_user and request.scope.is_empty and client_request:
            token = self._verify(request.token)
        else:
            token = self._create(request)

        try:
            url = endpoint_url(token.catalog)
        except EndpointNotFoundError as e:
            # The credentials were fine; the directory data is not.
            raise not_available(str(e)) from e

        entry = CacheEntry(context=build_context(token), endpoint_url=url)
        self.cache.contexts.set(key, entry)
        return entry

    def _verify(self, subject_token: str) -> IdentityToken:
        log.debug("verify_token", token_prefix=truncate_token(subject_token))
        client = self.session.ensure_authenticated()
        try:
            return client.get_token(subject_token)
        except IdentityProviderError as e:
            if e.is_rejection:
                log.info(
                    "token_rejected",
                    token_prefix=truncate_token(subject_token),
                    error=e.message,
                )
                raise wrong_credentials(str(e)) from e
            raise not_available(str(e)) from e
        except IdentityUnavailableError as e:
            raise not_available(str(e)) from e

    def _create(self, request: AuthRequest) -> IdentityToken:
        log.debug("authenticate", user=request.principal, scope=str(request.scope))
        try:
            client = self._client_factory()
        except (ValueError, httpx.InvalidURL) as e:
            raise not_available(f"cannot initialize identity client: {e}") from e

        with client:
            try:
                return client.create_token(request)
            except IdentityUnavailableError as e:
                raise not_available(str(e)) from e
            except IdentityProviderError as e:
                if not e.is_rejection:
                    raise not_available(str(e)) from e
                raise self._rejected(request, e) from e

    def _rejected(self, request: AuthRequest, e: IdentityProviderError) -> AuthenticationError:
        if request.has_user:
            log.info(
                "login_failed",
                user=request.principal,
                scope=str(request.scope),
                error=e.message,
            )
            return wrong_credentials(str(e))
        if request.token:
            log.info(
                "login_failed",
                token_prefix=truncate_token(request.token),
                scope=str(request.scope),
                error=e.message,
            )
            return wrong_credentials(str(e))
        return missing_credentials(str(e))


# --- Module Notes -----------------------------------------------------------
# Client credentials never touch the service connection except for token
# verification, so a wrong password cannot invalidate the service token or
# advance its backoff counter.
