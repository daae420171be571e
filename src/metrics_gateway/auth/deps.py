"""
metrics_gateway.auth.deps

FastAPI dependency functions for authentication and authorization.

Responsibilities:
- Take a Keystone token or basic-auth credentials off the request.
- Run request authentication and convert auth errors into HTTP errors.
- Stash trust-boundary headers and the forwardable query on `request.state`.
- Enforce role requirements via reusable dependency factories.
"""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Request, Security
from fastapi.security import APIKeyHeader, HTTPBasic, HTTPBasicCredentials
from starlette.status import HTTP_401_UNAUTHORIZED, HTTP_403_FORBIDDEN

from metrics_gateway.auth.context import AuthorizationContext
from metrics_gateway.auth.credentials import PresentedCredentials
from metrics_gateway.auth.errors import AuthenticationError
from metrics_gateway.auth.keystone import Authenticator
from metrics_gateway.observability.logging import get_logger
from metrics_gateway.settings import Settings, get_settings

log = get_logger(__name__)

_REALM = "metrics"
_basic = HTTPBasic(realm=_REALM, auto_error=False)
_token = APIKeyHeader(name="X-Auth-Token", auto_error=False)


def authenticator_from_app(request: Request) -> Authenticator:
    # The authenticator is created in `metrics_gateway.api.app.create_app`.
    return request.app.state.authenticator  # type: ignore[attr-defined]


def presented_credentials(
    token: str | None = Security(_token),
    basic: HTTPBasicCredentials | None = Security(_basic),
    x_user_domain_name: str | None = Header(default=None),
) -> PresentedCredentials:
    # A token wins over basic auth when both are sent.
    if token:
        return PresentedCredentials(token=token)
    if basic is None:
        return PresentedCredentials()
    return PresentedCredentials(
        username=basic.username,
        password=basic.password,
        user_domain_hint=x_user_domain_name or "",
    )


def _authenticate(
    request: Request,
    credentials: PresentedCredentials,
    authenticator: Authenticator,
    *,
    guess_scope: bool,
) -> AuthorizationContext:
    try:
        result = authenticator.authenticate_request(
            credentials, request.query_params, guess_scope=guess_scope
        )
    except AuthenticationError as e:
        if e.kind.retryable:
            log.error("authentication_unavailable", error=e.message)
        headers = None
        if e.kind.http_status == HTTP_401_UNAUTHORIZED:
            headers = {"WWW-Authenticate": f'Basic realm="{_REALM}", charset="UTF-8"'}
        raise HTTPException(status_code=e.kind.http_status, detail=e.message, headers=headers) from e

    request.state.auth = result
    request.state.trust_headers = result.headers
    request.state.forward_query = [
        (k, v) for k, v in request.query_params.multi_items() if k not in result.consumed_params
    ]
    return result.context


# Sync on purpose: identity-provider calls block, so FastAPI runs these in its threadpool.
def get_auth_context(
    request: Request,
    credentials: PresentedCredentials = Depends(presented_credentials),
    settings: Settings = Depends(get_settings),
    authenticator: Authenticator = Depends(authenticator_from_app),
) -> AuthorizationContext:
    return _authenticate(
        request, credentials, authenticator, guess_scope=settings.default_guess_scope
    )


def get_scoped_auth_context(
    request: Request,
    credentials: PresentedCredentials = Depends(presented_credentials),
    authenticator: Authenticator = Depends(authenticator_from_app),
) -> AuthorizationContext:
    # No scope guessing: the caller has to name a project or domain.
    return _authenticate(request, credentials, authenticator, guess_scope=False)


def require_roles(*required: str):
    required_set = frozenset(required)

    def _dep(context: AuthorizationContext = Depends(get_auth_context)) -> AuthorizationContext:
        if not required_set.issubset(context.roles):
            raise HTTPException(status_code=HTTP_403_FORBIDDEN, detail="Insufficient role")
        return context

    return _dep


# --- Module Notes -----------------------------------------------------------
# Routers that proxy to the metrics backend should forward `request.state.trust_headers`
# and `request.state.forward_query` rather than the raw inbound request.
