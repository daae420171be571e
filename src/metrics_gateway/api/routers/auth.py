from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from metrics_gateway.auth.context import AuthorizationContext
from metrics_gateway.auth.deps import authenticator_from_app, get_auth_context, require_roles
from metrics_gateway.auth.keystone import Authenticator

router = APIRouter(prefix="/v1/auth", tags=["auth"])


@router.get("/context")
def whoami(
    request: Request, context: AuthorizationContext = Depends(get_auth_context)
) -> JSONResponse:
    # Echo the trust headers (minus the token) so callers can see what downstream receives.
    headers = {}
    for name, value in request.state.trust_headers:
        if name == "X-Auth-Token":
            continue
        headers[name] = f"{headers[name]},{value}" if name in headers else value
    body: dict[str, Any] = context.to_dict()
    body["endpoint_url"] = request.state.auth.endpoint_url
    return JSONResponse(body, headers=headers)


@router.get("/projects")
def project_subtree(
    context: AuthorizationContext = Depends(get_auth_context),
    authenticator: Authenticator = Depends(authenticator_from_app),
) -> dict[str, Any]:
    project_id = context.project_id
    if not project_id:
        return {"project_id": None, "descendants": []}
    return {"project_id": project_id, "descendants": authenticator.child_projects(project_id)}


@router.post("/registry/refresh", dependencies=[Depends(require_roles("admin"))])
async def refresh_registry(
    authenticator: Authenticator = Depends(authenticator_from_app),
) -> dict[str, Any]:
    session = authenticator.session
    client = await run_in_threadpool(session.ensure_authenticated)
    snapshot = await run_in_threadpool(session.registry.refresh, client)
    return {
        "version": snapshot.version,
        "roles": sorted(snapshot.monitoring_roles.values()),
        "domains": len(snapshot.domain_names),
    }
