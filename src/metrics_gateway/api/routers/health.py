"""
metrics_gateway.api.routers.health

Health and readiness endpoints.

Responsibilities:
- Provide liveness check (`/healthz`).
- Provide readiness check (`/readyz`) reflecting the service session.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from starlette.status import HTTP_503_SERVICE_UNAVAILABLE

from metrics_gateway.auth.deps import authenticator_from_app
from metrics_gateway.auth.keystone import Authenticator

router = APIRouter()


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(authenticator: Authenticator = Depends(authenticator_from_app)) -> dict[str, str]:
    # Readiness: a configured service account must currently hold a token.
    session = authenticator.session
    if session.configured and not session.state.token:
        raise HTTPException(
            status_code=HTTP_503_SERVICE_UNAVAILABLE, detail="identity service session not ready"
        )
    return {"status": "ready", "metrics_endpoint": authenticator.service_url()}


# --- Module Notes -----------------------------------------------------------
# Kubernetes typically uses /healthz for liveness and /readyz for readiness gating.
