"""
metrics_gateway.auth

Authentication/authorization engine.

Responsibilities:
- Turn request credentials into a verified `AuthorizationContext`.
- Own the service session, role/domain registry and auth caches.
- FastAPI auth dependencies.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# The policy engine that consumes AuthorizationContext lives outside this package.
