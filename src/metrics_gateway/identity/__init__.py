"""
metrics_gateway.identity

Identity provider (Keystone v3) boundary.

Responsibilities:
- HTTP client for tokens, projects, role assignments, users and roles.
- Domain types for token payloads and listing records.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Nothing in here caches; caching and scope logic live in `metrics_gateway.auth`.
