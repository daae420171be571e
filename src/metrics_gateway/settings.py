"""
metrics_gateway.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for the identity provider,
  the service account and the auth caches.
- Hide secrets from repr/logging (service password, static token).
- Offer a cached settings instance for dependency injection.
"""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

RegistryRefresh = Literal["never", "on_reauth", "on_ttl"]


class Settings(BaseSettings):
    """
    Settings are read from `MGW_*` environment variables, e.g.
    `MGW_KEYSTONE_AUTH_URL` or `MGW_TOKEN_CACHE_TIME=PT15M`.
    """

    model_config = SettingsConfigDict(env_prefix="MGW_", case_sensitive=False)

    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "metrics-gateway"
    log_level: str = "INFO"

    api_host: str = "0.0.0.0"
    api_port: int = 9091

    # Identity provider
    keystone_auth_url: str = "http://localhost:5000/v3"
    proxy_url: str | None = None
    request_timeout: float = 30.0

    # Service account used for privileged lookups (roles, projects, users).
    keystone_username: str | None = None
    keystone_password: str | None = Field(default=None, repr=False)
    keystone_user_domain_name: str | None = None
    keystone_token: str | None = Field(default=None, repr=False)
    keystone_project_name: str | None = None
    keystone_project_domain_name: str | None = None

    # Comma-separated role names that grant access to metrics.
    keystone_roles: str = "monitoring_viewer"

    # Caches
    token_cache_time: timedelta = timedelta(minutes=15)
    cache_max_entries: int = 10_000
    cache_sweep_interval: timedelta = timedelta(minutes=1)

    # Role/domain registry refresh policy; see `auth.registry`.
    registry_refresh: RegistryRefresh = "never"
    registry_ttl: timedelta = timedelta(hours=1)

    max_project_depth: int = Field(default=32, ge=1)
    backoff_reset_on_success: bool = True

    # Pick a default project for basic-auth users that did not name a scope.
    default_guess_scope: bool = True

    @property
    def monitoring_role_names(self) -> list[str]:
        return [r.strip() for r in self.keystone_roles.split(",") if r.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for each request dependency.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# `keystone_token` only seeds the service session: the session keeps its own copy,
# replaced after every successful logon and cleared after a failed one.
