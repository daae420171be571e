"""
metrics_gateway.auth.errors

Authentication error kinds.

Responsibilities:
- Define `AuthenticationError` and the closed set of `AuthErrorKind`s.
- Map each kind to the HTTP status the API layer answers with.
"""

from __future__ import annotations

from enum import Enum

from starlette.status import (
    HTTP_401_UNAUTHORIZED,
    HTTP_403_FORBIDDEN,
    HTTP_503_SERVICE_UNAVAILABLE,
)


class AuthErrorKind(str, Enum):
    missing_credentials = "missing_credentials"
    wrong_credentials = "wrong_credentials"
    no_permission = "no_permission"
    not_available = "not_available"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]

    @property
    def retryable(self) -> bool:
        return self is AuthErrorKind.not_available


_HTTP_STATUS = {
    AuthErrorKind.missing_credentials: HTTP_401_UNAUTHORIZED,
    AuthErrorKind.wrong_credentials: HTTP_401_UNAUTHORIZED,
    AuthErrorKind.no_permission: HTTP_403_FORBIDDEN,
    AuthErrorKind.not_available: HTTP_503_SERVICE_UNAVAILABLE,
}


class AuthenticationError(Exception):
    def __init__(self, kind: AuthErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


def missing_credentials(message: str) -> AuthenticationError:
    return AuthenticationError(AuthErrorKind.missing_credentials, message)


def wrong_credentials(message: str) -> AuthenticationError:
    return AuthenticationError(AuthErrorKind.wrong_credentials, message)


def no_permission(message: str) -> AuthenticationError:
    return AuthenticationError(AuthErrorKind.no_permission, message)


def not_available(message: str) -> AuthenticationError:
    return AuthenticationError(AuthErrorKind.not_available, message)
