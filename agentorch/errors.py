"""Exceptions raised by the Git provider adapters.

Every error carries a human-readable message (often the only thing the UI
shows) plus a closed ``kind`` for programmatic callers.
"""

from enum import Enum

import httpx


class ErrorKind(str, Enum):
    UNSUPPORTED = "unsupported-operation"
    AUTH = "auth-failure"
    REMOTE = "remote-failure"
    TIMEOUT = "timeout"
    DENIED = "denied"


class GitProviderError(RuntimeError):
    """Base exception for provider errors."""

    kind: ErrorKind = ErrorKind.REMOTE


class UnsupportedOperationError(GitProviderError):
    """The provider has no equivalent of the requested operation."""

    kind = ErrorKind.UNSUPPORTED


class AuthenticationError(GitProviderError):
    """Credentials are missing, incomplete or rejected."""

    kind = ErrorKind.AUTH


class RemoteAPIError(GitProviderError):
    """Non-2xx response from a provider API."""

    kind = ErrorKind.REMOTE

    def __init__(self, provider: str, status_code: int, body: str) -> None:
        self.provider = provider
        self.status_code = status_code
        self.body = body
        super().__init__(f"{provider} {status_code}: {body}")

    @property
    def not_found(self) -> bool:
        return self.status_code == 404


class DeviceFlowDeniedError(GitProviderError):
    """The user (or the provider) rejected the device authorization."""

    kind = ErrorKind.DENIED


class DeviceFlowTimeoutError(GitProviderError):
    """The device code expired before the user authorized it."""

    kind = ErrorKind.TIMEOUT


def raise_for_response(provider: str, response: httpx.Response) -> None:
    """Raise RemoteAPIError for any non-2xx response."""
    if response.is_success:
        return
    try:
        body = response.text
    except (UnicodeDecodeError, httpx.ResponseNotRead):
        body = f"HTTP {response.status_code}"
    raise RemoteAPIError(provider, response.status_code, body or f"HTTP {response.status_code}")


# Failures that "is this credential live?" checks report as None instead of raising
SESSION_CHECK_ERRORS = (GitProviderError, httpx.HTTPError, KeyError, ValueError)
