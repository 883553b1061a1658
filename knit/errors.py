"""
Exceptions for Knit.

The resolution core distinguishes three kinds of failure:

1. Validation: a malformed dataset key. Not an exception; ``set`` returns
   None and leaves the store untouched.
2. Transport: a resource or remote store could not be reached, answered
   with an error status, or answered with an error sentinel (a string body
   where a record was expected).
3. Stall: a dependency that never completes. Only detected when a
   ``dependency_timeout`` is configured.

Lookup and descriptor errors are programming errors and always raise.
"""

from __future__ import annotations

from typing import Any


class KnitError(Exception):
    """Base exception for all Knit errors."""


# =============================================================================
# Lookup / descriptor errors
# =============================================================================


class InvalidDependencyError(KnitError):
    """Raised when a tagged descriptor has an unknown kind or bad arguments."""

    def __init__(self, message: str, value: Any = None):
        super().__init__(message)
        self.value = value


class InvalidComponentError(KnitError):
    """Raised when a value cannot be turned into a component definition."""

    def __init__(self, message: str, value: Any = None):
        super().__init__(message)
        self.value = value


class ComponentNotFoundError(KnitError):
    """Raised when a component index is referenced before registration."""

    def __init__(self, index: str, available: list[str] | None = None):
        listed = ", ".join(available or []) or "(none)"
        super().__init__(f"No component registered for index: {index}. Available: {listed}")
        self.index = index


# =============================================================================
# Transport errors
# =============================================================================


class ResourceLoadError(KnitError):
    """Raised when a resource cannot be loaded."""

    def __init__(
        self,
        message: str,
        url: str,
        *,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.url = url
        self.status_code = status_code

    def __str__(self) -> str:
        parts = [f"[{self.url}] {self.args[0]}"]
        if self.status_code:
            parts.append(f"(status={self.status_code})")
        return " ".join(parts)


class RemoteStoreError(KnitError):
    """Raised when a remote datastore request fails at the transport level."""

    def __init__(
        self,
        message: str,
        url: str,
        *,
        status_code: int | None = None,
        response_body: str | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.response_body = response_body
        self.retryable = retryable

    def __str__(self) -> str:
        parts = [f"[{self.url}] {self.args[0]}"]
        if self.status_code:
            parts.append(f"(status={self.status_code})")
        return " ".join(parts)


class RemoteAuthError(RemoteStoreError):
    """Raised when the remote store rejects credentials (401/403)."""

    def __init__(self, message: str, url: str, **kwargs):
        super().__init__(message, url, retryable=False, **kwargs)


class RemoteNotFoundError(RemoteStoreError):
    """Raised when the remote store endpoint does not exist (404)."""

    def __init__(self, message: str, url: str, **kwargs):
        super().__init__(message, url, retryable=False, **kwargs)


# =============================================================================
# Stall
# =============================================================================


class StalledDependencyError(KnitError):
    """Raised when a dependency does not resolve within dependency_timeout."""

    def __init__(self, dependency: Any, timeout: float):
        super().__init__(f"Dependency did not resolve within {timeout}s: {dependency!r}")
        self.dependency = dependency
        self.timeout = timeout
