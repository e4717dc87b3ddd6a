"""Exception hierarchy for cloudflare-ddns.

Every failure carries an explicit ``ErrorKind`` so callers (and tests) can
tell a retryable network hiccup from a request the provider will never
accept:

    DDNSError (base)
    ├─ TransportError      - HTTP/network failures (transient, fatal, not found, serialization)
    ├─ ProviderLogicError  - provider envelope reported success=false
    ├─ ValidationError     - malformed configuration or record
    ├─ NotFoundError       - record or config entry does not exist
    ├─ ResolveError        - no usable public address could be determined
    ├─ ConfigError         - config storage unreadable or unparseable
    ├─ ServiceStoppedError - a forced update reached a service that was already replaced
    └─ ForceUpdateError    - some records of a multi-record forced update failed
"""

from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional, Tuple


class ErrorKind(Enum):
    """Failure classification used for retry decisions."""

    NETWORK_TRANSIENT = "network_transient"
    NETWORK_FATAL = "network_fatal"
    PROVIDER_LOGIC = "provider_logic"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    SERIALIZATION = "serialization"
    CONFIG = "config"
    CANCELLED = "cancelled"


class DDNSError(Exception):
    """Base exception for all cloudflare-ddns errors."""

    kind: ErrorKind = ErrorKind.NETWORK_FATAL

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.NETWORK_TRANSIENT

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class TransportError(DDNSError):
    """A request could not be completed or was answered with an error status."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.NETWORK_FATAL,
        *,
        status: Optional[int] = None,
        errors: Optional[List[Any]] = None,
    ):
        super().__init__(message, kind)
        self.status = status
        self.errors = errors or []


class ProviderLogicError(DDNSError):
    kind = ErrorKind.PROVIDER_LOGIC

    def __init__(self, message: str, errors: Optional[List[Any]] = None):
        super().__init__(message)
        self.errors = errors or []


class ValidationError(DDNSError):
    kind = ErrorKind.VALIDATION


class NotFoundError(DDNSError):
    kind = ErrorKind.NOT_FOUND


class ResolveError(DDNSError):
    """Public address lookup failed on every configured endpoint."""

    kind = ErrorKind.NETWORK_TRANSIENT


class ConfigError(DDNSError):
    kind = ErrorKind.CONFIG


class ServiceStoppedError(DDNSError):
    kind = ErrorKind.CANCELLED


class ForceUpdateError(DDNSError):
    """Raised after every record was attempted and at least one failed.

    ``applied`` holds the ``(record_name, address)`` pairs that were written,
    ``failures`` the ``(record_name, error)`` pairs that were not.
    """

    def __init__(
        self,
        applied: List[Tuple[str, str]],
        failures: List[Tuple[str, DDNSError]],
    ):
        names = ", ".join(name for name, _ in failures)
        super().__init__(
            f"Forced update failed for {len(failures)} record(s): {names}",
            failures[0][1].kind if failures else None,
        )
        self.applied = applied
        self.failures = failures
