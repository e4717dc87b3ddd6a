"""HTTP transport with failure classification and bounded retries.

``HttpTransport`` performs exactly one request and turns every failure into
a ``TransportError`` with an explicit ``ErrorKind``. ``RetryingTransport``
wraps any ``Transport`` and retries only the transient kinds.
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, TypeVar

import requests

from .errors import DDNSError, ErrorKind, TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 0.5


def classify_status(status: int) -> Optional[ErrorKind]:
    """Map an HTTP status to a failure kind, or None for success."""
    if status < 400:
        return None
    if status == 429 or status >= 500:
        return ErrorKind.NETWORK_TRANSIENT
    if status == 404:
        return ErrorKind.NOT_FOUND
    return ErrorKind.NETWORK_FATAL


def decode_json(text: str, context: str) -> Any:
    try:
        return json.loads(text)
    except (TypeError, ValueError) as e:
        raise TransportError(
            f"Invalid JSON in response to {context}: {e}", ErrorKind.SERIALIZATION
        ) from e


# =============================================================================
# Transport Interface and Implementations
# =============================================================================


class Transport(ABC):
    """Raw text and JSON requests against a remote endpoint."""

    @abstractmethod
    def request(
        self,
        method: str,
        url: str,
        *,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> str:
        """Perform the request and return the response body as text."""
        pass

    def request_json(
        self,
        method: str,
        url: str,
        *,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """Perform the request and decode the response body as JSON."""
        return decode_json(self.request(method, url, body=body, headers=headers), f"{method} {url}")


class HttpTransport(Transport):
    """Single-attempt transport on top of a requests session."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.timeout = timeout
        self._session = session or requests.Session()

    def request(
        self,
        method: str,
        url: str,
        *,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> str:
        method = method.upper()
        data = None
        if body is not None:
            try:
                data = json.dumps(body)
            except (TypeError, ValueError) as e:
                raise TransportError(
                    f"Cannot serialize request body for {method} {url}: {e}",
                    ErrorKind.SERIALIZATION,
                ) from e

        try:
            response = self._session.request(
                method, url, data=data, headers=headers, timeout=self.timeout
            )
        except requests.exceptions.Timeout as e:
            raise TransportError(f"{method} {url} timed out: {e}", ErrorKind.NETWORK_TRANSIENT) from e
        except requests.exceptions.ConnectionError as e:
            raise TransportError(
                f"{method} {url} connection failed: {e}", ErrorKind.NETWORK_TRANSIENT
            ) from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"{method} {url} failed: {e}", ErrorKind.NETWORK_FATAL) from e

        logger.debug(f"{method} {url} - Status: {response.status_code}")

        kind = classify_status(response.status_code)
        if kind is not None:
            raise TransportError(
                f"{method} {url} returned HTTP {response.status_code}",
                kind,
                status=response.status_code,
                errors=self._envelope_errors(response),
            )
        return response.text

    @staticmethod
    def _envelope_errors(response: requests.Response) -> list:
        try:
            data = response.json()
        except ValueError:
            return []
        if isinstance(data, dict) and isinstance(data.get("errors"), list):
            return data["errors"]
        return []


class RetryingTransport(Transport):
    """Retries transient failures of an inner transport with a fixed delay.

    At most ``max_retries + 1`` attempts are made. Non-retryable failures
    are raised after the first attempt without sleeping. Holds no per-call
    state, so one instance can be shared by every update service.
    """

    def __init__(
        self,
        inner: Transport,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.inner = inner
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._sleep = sleep

    def request(
        self,
        method: str,
        url: str,
        *,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> str:
        return self._with_retry(
            f"{method.upper()} {url}",
            lambda: self.inner.request(method, url, body=body, headers=headers),
        )

    def request_json(
        self,
        method: str,
        url: str,
        *,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        return self._with_retry(
            f"{method.upper()} JSON {url}",
            lambda: self.inner.request_json(method, url, body=body, headers=headers),
        )

    def _with_retry(self, operation: str, call: Callable[[], T]) -> T:
        attempts = self.max_retries + 1
        last_error: Optional[DDNSError] = None

        for attempt in range(attempts):
            if attempt > 0:
                logger.debug(f"{operation} retry {attempt}/{self.max_retries}")
                self._sleep(self.retry_delay)
            try:
                result = call()
            except DDNSError as e:
                if not e.retryable:
                    logger.error(f"{operation} failed with non-retryable error: {e}")
                    raise
                logger.warning(f"{operation} failed (attempt {attempt + 1}/{attempts}): {e}")
                last_error = e
                continue
            if attempt > 0:
                logger.debug(f"{operation} succeeded on attempt {attempt + 1}")
            return result

        logger.error(f"All {attempts} attempts failed for {operation}")
        if last_error is None:
            raise TransportError(f"{operation}: no attempt was made")
        raise last_error
