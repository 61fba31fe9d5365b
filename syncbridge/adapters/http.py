"""Shared REST plumbing for HTTP-backed adapters"""

import logging
import re
from typing import Any, Optional

import requests

from syncbridge.adapters.base import AdapterRequestError, SyncAdapter
from syncbridge.cancellation import CancellationToken, OperationCancelled, ensure_token

logger = logging.getLogger(__name__)

_COMMENT_MARKER_RE = re.compile(r"<!--\s*syncbridge-comment:(?P<handle>[^\s>]+?)\s*-->")


def comment_marker(handle: str) -> str:
    """Hidden marker embedded in comments we create, carrying the origin handle."""
    return f"<!-- syncbridge-comment:{handle} -->"


def extract_comment_marker(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    m = _COMMENT_MARKER_RE.search(text)
    return m.group("handle") if m else None


def strip_comment_marker(text: Optional[str]) -> str:
    return _COMMENT_MARKER_RE.sub("", text or "").rstrip()


def _describe_http_error(response: requests.Response, service: str) -> str:
    """Convert HTTP errors to readable messages."""
    status = response.status_code

    messages = {
        400: f"{service}: Request rejected (HTTP 400): {response.text[:200]}",
        401: f"{service}: Authentication failed. Check the configured token!",
        403: f"{service}: Access denied. Check permissions of the configured token!",
        404: f"{service}: Resource not found.",
        429: f"{service}: Too many requests.",
        500: f"{service}: Server error.",
        502: f"{service}: Bad gateway.",
        503: f"{service}: Service unavailable.",
    }

    return messages.get(status, f"{service}: HTTP {status} - {response.reason}")


class HttpSyncAdapter(SyncAdapter):
    """Adapter talking to a REST API through a requests session.

    Every request honours the caller's cancellation token: the session is closed when the
    token fires, which aborts a blocked socket wait, and the resulting error is reported as
    OperationCancelled rather than as a request failure.
    """

    retry_status_codes = (429, 500, 502, 503, 504)

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        max_attempts: int = 3,
        base_delay_s: float = 0.5,
        batch_size: int = 100,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(batch_size=batch_size)
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.base_delay_s = base_delay_s
        self.session = session or requests.Session()

    def _should_retry(self, response: Optional[requests.Response]) -> bool:
        return response is not None and response.status_code in self.retry_status_codes

    def _request(
        self,
        method: str,
        url: str,
        cancellation: Optional[CancellationToken] = None,
        *,
        allow_statuses: tuple = (),
        **kwargs: Any,
    ) -> requests.Response:
        """Send a request with retries on transient failures.

        Statuses in `allow_statuses` are returned to the caller instead of raising.
        """
        cancellation = ensure_token(cancellation)
        kwargs.setdefault("timeout", self.timeout)
        attempt = 1
        while True:
            cancellation.raise_if_cancelled()
            unregister = cancellation.register(self.session.close)
            try:
                response = self.session.request(method, url, **kwargs)
            except requests.exceptions.RequestException as e:
                if cancellation.cancelled:
                    raise OperationCancelled(cancellation.reason or "Request cancelled") from e
                if attempt >= self.max_attempts:
                    raise AdapterRequestError(
                        f"{self.system_name}: Cannot reach {url}: {e}"
                    ) from e
                response = None
            finally:
                unregister()

            if response is not None:
                if response.ok or response.status_code in allow_statuses:
                    return response
                if attempt >= self.max_attempts or not self._should_retry(response):
                    raise AdapterRequestError(
                        _describe_http_error(response, self.system_name), response.status_code
                    )

            delay = self.base_delay_s * (2 ** (attempt - 1))
            logger.debug(f"{self.system_name}: retrying {method} {url} in {delay}s")
            if cancellation.wait(delay):
                raise OperationCancelled(cancellation.reason or "Request cancelled")
            attempt += 1
