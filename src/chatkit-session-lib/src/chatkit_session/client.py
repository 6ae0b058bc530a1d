"""
chatkit_session.client — Retrying session client for the chat widget.

Requests a credential from the create-session endpoint and hands it to the
widget through the get_client_secret(existing) callback contract.

Retry policy:
  - at most MAX_ATTEMPTS attempts, each bounded by ATTEMPT_TIMEOUT_SECONDS;
  - between failed attempts only: BASE_DELAY * 2**(attempt-1) + uniform jitter;
  - HTTP errors, timeouts, connection failures and malformed bodies all count
    as failed attempts;
  - after the last attempt SessionRetriesExhausted carries the final failure.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from typing import Any

import requests
from aws_lambda_powertools import Logger

from chatkit_session.body import extract_client_secret, parse_body
from chatkit_session.exceptions import (
    ChatKitSessionError,
    MalformedResponseError,
    SessionRetriesExhausted,
    TransportError,
    UpstreamError,
)
from chatkit_session.host_token import HostTokenSlot
from chatkit_session.models import (
    ATTEMPT_TIMEOUT_SECONDS,
    BASE_DELAY_SECONDS,
    MAX_ATTEMPTS,
    MAX_JITTER_SECONDS,
)

logger = Logger(service="session-client")


class SessionClient:
    """Obtains session credentials from the issuer endpoint."""

    def __init__(
        self,
        endpoint: str,
        *,
        max_attempts: int = MAX_ATTEMPTS,
        timeout: float = ATTEMPT_TIMEOUT_SECONDS,
        base_delay: float = BASE_DELAY_SECONDS,
        max_jitter: float = MAX_JITTER_SECONDS,
        http: Any = None,
        sleep: Callable[[float], None] = time.sleep,
        jitter: Callable[[float, float], float] = random.uniform,
        host_token: HostTokenSlot | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts!r}")
        self.endpoint = endpoint
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.base_delay = base_delay
        self.max_jitter = max_jitter
        self._http: Any = http or requests.Session()
        self._sleep = sleep
        self._jitter = jitter
        self._host_token = host_token
        self.credential: str | None = None

    def backoff_delay(self, attempt: int) -> float:
        """Delay after failed attempt number `attempt` (1-based)."""
        return self.base_delay * (2 ** (attempt - 1)) + self._jitter(0.0, self.max_jitter)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self._host_token.get() if self._host_token else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _attempt(self) -> str:
        try:
            response = self._http.post(
                self.endpoint, headers=self._headers(), json={}, timeout=self.timeout
            )
        except requests.exceptions.Timeout as exc:
            raise TransportError(f"Request aborted after {self.timeout}s timeout") from exc
        except requests.exceptions.RequestException as exc:
            raise TransportError(f"Request failed: {exc}") from exc

        body = parse_body(response.text)
        if not response.ok:
            raise UpstreamError(status_code=response.status_code, details=body)
        if not body.is_json:
            raise MalformedResponseError("Session response is not JSON", details=body)
        secret = extract_client_secret(body.value)
        if not secret:
            raise MalformedResponseError("Session response missing client_secret", details=body)
        return secret

    def get_credential(self) -> str:
        """Fetch a fresh credential, retrying with backoff until the attempt cap."""
        attempt = 1
        while True:
            try:
                secret = self._attempt()
            except ChatKitSessionError as exc:
                logger.warning(
                    "Session attempt failed",
                    extra={
                        "attempt": attempt,
                        "max_attempts": self.max_attempts,
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                    },
                )
                if attempt >= self.max_attempts:
                    logger.error("Session retries exhausted", extra={"attempts": attempt})
                    raise SessionRetriesExhausted(attempts=attempt, last_error=exc) from exc
                self._sleep(self.backoff_delay(attempt))
                attempt += 1
                continue
            logger.info("Session credential obtained", extra={"attempt": attempt})
            return secret

    def get_client_secret(self, existing: str | None = None) -> str:
        """Widget callback: reuse the credential the widget holds or the cached one.

        Only fetches when neither is available; reset() forces the next call to fetch.
        """
        if existing:
            return existing
        if self.credential:
            return self.credential
        self.credential = self.get_credential()
        return self.credential

    def reset(self) -> None:
        self.credential = None
