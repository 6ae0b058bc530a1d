"""
chatkit_session.host_token — Write-once slot for a token captured from the
embedding host (e.g. an SSO token handed over by a Teams tab).

Capture runs on a background thread. Readers never wait for it: an unset slot
is simply read as absent.
"""

from __future__ import annotations

import threading
from collections.abc import Callable

from aws_lambda_powertools import Logger

logger = Logger(service="chatkit-session-lib")


class HostTokenSlot:
    """Single-slot cache. The first non-empty write wins; later writes are ignored."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value: str | None = None

    def set(self, token: str) -> bool:
        if not token:
            return False
        with self._lock:
            if self._value is not None:
                logger.debug("Host token already captured, ignoring second write")
                return False
            self._value = token
            return True

    def get(self) -> str | None:
        with self._lock:
            return self._value

    @property
    def is_set(self) -> bool:
        return self.get() is not None


def capture_host_token(
    slot: HostTokenSlot, fetch: Callable[[], str | None]
) -> threading.Thread:
    """Run fetch() on a daemon thread and store its result in the slot.

    Failures are logged and leave the slot empty.
    """

    def _capture() -> None:
        try:
            token = fetch()
        except Exception:
            logger.exception("Host token capture failed")
            return
        if token:
            slot.set(token)
            logger.info("Host token captured")
        else:
            logger.info("Host did not provide a token")

    thread = threading.Thread(target=_capture, daemon=True, name="host-token-capture")
    thread.start()
    return thread
