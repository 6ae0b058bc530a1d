"""
chatkit_session.exceptions — Error taxonomy for session issuance.

Server side, every error is terminal for the invocation and mapped to a
status code by the handler. Client side, UpstreamError, MalformedResponseError
and TransportError count as failed attempts and are retried until the attempt
cap, after which SessionRetriesExhausted is raised carrying the last failure.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chatkit_session.models import ParsedBody


class ChatKitSessionError(Exception):
    """Base class for all session issuance errors."""


class ConfigurationError(ChatKitSessionError):
    """
    Raised when a required configuration secret is absent.

    Fatal and never retried. Carries the names of the missing environment
    variables, never their values.
    """

    def __init__(self, *, missing: tuple[str, ...]) -> None:
        self.missing = missing
        super().__init__(f"Missing required configuration: {', '.join(missing)}")


class UpstreamError(ChatKitSessionError):
    """
    Raised when a remote endpoint answers with a non-success status.

    Attributes:
        status_code: HTTP status returned by the remote endpoint.
        details:     Response body, parsed as JSON when possible else raw text.
    """

    def __init__(self, *, status_code: int, details: ParsedBody) -> None:
        self.status_code = status_code
        self.details = details
        super().__init__(f"Upstream responded {status_code}: {details.describe()}")


class MalformedResponseError(ChatKitSessionError):
    """Raised when a success response lacks the expected credential field."""

    def __init__(self, message: str, *, details: ParsedBody | None = None) -> None:
        self.details = details
        super().__init__(message)


class TransportError(ChatKitSessionError):
    """Raised on network failure or timeout. Indistinguishable from an abort."""


class SessionRetriesExhausted(ChatKitSessionError):
    """
    Raised by the session client once every attempt has failed.

    Attributes:
        attempts:   Number of attempts made.
        last_error: The failure observed on the final attempt.
    """

    def __init__(self, *, attempts: int, last_error: ChatKitSessionError) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Session request failed after {attempts} attempts: {last_error}")
