"""
chatkit_session — Shared library for ChatKit session issuance.

Used by the create-session Lambda (issuer side) and by SessionClient
(widget side).
"""

from chatkit_session.client import SessionClient
from chatkit_session.config import IssuerConfig, load_config
from chatkit_session.exceptions import (
    ChatKitSessionError,
    ConfigurationError,
    MalformedResponseError,
    SessionRetriesExhausted,
    TransportError,
    UpstreamError,
)
from chatkit_session.host_token import HostTokenSlot, capture_host_token
from chatkit_session.models import ParsedBody, SessionIssued

__all__ = [
    "ChatKitSessionError",
    "ConfigurationError",
    "HostTokenSlot",
    "IssuerConfig",
    "MalformedResponseError",
    "ParsedBody",
    "SessionClient",
    "SessionIssued",
    "SessionRetriesExhausted",
    "TransportError",
    "UpstreamError",
    "capture_host_token",
    "load_config",
]
