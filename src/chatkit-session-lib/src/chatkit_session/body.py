"""
chatkit_session.body — JSON-or-text body parsing and credential extraction.

parse_body() is the single place where a response body is turned into a
ParsedBody; both the issuer's provider error path and the client's retry
path go through it.
"""

from __future__ import annotations

import json
from typing import Any

from chatkit_session.models import BodyKind, ParsedBody

_NESTED_CONTAINERS = ("session", "data")


def parse_body(text: str | bytes | None) -> ParsedBody:
    """Try a structured parse, fall back to the raw text."""
    if text is None:
        return ParsedBody(kind=BodyKind.TEXT, value="")
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    try:
        return ParsedBody(kind=BodyKind.JSON, value=json.loads(text))
    except (json.JSONDecodeError, ValueError):
        return ParsedBody(kind=BodyKind.TEXT, value=text)


def _secret_from(value: Any) -> str | None:
    if isinstance(value, str):
        return value or None
    # Some provider revisions wrap the secret: {"client_secret": {"value": "..."}}
    if isinstance(value, dict):
        inner = value.get("value")
        if isinstance(inner, str) and inner:
            return inner
    return None


def extract_client_secret(payload: Any) -> str | None:
    """Return the credential from a provider or issuer payload, or None.

    Accepts the credential at top level or nested under "session"/"data".
    """
    if not isinstance(payload, dict):
        return None
    secret = _secret_from(payload.get("client_secret"))
    if secret:
        return secret
    for container in _NESTED_CONTAINERS:
        nested = payload.get(container)
        if isinstance(nested, dict):
            secret = _secret_from(nested.get("client_secret"))
            if secret:
                return secret
    return None
