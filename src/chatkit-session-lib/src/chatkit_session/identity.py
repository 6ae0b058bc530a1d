"""
chatkit_session.identity — Anonymous user identifier derivation.

The identifier correlates requests from the same browser without knowing who
the user is. It is advisory: trivially spoofable, not a security identifier.
"""

from __future__ import annotations

import hashlib
from typing import Any

from chatkit_session.models import ANON_USER_HEX_LENGTH, ANON_USER_PREFIX


def get_header(event: dict[str, Any], name: str) -> str | None:
    """Case-insensitive header lookup on an API Gateway proxy event."""
    headers = event.get("headers") or {}
    wanted = name.lower()
    for key, value in headers.items():
        if str(key).lower() == wanted and value is not None:
            return str(value)
    return None


def client_ip(event: dict[str, Any]) -> str:
    forwarded = get_header(event, "x-forwarded-for")
    if forwarded:
        first = forwarded.split(",", 1)[0].strip()
        if first:
            return first
    request_context = event.get("requestContext") or {}
    # REST API (v1) and HTTP API (v2) keep the source IP in different places.
    identity = request_context.get("identity") or {}
    http = request_context.get("http") or {}
    return str(identity.get("sourceIp") or http.get("sourceIp") or "")


def principal_id(event: dict[str, Any]) -> str:
    authorizer = (event.get("requestContext") or {}).get("authorizer") or {}
    if isinstance(authorizer.get("lambda"), dict):
        authorizer = authorizer["lambda"]
    return str(authorizer.get("principalId") or authorizer.get("sub") or "")


def anonymous_user_id(ip: str, user_agent: str, principal: str = "") -> str:
    digest = hashlib.sha256("|".join((ip, user_agent, principal)).encode("utf-8")).hexdigest()
    return f"{ANON_USER_PREFIX}{digest[:ANON_USER_HEX_LENGTH]}"


def derive_user_id(event: dict[str, Any]) -> str:
    return anonymous_user_id(
        client_ip(event),
        get_header(event, "user-agent") or "",
        principal_id(event),
    )
