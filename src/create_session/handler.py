"""
create_session.handler — ChatKit session issuance Lambda.

POST /api/create-session
  1. Validates OPENAI_API_KEY / CHATKIT_WORKFLOW_ID (500 before any outbound call).
  2. Derives an anonymous user id from the request (or honours body "user").
  3. Makes exactly one call to the provider sessions endpoint; never retries.
  4. Returns {client_secret, user}, 502 on provider failure, 500 otherwise.

OPTIONS is answered with permissive CORS headers before anything else runs.

Optional STARTER_MESSAGE / CHAT_TITLE trigger fire-and-forget provider calls
after a successful issue. They are not part of the documented provider
contract; their outcome is only ever logged. The threads are not joined, so
the Lambda runtime may freeze them when the handler returns: they can finish
on a later invocation or never run. Do not rely on either action being applied.

The response carries a live client_secret, so it is never captured as trace
metadata.
"""

from __future__ import annotations

import json
import threading
from typing import Any

import requests
from aws_lambda_powertools import Logger, Tracer
from aws_lambda_powertools.logging import correlation_paths
from aws_lambda_powertools.utilities.typing import LambdaContext
from chatkit_session.body import extract_client_secret, parse_body
from chatkit_session.config import IssuerConfig, load_config
from chatkit_session.exceptions import (
    ConfigurationError,
    MalformedResponseError,
    TransportError,
    UpstreamError,
)
from chatkit_session.identity import derive_user_id
from chatkit_session.models import (
    BETA_HEADER_NAME,
    BETA_HEADER_VALUE,
    SESSIONS_PATH,
    SessionIssued,
)

logger = Logger(service="create-session")
tracer = Tracer()

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
ALLOWED_METHODS = "POST, OPTIONS"
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": ALLOWED_METHODS,
    "Access-Control-Allow-Headers": "Content-Type",
}

UPSTREAM_FAILURE = "OpenAI session creation failed"
MISSING_SECRET = "OpenAI session response missing client_secret"


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------


def _response(status_code: int, body: dict[str, Any]) -> dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json", "Access-Control-Allow-Origin": "*"},
        "body": json.dumps(body),
    }


def error_response(status_code: int, error: str, details: Any = None) -> dict[str, Any]:
    body: dict[str, Any] = {"error": error}
    if details is not None:
        body["details"] = details
    return _response(status_code, body)


def preflight_response() -> dict[str, Any]:
    return {"statusCode": 204, "headers": dict(CORS_HEADERS), "body": ""}


def _method(event: dict[str, Any]) -> str:
    method = event.get("httpMethod")
    if not method:
        method = ((event.get("requestContext") or {}).get("http") or {}).get("method", "")
    return str(method).upper()


def _requested_user(event: dict[str, Any]) -> str | None:
    """Return a caller-supplied "user" override from the JSON body, if any."""
    raw = event.get("body")
    if not raw:
        return None
    try:
        body = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Ignoring non-JSON request body")
        return None
    if not isinstance(body, dict):
        return None
    user = body.get("user")
    if isinstance(user, str) and user.strip():
        return user.strip()
    return None


# ---------------------------------------------------------------------------
# Provider calls
# ---------------------------------------------------------------------------


def provider_headers(config: IssuerConfig) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {config.api_key}",
        BETA_HEADER_NAME: BETA_HEADER_VALUE,
        "Content-Type": "application/json",
    }


def create_provider_session(config: IssuerConfig, user: str) -> SessionIssued:
    """Issue one session-creation call. Raises on any failure; never retries."""
    payload = {"workflow": {"id": config.workflow_id}, "user": user}
    try:
        response = requests.post(
            f"{config.api_base}{SESSIONS_PATH}",
            headers=provider_headers(config),
            json=payload,
            timeout=config.timeout_seconds,
        )
    except requests.exceptions.RequestException as exc:
        raise TransportError(f"Provider unreachable: {type(exc).__name__}") from exc

    body = parse_body(response.text)
    if not response.ok:
        raise UpstreamError(status_code=response.status_code, details=body)

    secret = extract_client_secret(body.value) if body.is_json else None
    if not secret:
        raise MalformedResponseError(MISSING_SECRET, details=body)

    session_id = body.value.get("id") if isinstance(body.value, dict) else None
    return SessionIssued(
        client_secret=secret,
        user=user,
        session_id=str(session_id) if session_id else None,
    )


def _post_side_action(
    name: str, url: str, headers: dict[str, str], payload: dict[str, Any]
) -> None:
    try:
        response = requests.post(url, headers=headers, json=payload, timeout=5)
        if not response.ok:
            logger.warning(
                "Post-creation action rejected",
                extra={
                    "action": name,
                    "status_code": response.status_code,
                    "details": parse_body(response.text).describe(),
                },
            )
            return
        logger.info("Post-creation action applied", extra={"action": name})
    except Exception:
        logger.exception("Post-creation action failed", extra={"action": name})


def start_post_creation_actions(
    config: IssuerConfig, issued: SessionIssued
) -> list[threading.Thread]:
    """Start best-effort starter-message / title calls on daemon threads.

    Returns the started threads; the handler never joins them.
    """
    if not config.has_post_creation_actions:
        return []
    if not issued.session_id:
        logger.warning("Provider returned no session id, skipping post-creation actions")
        return []

    session_url = f"{config.api_base}{SESSIONS_PATH}/{issued.session_id}"
    headers = provider_headers(config)
    actions: list[tuple[str, str, dict[str, Any]]] = []
    if config.starter_message:
        actions.append(
            (
                "starter_message",
                f"{session_url}/messages",
                {"role": "assistant", "content": config.starter_message},
            )
        )
    if config.chat_title:
        actions.append(("chat_title", session_url, {"title": config.chat_title}))

    threads = []
    for name, url, payload in actions:
        thread = threading.Thread(
            target=_post_side_action,
            args=(name, url, headers, payload),
            daemon=True,
            name=f"create-session-{name}",
        )
        thread.start()
        threads.append(thread)
    return threads


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


@logger.inject_lambda_context(correlation_id_path=correlation_paths.API_GATEWAY_REST)
@tracer.capture_lambda_handler(capture_response=False)
def handler(event: dict[str, Any], context: LambdaContext) -> dict[str, Any]:
    """create-session Lambda entry point."""
    method = _method(event)
    if method == "OPTIONS":
        return preflight_response()
    if method != "POST":
        response = error_response(405, "Method not allowed")
        response["headers"]["Allow"] = ALLOWED_METHODS
        return response

    try:
        config = load_config()
    except ConfigurationError as exc:
        logger.error("Missing env vars", extra={"missing": list(exc.missing)})
        return error_response(500, "Server misconfiguration")

    try:
        user = _requested_user(event) or derive_user_id(event)
        issued = create_provider_session(config, user)
    except UpstreamError as exc:
        logger.error(
            "OpenAI session create failed",
            extra={"status_code": exc.status_code, "details": exc.details.describe()},
        )
        return error_response(502, UPSTREAM_FAILURE, exc.details.value)
    except MalformedResponseError as exc:
        logger.error("OpenAI session response malformed", extra={"error": str(exc)})
        return error_response(502, MISSING_SECRET)
    except TransportError as exc:
        logger.error("OpenAI session create failed", extra={"error": str(exc)})
        return error_response(502, UPSTREAM_FAILURE, str(exc))
    except Exception as exc:
        logger.exception("Unhandled error creating session")
        return error_response(500, "internal error", str(exc))

    logger.info("Session issued", extra={"user": issued.user})
    try:
        start_post_creation_actions(config, issued)
    except Exception:
        logger.exception("Failed to start post-creation actions")
    return _response(200, issued.to_body())
