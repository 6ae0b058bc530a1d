from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
import requests
from aws_lambda_powertools import Tracer

# Add project root and chatkit-session-lib to path
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src" / "chatkit-session-lib" / "src"))

from chatkit_session.identity import anonymous_user_id  # noqa: E402
from chatkit_session.models import SessionIssued  # noqa: E402
from src.create_session import handler as create_session_handler  # noqa: E402
from src.create_session.handler import handler  # noqa: E402

API_KEY = "sk-test-key"  # pragma: allowlist secret
WORKFLOW_ID = "wf_abc"
USER_AGENT = "Mozilla/5.0 (Macintosh)"
SOURCE_IP = "203.0.113.10"


class FakeLambdaContext:
    function_name = "create-session"
    memory_limit_in_mb = 128
    invoked_function_arn = "arn:aws:lambda:eu-west-2:111111111111:function:create-session"
    aws_request_id = "req-123"


@pytest.fixture
def chatkit_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", API_KEY)
    monkeypatch.setenv("CHATKIT_WORKFLOW_ID", WORKFLOW_ID)
    for name in ("STARTER_MESSAGE", "CHAT_TITLE", "CHATKIT_API_BASE", "CHATKIT_TIMEOUT_SECONDS"):
        monkeypatch.delenv(name, raising=False)


def _event(method: str = "POST", body: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "httpMethod": method,
        "path": "/api/create-session",
        "headers": {"User-Agent": USER_AGENT, "Content-Type": "application/json"},
        "requestContext": {"requestId": "api-req-1", "identity": {"sourceIp": SOURCE_IP}},
        "body": None if body is None else json.dumps(body),
    }


def _provider_response(status_code: int, text: str) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.text = text
    return response


def _body(response: dict[str, Any]) -> dict[str, Any]:
    return json.loads(response["body"])


EXPECTED_USER = anonymous_user_id(SOURCE_IP, USER_AGENT)


# ---------------------------------------------------------------------------
# Preflight / method handling
# ---------------------------------------------------------------------------


def test_options_preflight_short_circuits(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("CHATKIT_WORKFLOW_ID", raising=False)

    with patch("requests.post") as mock_post:
        response = handler(_event("OPTIONS"), FakeLambdaContext())

    assert response["statusCode"] == 204
    assert response["headers"]["Access-Control-Allow-Origin"] == "*"
    assert response["headers"]["Access-Control-Allow-Methods"] == "POST, OPTIONS"
    assert response["headers"]["Access-Control-Allow-Headers"] == "Content-Type"
    mock_post.assert_not_called()


def test_http_api_v2_preflight():
    event = {"requestContext": {"http": {"method": "OPTIONS", "sourceIp": SOURCE_IP}}}
    response = handler(event, FakeLambdaContext())
    assert response["statusCode"] == 204


def test_http_api_v2_null_http_context_is_rejected(chatkit_env):
    event = {"requestContext": {"http": None}}
    with patch("requests.post") as mock_post:
        response = handler(event, FakeLambdaContext())

    assert response["statusCode"] == 405
    assert _body(response) == {"error": "Method not allowed"}
    mock_post.assert_not_called()


def test_other_methods_rejected(chatkit_env):
    with patch("requests.post") as mock_post:
        response = handler(_event("GET"), FakeLambdaContext())

    assert response["statusCode"] == 405
    assert response["headers"]["Allow"] == "POST, OPTIONS"
    mock_post.assert_not_called()


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("missing", ["OPENAI_API_KEY", "CHATKIT_WORKFLOW_ID"])
def test_missing_config_returns_500_without_outbound_call(
    chatkit_env, monkeypatch: pytest.MonkeyPatch, missing: str
):
    monkeypatch.delenv(missing)

    with patch("requests.post") as mock_post:
        response = handler(_event(), FakeLambdaContext())

    assert response["statusCode"] == 500
    assert _body(response) == {"error": "Server misconfiguration"}
    assert mock_post.call_count == 0


# ---------------------------------------------------------------------------
# Provider call
# ---------------------------------------------------------------------------


def test_success_returns_secret_and_derived_user(chatkit_env):
    with patch("requests.post") as mock_post:
        mock_post.return_value = _provider_response(200, '{"client_secret":"abc123"}')
        response = handler(_event(), FakeLambdaContext())

    assert response["statusCode"] == 200
    assert response["headers"]["Access-Control-Allow-Origin"] == "*"
    assert _body(response) == {"client_secret": "abc123", "user": EXPECTED_USER}

    assert mock_post.call_count == 1
    args, kwargs = mock_post.call_args
    assert args[0] == "https://api.openai.com/v1/chatkit/sessions"
    assert kwargs["headers"]["Authorization"] == f"Bearer {API_KEY}"
    assert kwargs["headers"]["OpenAI-Beta"] == "chatkit_beta=v1"
    assert kwargs["headers"]["Content-Type"] == "application/json"
    assert kwargs["json"] == {"workflow": {"id": WORKFLOW_ID}, "user": EXPECTED_USER}
    assert kwargs["timeout"] == 10.0


def test_client_secret_never_captured_as_trace_metadata(
    chatkit_env, monkeypatch: pytest.MonkeyPatch
):
    monkeypatch.setenv("POWERTOOLS_TRACER_CAPTURE_RESPONSE", "true")
    with (
        patch.object(Tracer, "_add_response_as_metadata", autospec=True) as mock_metadata,
        patch("requests.post") as mock_post,
    ):
        mock_post.return_value = _provider_response(200, '{"client_secret":"abc123"}')
        response = handler(_event(), FakeLambdaContext())

    assert response["statusCode"] == 200
    assert mock_metadata.call_count == 1
    assert mock_metadata.call_args.kwargs["capture_response"] is False


def test_same_request_yields_same_user(chatkit_env):
    with patch("requests.post") as mock_post:
        mock_post.return_value = _provider_response(200, '{"client_secret":"abc123"}')
        first = _body(handler(_event(), FakeLambdaContext()))["user"]
        second = _body(handler(_event(), FakeLambdaContext()))["user"]

    assert first == second == EXPECTED_USER


def test_body_user_overrides_derived_id(chatkit_env):
    with patch("requests.post") as mock_post:
        mock_post.return_value = _provider_response(200, '{"client_secret":"abc123"}')
        response = handler(_event(body={"user": "  customer-42 "}), FakeLambdaContext())

    assert _body(response)["user"] == "customer-42"
    assert mock_post.call_args.kwargs["json"]["user"] == "customer-42"


def test_invalid_body_is_ignored(chatkit_env):
    event = _event()
    event["body"] = "not-json"
    with patch("requests.post") as mock_post:
        mock_post.return_value = _provider_response(200, '{"client_secret":"abc123"}')
        response = handler(event, FakeLambdaContext())

    assert _body(response)["user"] == EXPECTED_USER


def test_nested_client_secret_accepted(chatkit_env):
    with patch("requests.post") as mock_post:
        mock_post.return_value = _provider_response(
            200, '{"id": "cksess_1", "client_secret": {"value": "ek_nested"}}'
        )
        response = handler(_event(), FakeLambdaContext())

    assert response["statusCode"] == 200
    assert _body(response)["client_secret"] == "ek_nested"


def test_custom_api_base(chatkit_env, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("CHATKIT_API_BASE", "http://localhost:8767/v1")
    with patch("requests.post") as mock_post:
        mock_post.return_value = _provider_response(200, '{"client_secret":"abc123"}')
        handler(_event(), FakeLambdaContext())

    assert mock_post.call_args.args[0] == "http://localhost:8767/v1/chatkit/sessions"


def test_provider_error_with_json_details(chatkit_env):
    with patch("requests.post") as mock_post:
        mock_post.return_value = _provider_response(429, '{"error":"rate_limited"}')
        response = handler(_event(), FakeLambdaContext())

    assert response["statusCode"] == 502
    assert _body(response) == {
        "error": "OpenAI session creation failed",
        "details": {"error": "rate_limited"},
    }
    assert mock_post.call_count == 1


def test_provider_error_with_text_details(chatkit_env):
    with patch("requests.post") as mock_post:
        mock_post.return_value = _provider_response(503, "upstream connect error")
        response = handler(_event(), FakeLambdaContext())

    assert response["statusCode"] == 502
    assert _body(response)["details"] == "upstream connect error"
    assert mock_post.call_count == 1


def test_provider_success_without_secret(chatkit_env):
    with patch("requests.post") as mock_post:
        mock_post.return_value = _provider_response(200, '{"id": "cksess_1"}')
        response = handler(_event(), FakeLambdaContext())

    assert response["statusCode"] == 502
    assert _body(response) == {"error": "OpenAI session response missing client_secret"}


def test_provider_unreachable(chatkit_env):
    with patch("requests.post", side_effect=requests.exceptions.ConnectTimeout("timed out")):
        response = handler(_event(), FakeLambdaContext())

    assert response["statusCode"] == 502
    body = _body(response)
    assert body["error"] == "OpenAI session creation failed"
    assert API_KEY not in response["body"]


def test_unexpected_error_returns_500(chatkit_env):
    with patch("requests.post", side_effect=RuntimeError("kaboom")):
        response = handler(_event(), FakeLambdaContext())

    assert response["statusCode"] == 500
    assert _body(response) == {"error": "internal error", "details": "kaboom"}


# ---------------------------------------------------------------------------
# Post-creation actions
# ---------------------------------------------------------------------------


def test_post_creation_actions_target_session(chatkit_env, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("STARTER_MESSAGE", "Hello there")
    monkeypatch.setenv("CHAT_TITLE", "Support")
    config = create_session_handler.load_config()
    issued = SessionIssued(client_secret="ek", user="anon_x", session_id="cksess_9")

    with patch("requests.post") as mock_post:
        mock_post.return_value = _provider_response(200, "{}")
        threads = create_session_handler.start_post_creation_actions(config, issued)
        for thread in threads:
            thread.join(timeout=5)

    urls = sorted(call.args[0] for call in mock_post.call_args_list)
    assert urls == [
        "https://api.openai.com/v1/chatkit/sessions/cksess_9",
        "https://api.openai.com/v1/chatkit/sessions/cksess_9/messages",
    ]
    for call in mock_post.call_args_list:
        assert call.kwargs["headers"]["OpenAI-Beta"] == "chatkit_beta=v1"


def test_post_creation_actions_skipped_without_session_id(
    chatkit_env, monkeypatch: pytest.MonkeyPatch
):
    monkeypatch.setenv("STARTER_MESSAGE", "Hello there")
    config = create_session_handler.load_config()
    issued = SessionIssued(client_secret="ek", user="anon_x")

    with patch("requests.post") as mock_post:
        assert create_session_handler.start_post_creation_actions(config, issued) == []
    mock_post.assert_not_called()


def test_post_creation_failure_does_not_affect_response(
    chatkit_env, monkeypatch: pytest.MonkeyPatch
):
    monkeypatch.setenv("STARTER_MESSAGE", "Hello there")
    started: list[Any] = []
    real_start = create_session_handler.start_post_creation_actions

    def _tracking(config, issued):
        threads = real_start(config, issued)
        started.extend(threads)
        return threads

    monkeypatch.setattr(create_session_handler, "start_post_creation_actions", _tracking)

    with patch("requests.post") as mock_post:
        mock_post.side_effect = [
            _provider_response(200, '{"id": "cksess_1", "client_secret": "abc123"}'),
            RuntimeError("starter message endpoint unavailable"),
        ]
        response = handler(_event(), FakeLambdaContext())
        for thread in started:
            thread.join(timeout=5)

    assert response["statusCode"] == 200
    assert _body(response) == {"client_secret": "abc123", "user": EXPECTED_USER}
    assert len(started) == 1
    assert mock_post.call_count == 2
