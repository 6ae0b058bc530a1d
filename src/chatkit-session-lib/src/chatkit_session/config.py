"""
chatkit_session.config — Issuer configuration loaded from the environment.

Read at the start of every invocation; nothing is cached across invocations.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from aws_lambda_powertools import Logger

from chatkit_session.exceptions import ConfigurationError
from chatkit_session.models import DEFAULT_API_BASE, DEFAULT_PROVIDER_TIMEOUT_SECONDS

logger = Logger(service="chatkit-session-lib")

API_KEY_ENV = "OPENAI_API_KEY"  # pragma: allowlist secret
WORKFLOW_ID_ENV = "CHATKIT_WORKFLOW_ID"
STARTER_MESSAGE_ENV = "STARTER_MESSAGE"
CHAT_TITLE_ENV = "CHAT_TITLE"
API_BASE_ENV = "CHATKIT_API_BASE"
TIMEOUT_ENV = "CHATKIT_TIMEOUT_SECONDS"


@dataclass(frozen=True)
class IssuerConfig:
    api_key: str
    workflow_id: str
    api_base: str = DEFAULT_API_BASE
    timeout_seconds: float = DEFAULT_PROVIDER_TIMEOUT_SECONDS
    starter_message: str | None = None
    chat_title: str | None = None

    def __repr__(self) -> str:
        # Keep the API key out of tracebacks and log lines.
        return (
            f"IssuerConfig(workflow_id={self.workflow_id!r}, api_base={self.api_base!r}, "
            f"timeout_seconds={self.timeout_seconds!r})"
        )

    @property
    def has_post_creation_actions(self) -> bool:
        return bool(self.starter_message or self.chat_title)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _timeout(raw: str | None) -> float:
    if raw is None:
        return DEFAULT_PROVIDER_TIMEOUT_SECONDS
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric provider timeout", extra={"value": raw})
        return DEFAULT_PROVIDER_TIMEOUT_SECONDS
    if value <= 0:
        logger.warning("Ignoring non-positive provider timeout", extra={"value": raw})
        return DEFAULT_PROVIDER_TIMEOUT_SECONDS
    return value


def load_config(environ: Mapping[str, str] | None = None) -> IssuerConfig:
    """Build an IssuerConfig, raising ConfigurationError if a secret is missing."""
    env = os.environ if environ is None else environ

    api_key = _clean(env.get(API_KEY_ENV))
    workflow_id = _clean(env.get(WORKFLOW_ID_ENV))
    if api_key is None or workflow_id is None:
        required = ((API_KEY_ENV, api_key), (WORKFLOW_ID_ENV, workflow_id))
        raise ConfigurationError(missing=tuple(name for name, value in required if not value))

    return IssuerConfig(
        api_key=api_key,
        workflow_id=workflow_id,
        api_base=(_clean(env.get(API_BASE_ENV)) or DEFAULT_API_BASE).rstrip("/"),
        timeout_seconds=_timeout(_clean(env.get(TIMEOUT_ENV))),
        starter_message=_clean(env.get(STARTER_MESSAGE_ENV)),
        chat_title=_clean(env.get(CHAT_TITLE_ENV)),
    )
