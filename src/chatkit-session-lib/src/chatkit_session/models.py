"""
chatkit_session.models — Value types shared by the issuer and the client.

Constants here describe the provider contract (endpoint path, mandatory beta
header) and the client retry policy defaults.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

# ---------------------------------------------------------------------------
# Provider contract
# ---------------------------------------------------------------------------
DEFAULT_API_BASE: str = "https://api.openai.com/v1"
SESSIONS_PATH: str = "/chatkit/sessions"

# The sessions endpoint rejects calls without this header.
BETA_HEADER_NAME: str = "OpenAI-Beta"
BETA_HEADER_VALUE: str = "chatkit_beta=v1"

DEFAULT_PROVIDER_TIMEOUT_SECONDS: float = 10.0

# ---------------------------------------------------------------------------
# Client retry policy
# ---------------------------------------------------------------------------
MAX_ATTEMPTS: int = 3
ATTEMPT_TIMEOUT_SECONDS: float = 8.0
BASE_DELAY_SECONDS: float = 0.6
MAX_JITTER_SECONDS: float = 0.2

# ---------------------------------------------------------------------------
# Anonymous identity
# ---------------------------------------------------------------------------
ANON_USER_PREFIX: str = "anon_"
ANON_USER_HEX_LENGTH: int = 32


class BodyKind(StrEnum):
    JSON = "json"
    TEXT = "text"


@dataclass(frozen=True)
class ParsedBody:
    """Response body, structured when it parsed as JSON, raw text otherwise."""

    kind: BodyKind
    value: Any

    @property
    def is_json(self) -> bool:
        return self.kind == BodyKind.JSON

    def describe(self) -> str:
        if self.is_json:
            return json.dumps(self.value, sort_keys=True)
        return str(self.value)


@dataclass(frozen=True)
class SessionIssued:
    """Successful issuance: the opaque credential and who it was issued for.

    session_id is only populated when the provider returns one; it is used for
    the best-effort post-creation actions and is never sent to the caller.
    """

    client_secret: str
    user: str
    session_id: str | None = None

    def to_body(self) -> dict[str, str]:
        return {"client_secret": self.client_secret, "user": self.user}
