"""
dev-invoke.py — Request a ChatKit session from a running create-session endpoint.

Uses the same SessionClient the widget bootstrap uses, so retries, backoff and
timeouts behave exactly as they do in the browser flow.

Usage:
    uv run python scripts/dev-invoke.py \\
        --endpoint http://localhost:7071/api/create-session \\
        [--attempts 3] [--timeout 8] [--host-token <token>]

Exit codes: 0 on success, 1 when every attempt failed.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src" / "chatkit-session-lib" / "src"))

from chatkit_session import HostTokenSlot, SessionClient, SessionRetriesExhausted  # noqa: E402

DEFAULT_ENDPOINT = "http://localhost:7071/api/create-session"


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Request a ChatKit session credential.")
    parser.add_argument("--endpoint", default=DEFAULT_ENDPOINT)
    parser.add_argument("--attempts", type=int, default=3)
    parser.add_argument("--timeout", type=float, default=8.0)
    parser.add_argument("--host-token", default=None)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    slot = HostTokenSlot()
    if args.host_token:
        slot.set(args.host_token)

    client = SessionClient(
        args.endpoint,
        max_attempts=args.attempts,
        timeout=args.timeout,
        host_token=slot,
    )
    try:
        secret = client.get_credential()
    except SessionRetriesExhausted as exc:
        print(
            json.dumps(
                {"ok": False, "attempts": exc.attempts, "error": str(exc.last_error)}, indent=2
            ),
            file=sys.stderr,
        )
        return 1

    # Only a prefix: the credential is a live secret.
    print(json.dumps({"ok": True, "client_secret_prefix": secret[:12]}, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
