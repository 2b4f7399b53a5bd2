"""Container healthcheck for the sqlmodeler-mcp HTTP transport.

Exit code 0 only when ``/health`` answers 200 with ``status == "healthy"`` and
a ``service`` field naming this server, so a different process bound to the
same port does not pass. The URL can be overridden with
SQLMODELER_MCP_HEALTH_URL.
"""

from __future__ import annotations

import json
import os
import sys
from typing import Any, Final
from urllib.request import Request, urlopen

DEFAULT_URL: Final[str] = "http://127.0.0.1:8000/health"
EXPECTED_SERVICE: Final[str] = "sqlmodeler-mcp"


def payload_problem(data: Any) -> str | None:
    """Return why a /health payload is unacceptable, or None when it is fine."""
    if not isinstance(data, dict):
        return f"payload is not a JSON object: {data!r}"
    if data.get("status") != "healthy":
        return f"payload not healthy: {data}"
    if data.get("service") != EXPECTED_SERVICE:
        return f"unexpected service {data.get('service')!r}, wanted {EXPECTED_SERVICE!r}"
    return None


def main() -> int:
    url = os.getenv("SQLMODELER_MCP_HEALTH_URL", DEFAULT_URL)
    try:
        req = Request(url, headers={"User-Agent": "sqlmodeler-mcp/healthcheck"})  # noqa: S310
        with urlopen(req, timeout=4) as resp:  # noqa: S310 - operator-supplied http URL
            if resp.status != 200:
                print(f"unexpected status: {resp.status}", file=sys.stderr)
                return 1
            data = json.loads(resp.read().decode("utf-8"))
    except Exception as exc:  # noqa: BLE001
        print(f"healthcheck error: {exc}", file=sys.stderr)
        return 1
    problem = payload_problem(data)
    if problem is not None:
        print(problem, file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover - used by Docker
    raise SystemExit(main())
