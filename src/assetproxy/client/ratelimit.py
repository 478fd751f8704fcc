"""Rate-limit classification for upstream responses.

The upstream does not signal throttling consistently: sometimes it answers
with HTTP 429, sometimes with a 200 or 5xx whose JSON body carries a
"too many requests" error. :func:`is_rate_limited` is the only place that
knows about this, so a stricter upstream contract can replace the heuristic
without touching the retry loop.

The body heuristic is an assumption about the upstream, not a guarantee:

* ``{"errors": [{"message": "Too many requests"}, ...]}`` -- any error in
  the list whose message contains ``"too many"`` (case-insensitive).
* ``{"code": 0, "message": "Too many requests"}`` -- the sentinel error code
  ``0`` paired with a matching message.
"""

from __future__ import annotations

from typing import Any, Optional

RATE_LIMIT_STATUS = 429
RATE_LIMIT_MARKER = "too many"
SENTINEL_ERROR_CODE = 0


def _mentions_rate_limit(message: Any) -> bool:
    return isinstance(message, str) and RATE_LIMIT_MARKER in message.lower()


def is_rate_limited(status_code: int, parsed_body: Optional[Any]) -> bool:
    """Return ``True`` if a response signals upstream throttling.

    Args:
        status_code: HTTP status of the response.
        parsed_body: JSON-decoded body, or ``None`` when the body was not
            valid JSON.
    """
    if status_code == RATE_LIMIT_STATUS:
        return True
    if not isinstance(parsed_body, dict):
        return False

    errors = parsed_body.get("errors")
    if isinstance(errors, list):
        for item in errors:
            if isinstance(item, dict) and _mentions_rate_limit(item.get("message")):
                return True

    code = parsed_body.get("code")
    # bool is an int subclass; False must not match the sentinel
    if isinstance(code, int) and not isinstance(code, bool) and code == SENTINEL_ERROR_CODE:
        return _mentions_rate_limit(parsed_body.get("message"))
    return False
