"""Exception hierarchy for assetproxy.

All exceptions inherit from :class:`AssetProxyError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`assetproxy.exit_codes`.
The CLI entry point :func:`assetproxy.app.main` catches ``AssetProxyError``
and exits with the appropriate code; the HTTP layer in
:mod:`assetproxy.server` maps the same classes to status codes.

Only fatal conditions are exceptions. Rate limiting that outlasts the retry
budget, identifiers missing from an upstream batch, and unparseable bodies
are represented in data (see :class:`~assetproxy.client.response.FetchOutcome`
and :class:`~assetproxy.cache.entries.ErrorPlaceholder`).

Subclass hierarchy::

    AssetProxyError (exit 1)
    +-- InvalidRequestError        (exit 2)
    +-- NetworkError               (exit 6)
    |   +-- DeadlineExceededError  (exit 6)
    +-- ReadError                  (exit 8)
    +-- ConfigError                (exit 1)
"""

from assetproxy.exit_codes import (
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_REQUEST,
    EXIT_NETWORK_ERROR,
    EXIT_READ_ERROR,
)


class AssetProxyError(Exception):
    """Base exception for all assetproxy errors.

    Args:
        message: Human-readable error description.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidRequestError(AssetProxyError):
    """Raised for an empty or malformed identifier set.

    Always raised before any upstream call is made.
    """

    exit_code = EXIT_INVALID_REQUEST


class NetworkError(AssetProxyError):
    """Raised when the upstream transport keeps failing after all retries.

    Args:
        message: Human-readable error description.
        attempts: Number of attempts made before giving up.
    """

    exit_code = EXIT_NETWORK_ERROR

    def __init__(self, message: str, attempts: int = 0, exit_code: int | None = None):
        super().__init__(message, exit_code=exit_code)
        self.attempts = attempts


class DeadlineExceededError(NetworkError):
    """Raised when a fetch, including every retry and backoff, outlives its deadline."""


class ReadError(AssetProxyError):
    """Raised when an upstream response body cannot be read after all retries."""

    exit_code = EXIT_READ_ERROR

    def __init__(self, message: str, attempts: int = 0, exit_code: int | None = None):
        super().__init__(message, exit_code=exit_code)
        self.attempts = attempts


class ConfigError(AssetProxyError):
    """Raised for configuration problems (invalid JSON, bad credential sources)."""

    exit_code = EXIT_GENERIC_FAILURE
