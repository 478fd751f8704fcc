"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~assetproxy.exceptions.AssetProxyError` subclass.
Shell wrappers around ``assetproxy resolve`` can inspect the exit code to
tell a bad request from an unreachable upstream without parsing stderr.

Example::

    $ assetproxy resolve ""
    $ echo $?
    2   # EXIT_INVALID_REQUEST -- no identifiers given
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_REQUEST = 2
"""The identifier set was empty, malformed, or too large."""

EXIT_NETWORK_ERROR = 6
"""The upstream could not be reached (timeout, DNS failure, connection refused)."""

EXIT_READ_ERROR = 8
"""The upstream responded but its body could not be read."""
