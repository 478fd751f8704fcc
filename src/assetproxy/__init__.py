"""assetproxy -- a caching, rate-limit-aware proxy for a third-party asset API.

The upstream thumbnail and asset-delivery services are slow, flaky, and
throttle aggressively. This package sits in front of them and serves bursty
batch lookups efficiently: identifiers already resolved are answered from a
TTL cache, and the remaining misses are fetched in a single batched upstream
call that retries transport failures and rate limiting with jittered
exponential backoff.

Typical usage::

    assetproxy serve --port 3000
    curl 'http://localhost:3000/thumbnail?id=1818,2151'

Modules:
    app: Typer CLI entry point.
    server: FastAPI application exposing the proxy endpoints.
    client: The resilient upstream fetcher and its retry policy.
    cache: TTL entry store and the batching lookup cache.
    delivery: Single-asset delivery lookups.
    hooks: Per-attempt diagnostic records and observers.
    models: Pydantic configuration models.
    config: Configuration file loading and precedence resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
