"""Pydantic configuration models shared across assetproxy modules.

These models are serialised as JSON in the user's config directory (see
:mod:`assetproxy.config`) and are the single source of truth for every
tunable in the proxy: retry budgets, cache lifetimes, upstream URLs, and
server settings. :class:`ProxyConfig` aggregates them.

All models use Pydantic v2. Unknown keys are rejected so that a typo in a
config file surfaces as a :class:`~assetproxy.exceptions.ConfigError`
instead of being ignored.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RetryConfig(BaseModel):
    """Retry and backoff settings for upstream calls.

    Batched thumbnail lookups carry a higher retry budget than single-asset
    lookups because one batched call stands in for many identifiers.
    """

    model_config = ConfigDict(extra="forbid")

    batch_max_retries: int = Field(
        default=5, ge=0, description="Retries for batched thumbnail lookups"
    )
    single_max_retries: int = Field(
        default=3, ge=0, description="Retries for single-asset lookups"
    )
    base_delay: float = Field(
        default=0.1, ge=0, description="Backoff base (seconds) for network/read failures"
    )
    rate_limit_base_delay: float = Field(
        default=0.2, ge=0, description="Backoff base (seconds) for rate-limited responses"
    )
    jitter_max: float = Field(
        default=0.2, ge=0, description="Upper bound (seconds) of the random jitter"
    )
    deadline: Optional[float] = Field(
        default=30.0,
        gt=0,
        description="Overall deadline (seconds) for one logical fetch; null disables",
    )


class CacheConfig(BaseModel):
    """Lookup cache settings."""

    model_config = ConfigDict(extra="forbid")

    ttl_seconds: float = Field(
        default=1800, gt=0, description="Lifetime of resolved and not-found entries"
    )
    rate_limited_ttl_seconds: float = Field(
        default=60,
        gt=0,
        description="Lifetime of placeholders produced by a rate-limited response",
    )
    max_batch_size: int = Field(
        default=100, ge=1, description="Most identifiers sent in one upstream call"
    )
    max_entries: int = Field(
        default=100_000,
        ge=1,
        description="Most entries held before the least recently used are evicted",
    )


class UpstreamConfig(BaseModel):
    """Where and how to reach the upstream services.

    ``credential_source`` names where the authentication cookie for
    asset-delivery calls comes from (``env:VAR`` or ``file:/path``). It is
    resolved once at startup into a header set; the proxy never refreshes or
    stores credentials itself.
    """

    model_config = ConfigDict(extra="forbid")

    thumbnail_url: str = Field(
        default="https://thumbnails.roblox.com/v1/assets",
        description="Batch thumbnail lookup endpoint",
    )
    thumbnail_size: str = Field(default="420x420")
    thumbnail_format: str = Field(default="Png")
    asset_url: str = Field(
        default="https://assetdelivery.roblox.com/v1/assetId",
        description="Asset delivery endpoint; the asset id is appended as a path segment",
    )
    timeout: float = Field(
        default=10.0, gt=0, description="Per-attempt transport timeout in seconds"
    )
    credential_source: Optional[str] = Field(
        default=None, description="Credential source: env:VAR or file:/path"
    )
    credential_cookie: str = Field(
        default=".ROBLOSECURITY", description="Cookie name the credential is sent as"
    )


class ServerConfig(BaseModel):
    """HTTP server settings for ``assetproxy serve``."""

    model_config = ConfigDict(extra="forbid")

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, ge=1, le=65535)
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class ProxyConfig(BaseModel):
    """Complete proxy configuration persisted at ``~/.config/assetproxy/config.json``.

    Loaded by :func:`~assetproxy.config.load_config` and layered with
    environment variables and CLI flags by
    :func:`~assetproxy.config.resolve_config`.
    """

    model_config = ConfigDict(extra="forbid")

    retry: RetryConfig = Field(default_factory=RetryConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
