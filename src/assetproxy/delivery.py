"""Single-asset delivery lookups.

The asset-delivery service answers one identifier per call with a JSON
document whose ``location`` field points at the downloadable file. Some
assets need an authenticated session; the credential arrives as a
pre-built header set (see :func:`~assetproxy.config.credential_headers`)
and is passed through untouched.

Only the delivery document itself (:meth:`AssetDelivery.locate`, served as
``/asset``) is requested with those headers. Audio redirects
(:meth:`AssetDelivery.location`) look up public files and send none.

Single lookups use the smaller ``retry.single_max_retries`` budget and are
not cached.
"""

from __future__ import annotations

from typing import Optional

from assetproxy.client.fetcher import RequestOptions, ResilientFetcher
from assetproxy.client.policy import RetryPolicy
from assetproxy.client.response import FetchOutcome
from assetproxy.exceptions import InvalidRequestError
from assetproxy.models import ProxyConfig


class AssetDelivery:
    """Looks up delivery metadata for one asset at a time.

    Args:
        fetcher: Entered :class:`~assetproxy.client.fetcher.ResilientFetcher`.
        asset_url: Endpoint the asset id is appended to.
        policy: Retry policy for single-asset calls.
        headers: Pre-built headers (e.g. the credential cookie).
    """

    def __init__(
        self,
        fetcher: ResilientFetcher,
        asset_url: str,
        policy: Optional[RetryPolicy] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        self._fetcher = fetcher
        self._asset_url = asset_url.rstrip("/")
        self._policy = policy or RetryPolicy(name="asset", max_retries=3)
        self._headers = dict(headers or {})

    @classmethod
    def from_config(
        cls,
        fetcher: ResilientFetcher,
        config: ProxyConfig,
        headers: Optional[dict[str, str]] = None,
    ) -> AssetDelivery:
        policy = RetryPolicy.from_config("asset", config.retry, config.retry.single_max_retries)
        return cls(fetcher, config.upstream.asset_url, policy, headers)

    async def locate(self, asset_id: str, with_credentials: bool = True) -> FetchOutcome:
        """Fetch the delivery document for *asset_id*.

        Args:
            asset_id: The asset to look up.
            with_credentials: Send the configured credential headers.

        Raises:
            InvalidRequestError: *asset_id* is blank.
            NetworkError: The upstream could not be reached.
            ReadError: The response body could not be read.
        """
        asset_id = asset_id.strip()
        if not asset_id:
            raise InvalidRequestError("No asset id given")
        return await self._fetcher.fetch(
            f"{self._asset_url}/{asset_id}",
            RequestOptions(headers=self._headers if with_credentials else {}),
            self._policy,
        )

    async def location(self, asset_id: str) -> Optional[str]:
        """Return the download location for *asset_id*, or ``None`` if absent.

        The lookup is made without credential headers.
        """
        outcome = await self.locate(asset_id, with_credentials=False)
        body = outcome.parsed_body
        if isinstance(body, dict):
            location = body.get("location")
            if isinstance(location, str) and location:
                return location
        return None
