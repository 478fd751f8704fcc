"""FastAPI application exposing the proxy endpoints.

Routes:

* ``GET /thumbnail?id=1818,2151`` -- batch thumbnail lookup through the
  :class:`~assetproxy.cache.lookup.LookupCache`. ``ids`` is accepted as an
  alias of ``id``.
* ``GET /asset?id=1818`` -- asset-delivery document, passed through.
* ``GET /audio?id=1818`` -- redirect to the asset's download location.
* ``GET /health`` -- liveness plus cache counters.

One :class:`~assetproxy.client.fetcher.ResilientFetcher` and one
:class:`~assetproxy.cache.store.EntryStore` are created per process in the
application lifespan and shared by every request. Errors from the core are
mapped to HTTP statuses by exception handlers: bad identifier sets become
400, exhausted upstream failures become 502.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, Response

from assetproxy import __version__
from assetproxy.cache.entries import render_value
from assetproxy.cache.lookup import LookupCache, parse_identifiers
from assetproxy.cache.store import EntryStore
from assetproxy.client.fetcher import ResilientFetcher
from assetproxy.config import credential_headers
from assetproxy.delivery import AssetDelivery
from assetproxy.exceptions import InvalidRequestError, NetworkError, ReadError
from assetproxy.hooks import HookRunner
from assetproxy.models import ProxyConfig

logger = logging.getLogger(__name__)

MISSING_ID_ERROR = "Missing id param"
UPSTREAM_ERROR = "Failed to fetch upstream data"


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def create_app(
    config: Optional[ProxyConfig] = None,
    fetcher: Optional[ResilientFetcher] = None,
    store: Optional[EntryStore] = None,
    hook_runner: Optional[HookRunner] = None,
) -> FastAPI:
    """Build the proxy application.

    Args:
        config: Effective configuration; defaults to :class:`ProxyConfig`.
        fetcher: Pre-built fetcher (tests inject one over a mock transport).
            When ``None``, one is created in the lifespan from
            ``upstream.timeout``.
        store: Pre-built entry store; a fresh one when ``None``.
        hook_runner: Attempt observers for a fetcher created here.

    Returns:
        A :class:`fastapi.FastAPI` instance ready for uvicorn.
    """
    config = config or ProxyConfig()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        headers = credential_headers(config.upstream)
        upstream = fetcher or ResilientFetcher(
            timeout=config.upstream.timeout, hook_runner=hook_runner,
        )
        async with upstream:
            app.state.lookup = LookupCache.from_config(
                upstream, store or EntryStore.from_config(config.cache), config,
            )
            app.state.delivery = AssetDelivery.from_config(upstream, config, headers)
            logger.info(
                "Proxy ready (thumbnails: %s, assets: %s)",
                config.upstream.thumbnail_url,
                config.upstream.asset_url,
            )
            yield

    app = FastAPI(title="assetproxy", version=__version__, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.exception_handler(InvalidRequestError)
    async def _invalid_request(request: Request, exc: InvalidRequestError) -> JSONResponse:
        return _error(400, str(exc))

    @app.exception_handler(NetworkError)
    @app.exception_handler(ReadError)
    async def _upstream_failure(request: Request, exc: Exception) -> JSONResponse:
        logger.error("%s %s: %s", request.method, request.url.path, exc)
        return _error(502, UPSTREAM_ERROR)

    @app.get("/thumbnail")
    async def thumbnail(
        request: Request,
        id_param: Optional[str] = Query(default=None, alias="id"),
        ids: Optional[str] = Query(default=None),
    ) -> Any:
        raw = ids if ids is not None else id_param
        if not raw:
            return _error(400, MISSING_ID_ERROR)
        lookup: LookupCache = request.app.state.lookup
        pairs = await lookup.resolve(parse_identifiers(raw))
        return {"data": [render_value(value) for _, value in pairs]}

    @app.get("/asset")
    async def asset(
        request: Request,
        asset_id: Optional[str] = Query(default=None, alias="id"),
    ) -> Response:
        if not asset_id:
            return _error(400, MISSING_ID_ERROR)
        delivery: AssetDelivery = request.app.state.delivery
        outcome = await delivery.locate(asset_id)
        return Response(
            content=outcome.raw_body,
            status_code=outcome.status_code,
            media_type="application/json",
        )

    @app.get("/audio")
    async def audio(
        request: Request,
        asset_id: Optional[str] = Query(default=None, alias="id"),
    ) -> Response:
        if not asset_id:
            return _error(400, MISSING_ID_ERROR)
        delivery: AssetDelivery = request.app.state.delivery
        location = await delivery.location(asset_id)
        if location is None:
            return _error(404, "Audio location not found")
        return RedirectResponse(location, status_code=302)

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        lookup: LookupCache = request.app.state.lookup
        return {"status": "ok", "version": __version__, "cache": lookup.stats()}

    return app
