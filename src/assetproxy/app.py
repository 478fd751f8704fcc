"""Typer application and CLI entry point for assetproxy.

Commands:

* ``assetproxy serve`` -- run the proxy HTTP server under uvicorn.
* ``assetproxy resolve IDS`` -- one-shot batch thumbnail lookup.
* ``assetproxy asset ID`` -- one-shot asset-delivery lookup.
* ``assetproxy config show|init`` -- inspect or create the config file.

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. :class:`~assetproxy.exceptions.AssetProxyError` exits
with its own exit code; any other exception writes a crash log under the
data directory.

See Also:
    :mod:`assetproxy.config`: Configuration precedence resolution.
    :mod:`assetproxy.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import typer

from assetproxy import __version__
from assetproxy.commands.config import config_app
from assetproxy.exit_codes import EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="assetproxy",
    help="Caching, rate-limit-aware proxy for a third-party asset API.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)
app.add_typer(config_app, name="config", help="Configuration management.")


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"assetproxy {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Config file to use."
    ),
    json_output: bool = typer.Option(
        False, "--json", help="JSON output format."
    ),
    plain_output: bool = typer.Option(
        False, "--plain", help="Plain text output."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Installs the global :class:`~assetproxy.output.OutputManager` and stores
    shared options in ``ctx.obj`` for sub-commands.
    """
    from assetproxy.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


def _configure_logging(verbose: bool) -> None:
    """Send log records to stderr through Rich."""
    from rich.console import Console
    from rich.logging import RichHandler

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


@app.command("serve")
def serve_command(
    ctx: typer.Context,
    host: Optional[str] = typer.Option(None, "--host", help="Bind address."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port."),
) -> None:
    """Run the proxy HTTP server."""
    import uvicorn

    from assetproxy.config import resolve_config
    from assetproxy.server import create_app

    verbose = bool(ctx.obj.get("verbose"))
    config = resolve_config(cli_config=ctx.obj.get("config_path"), cli_host=host, cli_port=port)
    _configure_logging(verbose)
    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
        log_level="debug" if verbose else "info",
        log_config=None,
    )


@app.command("resolve")
def resolve_command(
    ctx: typer.Context,
    ids: str = typer.Argument(help="Comma-separated asset identifiers."),
) -> None:
    """Resolve thumbnails for a batch of identifiers and print them."""
    from assetproxy.cache import EntryStore, LookupCache, parse_identifiers
    from assetproxy.client import ResilientFetcher
    from assetproxy.config import resolve_config
    from assetproxy.output import print_entries

    config = resolve_config(cli_config=ctx.obj.get("config_path"))

    async def _run() -> list[tuple[str, Any]]:
        async with ResilientFetcher(timeout=config.upstream.timeout) as fetcher:
            lookup = LookupCache.from_config(fetcher, EntryStore.from_config(config.cache), config)
            return await lookup.resolve(parse_identifiers(ids))

    print_entries(asyncio.run(_run()))


@app.command("asset")
def asset_command(
    ctx: typer.Context,
    asset_id: str = typer.Argument(help="Asset identifier."),
) -> None:
    """Fetch the asset-delivery document for one asset and print it."""
    from assetproxy.client import ResilientFetcher
    from assetproxy.config import credential_headers, resolve_config
    from assetproxy.delivery import AssetDelivery
    from assetproxy.output import print_document, warning

    config = resolve_config(cli_config=ctx.obj.get("config_path"))
    headers = credential_headers(config.upstream)

    async def _run() -> Any:
        async with ResilientFetcher(timeout=config.upstream.timeout) as fetcher:
            delivery = AssetDelivery.from_config(fetcher, config, headers)
            return await delivery.locate(asset_id)

    outcome = asyncio.run(_run())
    if not outcome.ok:
        warning(f"Upstream answered HTTP {outcome.status_code}")
    print_document(outcome.parsed_body if outcome.parsed_body is not None else outcome.text)


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path."""
    from assetproxy.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``assetproxy`` console script.

    :class:`~assetproxy.exceptions.AssetProxyError` instances cause a clean
    exit with the error's ``exit_code``. All other exceptions produce a
    crash log and a generic failure exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from assetproxy.exceptions import AssetProxyError
        from assetproxy.output import error

        if isinstance(exc, AssetProxyError):
            error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log(exc)
        error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
