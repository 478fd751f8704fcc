"""Config commands -- view and initialise the proxy configuration.

Provides the ``assetproxy config`` sub-command group. The configuration
file holds retry budgets, cache TTLs, upstream URLs, and server settings
(:class:`~assetproxy.models.ProxyConfig`).
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from assetproxy.output import error, info, print_document, success


config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Show the effective configuration.

    Applies the full precedence chain (``--config``, environment, config
    file, defaults) and prints the result.

    Example::

        assetproxy config show --json
    """
    from assetproxy.config import resolve_config

    config_path: Optional[Path] = (ctx.obj or {}).get("config_path")
    config = resolve_config(cli_config=config_path)
    if config_path is not None:
        info(f"Config file: {config_path}")
    print_document(config.model_dump(mode="json"))


@config_app.command("init")
def config_init(
    ctx: typer.Context,
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing config file."
    ),
) -> None:
    """Write a config file with default settings.

    Writes to ``--config`` when given, otherwise to the XDG config
    directory. Refuses to overwrite an existing file unless ``--force``.
    """
    from assetproxy.config import default_config_path, save_config
    from assetproxy.models import ProxyConfig

    path: Path = (ctx.obj or {}).get("config_path") or default_config_path()
    if path.exists() and not force:
        error(f"Config file already exists: {path} (use --force to overwrite)")
        raise typer.Exit(code=2)
    written = save_config(ProxyConfig(), path)
    success(f"Wrote default config to {written}")
