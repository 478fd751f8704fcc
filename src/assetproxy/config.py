"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for assetproxy:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.assetproxy/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **Config file** -- A single :class:`~assetproxy.models.ProxyConfig` JSON
  file. Managed via :func:`load_config` and :func:`save_config`.
* **Precedence resolution** -- :func:`resolve_config` merges CLI flags,
  environment variables, and the config file into the effective
  configuration.
* **Credential resolution** -- :func:`resolve_credential` reads the
  upstream credential from an env var or a file, and
  :func:`credential_headers` turns it into the pre-built header set the
  fetcher sends.

The lookup cache itself is never persisted; only configuration lives on disk.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Optional

from assetproxy.exceptions import ConfigError
from assetproxy.models import ProxyConfig, UpstreamConfig

_APP_NAME = "assetproxy"
_CONFIG_FILENAME = "config.json"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/assetproxy/`` (default
    ``~/.config/assetproxy/``). On macOS/Windows: ``~/.assetproxy/``.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/assetproxy/`` (default
    ``~/.local/share/assetproxy/``). On macOS/Windows: ``~/.assetproxy/logs/``.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def default_config_path() -> Path:
    """Path to the user config file inside :func:`get_config_dir`."""
    return get_config_dir() / _CONFIG_FILENAME


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. On any failure the
    temp file is removed.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Config file ---


def load_config(path: Optional[Path] = None) -> ProxyConfig:
    """Load the proxy configuration from *path* (default: the XDG config file).

    Args:
        path: Explicit config file. When ``None``, :func:`default_config_path`
            is used.

    Returns:
        The deserialised :class:`~assetproxy.models.ProxyConfig`. If the
        default file does not exist, a default instance is returned.

    Raises:
        ConfigError: If an explicitly given file is missing, or any file
            contains invalid JSON or fails Pydantic validation.
    """
    explicit = path is not None
    path = path if path is not None else default_config_path()
    if not path.is_file():
        if explicit:
            raise ConfigError(f"Config file not found: {path}")
        return ProxyConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return ProxyConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc


def save_config(config: ProxyConfig, path: Optional[Path] = None) -> Path:
    """Persist the configuration atomically to disk.

    Args:
        config: The configuration to save.
        path: Destination file (default: :func:`default_config_path`).

    Returns:
        The path that was written.
    """
    path = path if path is not None else default_config_path()
    data = config.model_dump(mode="json")
    _atomic_write(path, json.dumps(data, indent=2) + "\n")
    return path


# --- Precedence resolution ---


def resolve_config(
    cli_config: Optional[Path] = None,
    cli_host: Optional[str] = None,
    cli_port: Optional[int] = None,
) -> ProxyConfig:
    """Resolve config with full precedence chain.

    Precedence (high to low):
        1. CLI flags (``cli_config``, ``cli_host``, ``cli_port``)
        2. Environment variables (``ASSETPROXY_CONFIG``, ``ASSETPROXY_HOST``,
           ``PORT``, ``ASSETPROXY_THUMBNAIL_URL``, ``ASSETPROXY_ASSET_URL``)
        3. Config file
        4. Defaults

    Returns:
        The effective :class:`~assetproxy.models.ProxyConfig`.

    Raises:
        ConfigError: If the config file is invalid or ``PORT`` is not an
            integer.
    """
    config_path = cli_config
    if config_path is None:
        env_config = os.environ.get("ASSETPROXY_CONFIG")
        if env_config:
            config_path = Path(env_config).expanduser()
    config = load_config(config_path)

    env_host = os.environ.get("ASSETPROXY_HOST")
    if env_host:
        config.server.host = env_host
    env_port = os.environ.get("PORT")
    if env_port:
        try:
            config.server.port = int(env_port)
        except ValueError as exc:
            raise ConfigError(f"PORT must be an integer, got {env_port!r}") from exc
    env_thumbnail = os.environ.get("ASSETPROXY_THUMBNAIL_URL")
    if env_thumbnail:
        config.upstream.thumbnail_url = env_thumbnail
    env_asset = os.environ.get("ASSETPROXY_ASSET_URL")
    if env_asset:
        config.upstream.asset_url = env_asset

    if cli_host is not None:
        config.server.host = cli_host
    if cli_port is not None:
        config.server.port = cli_port

    return config


# --- Credential source resolution ---


def resolve_credential(source: str) -> str:
    """Resolve a credential from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace

    Args:
        source: The source descriptor string.

    Returns:
        The resolved credential string.

    Raises:
        ConfigError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        path = Path(source[5:]).expanduser()
        if not path.is_file():
            raise ConfigError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Cannot read credential file {path}: {exc}") from exc

    raise ConfigError(f"Unknown credential source format: {source}")


def credential_headers(upstream: UpstreamConfig) -> dict[str, str]:
    """Build the pre-built header set for authenticated upstream calls.

    Returns an empty dict when no ``credential_source`` is configured.
    """
    if not upstream.credential_source:
        return {}
    credential = resolve_credential(upstream.credential_source)
    return {"Cookie": f"{upstream.credential_cookie}={credential}"}
