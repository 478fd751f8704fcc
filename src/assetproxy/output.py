"""Terminal output for the assetproxy CLI.

Resolved thumbnails and delivery documents go to **stdout**; retry notices,
warnings and errors go to **stderr**, so ``assetproxy resolve ... | cut -f3``
only ever sees data.

Three renderings are supported (:class:`OutputFormat`):

* ``json`` -- the exact payload the HTTP surface would return.
* ``plain`` -- tab-separated rows. A thumbnail batch prints one
  ``targetId<TAB>state<TAB>imageUrl`` row per identifier; a placeholder
  prints its message in the last column and is marked with a ``!`` state
  suffix. Documents (delivery JSON, config) print dotted ``key<TAB>value``
  rows.
* ``rich`` -- a table for thumbnail batches with placeholder rows in red,
  highlighted JSON for documents.

``auto`` picks ``rich`` on a colour TTY and ``plain`` otherwise. Colour is
off under ``NO_COLOR``, ``TERM=dumb`` or ``--no-color``.

:class:`OutputManager` is created once in
:func:`~assetproxy.app.main_callback` and installed via :func:`set_output`.
Library code (for example the fetcher's retry notices) calls
:func:`get_output` and never needs to know which CLI flags were given.
"""

from __future__ import annotations

import json
import os
import sys
from collections.abc import Iterable, Iterator
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

if TYPE_CHECKING:
    from assetproxy.cache.entries import EntryValue

PLACEHOLDER_MARK = "!"


class OutputFormat(str, Enum):
    """Supported output formats. ``AUTO`` picks ``RICH`` on a colour TTY, else ``PLAIN``."""

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


def entry_row(identifier: str, value: EntryValue) -> tuple[str, str, str, bool]:
    """Return ``(targetId, state, detail, is_placeholder)`` for one resolved entry.

    *detail* is the image URL for a resolved item and the message for a
    placeholder. Items the upstream answered without an image URL get an
    empty detail.
    """
    from assetproxy.cache.entries import ErrorPlaceholder

    if isinstance(value, ErrorPlaceholder):
        return identifier, value.state, value.message, True
    state = value.get("state")
    image_url = value.get("imageUrl")
    return identifier, "" if state is None else str(state), image_url or "", False


def _flatten(data: Any, prefix: str = "") -> Iterator[tuple[str, Any]]:
    if isinstance(data, dict) and data:
        for key, value in data.items():
            yield from _flatten(value, f"{prefix}.{key}" if prefix else str(key))
    else:
        yield prefix, data


class OutputManager:
    """Central manager for all CLI output.

    Args:
        format: Desired output format. ``AUTO`` resolves based on TTY
            detection.
        no_color: Disable all colour and Rich markup.
        quiet: Suppress informational and success messages on stderr.
        verbose: Show debug messages on stderr.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
    ) -> None:
        self._no_color = color_disabled(no_color)
        self._format = resolve_format(format, self._no_color)
        self._quiet = quiet
        self._verbose = verbose
        self._stdout = Console(
            file=sys.stdout,
            no_color=self._no_color,
            force_terminal=self._format == OutputFormat.RICH,
        )
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        """The resolved output format."""
        return self._format

    # ------------------------------------------------------------------ #
    # Data output (stdout)
    # ------------------------------------------------------------------ #

    def print_entries(self, pairs: Iterable[tuple[str, EntryValue]]) -> None:
        """Render a resolved thumbnail batch, one entry per identifier."""
        from assetproxy.cache.entries import render_value

        pairs = list(pairs)
        if self._format == OutputFormat.JSON:
            self._print_json([render_value(value) for _, value in pairs])
            return

        rows = [entry_row(ident, value) for ident, value in pairs]
        if self._format == OutputFormat.PLAIN:
            for ident, state, detail, placeholder in rows:
                mark = PLACEHOLDER_MARK if placeholder else ""
                self.print_data(f"{ident}\t{state}{mark}\t{detail}")
            return

        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Target")
        table.add_column("State")
        table.add_column("Image URL / message", overflow="fold")
        for ident, state, detail, placeholder in rows:
            table.add_row(ident, state, detail, style="red" if placeholder else None)
        self._stdout.print(table)

    def print_document(self, data: Any) -> None:
        """Render a JSON document (delivery response, configuration) to stdout."""
        if self._format == OutputFormat.JSON:
            self._print_json(data)
        elif self._format == OutputFormat.PLAIN:
            if isinstance(data, dict):
                for key, value in _flatten(data):
                    self.print_data(f"{key}\t{'' if value is None else value}")
            elif isinstance(data, list):
                self.print_data(json.dumps(data, ensure_ascii=False, default=str))
            else:
                self.print_data(str(data))
        else:
            json_str = json.dumps(data, indent=2, ensure_ascii=False, default=str)
            self._stdout.print(Syntax(json_str, "json", theme="monokai", word_wrap=True))

    def print_data(self, text: str) -> None:
        """Print raw text to stdout."""
        print(text, file=sys.stdout, flush=True)

    def _print_json(self, data: Any) -> None:
        self.print_data(json.dumps(data, indent=2, ensure_ascii=False, default=str))

    # ------------------------------------------------------------------ #
    # Diagnostics (stderr)
    # ------------------------------------------------------------------ #

    def info(self, message: str) -> None:
        """Informational message. Suppressed by ``--quiet``."""
        if not self._quiet:
            self._diagnostic(message, message)

    def success(self, message: str) -> None:
        """Green success message. Suppressed by ``--quiet``."""
        if not self._quiet:
            self._diagnostic(message, f"[green]{message}[/green]")

    def warning(self, message: str) -> None:
        """Yellow warning. Shown even with ``--quiet``."""
        self._diagnostic(f"Warning: {message}", f"[yellow]Warning:[/yellow] {message}")

    def error(self, message: str) -> None:
        """Bold-red error. Never suppressed."""
        self._diagnostic(f"Error: {message}", f"[bold red]Error:[/bold red] {message}")

    def debug(self, message: str) -> None:
        """Debug message, only with ``--verbose``."""
        if self._verbose:
            self._diagnostic(f"[debug] {message}", f"[dim]\\[debug] {message}[/dim]")

    def _diagnostic(self, plain: str, markup: str) -> None:
        if self._no_color:
            print(plain, file=sys.stderr, flush=True)
        else:
            self._stderr.print(markup)


def _is_tty() -> bool:
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def color_disabled(flag: bool = False) -> bool:
    """``True`` when colour is off by flag or by environment (``NO_COLOR``, ``TERM=dumb``)."""
    return flag or "NO_COLOR" in os.environ or os.environ.get("TERM") == "dumb"


def resolve_format(requested: OutputFormat, no_color: bool) -> OutputFormat:
    """Turn ``AUTO`` into ``RICH`` on a colour TTY and ``PLAIN`` elsewhere."""
    if requested != OutputFormat.AUTO:
        return requested
    return OutputFormat.RICH if _is_tty() and not no_color else OutputFormat.PLAIN


# ------------------------------------------------------------------ #
# Global output instance (set during app startup)
# ------------------------------------------------------------------ #

_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the global :class:`OutputManager`, creating a default one lazily."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    """Drop the global :class:`OutputManager` (used by tests)."""
    global _output
    _output = None


# ------------------------------------------------------------------ #
# Shortcuts over the global instance, used by the CLI commands
# ------------------------------------------------------------------ #


def print_entries(pairs: Iterable[tuple[str, EntryValue]]) -> None:
    get_output().print_entries(pairs)


def print_document(data: Any) -> None:
    get_output().print_document(data)


def info(message: str) -> None:
    get_output().info(message)


def success(message: str) -> None:
    get_output().success(message)


def warning(message: str) -> None:
    get_output().warning(message)


def error(message: str) -> None:
    get_output().error(message)
