"""Terminal output for the ``compassone-cache`` admin CLI.

Command results (cached values, stats, sweep reports) are written to
stdout; everything else, including engine log records routed through
:class:`rich.logging.RichHandler`, goes to stderr so that
``compassone-cache --json cache stats | jq`` always sees clean JSON.

Structured results are rendered in one of three formats: ``json``,
``plain`` (``key<TAB>value`` lines) or ``rich`` (highlighted JSON).
``auto`` means ``rich`` on an interactive terminal with colour enabled and
``plain`` otherwise. Colour is off when ``--no-color``, ``NO_COLOR`` or
``TERM=dumb`` says so.
"""

from __future__ import annotations

import json
import os
import sys
from enum import Enum
from typing import Any, NamedTuple, Optional

from rich.console import Console
from rich.markup import escape
from rich.syntax import Syntax


class OutputFormat(str, Enum):
    """Rendering used for command results on stdout."""

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


class _Level(NamedTuple):
    prefix: str
    style: str
    quiet_hides: bool


_LEVELS = {
    "info": _Level("", "", True),
    "success": _Level("", "green", True),
    "warning": _Level("Warning: ", "yellow", False),
    "error": _Level("Error: ", "bold red", False),
    "debug": _Level("[debug] ", "dim", False),
}


class OutputManager:
    """Writes command results to stdout and diagnostics to stderr.

    Args:
        format: Result format; ``AUTO`` is resolved once, here.
        no_color: Never emit colour or markup.
        quiet: Hide ``info`` and ``success`` messages.
        verbose: Show ``debug`` messages.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet
        self._verbose = verbose
        if format == OutputFormat.AUTO:
            rich_ok = _is_tty() and not self._no_color
            format = OutputFormat.RICH if rich_ok else OutputFormat.PLAIN
        self._format = format
        self._stdout = Console(
            file=sys.stdout,
            no_color=self._no_color,
            force_terminal=format == OutputFormat.RICH,
        )
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        return self._format

    @property
    def stderr_console(self) -> Console:
        """Console shared with the CLI's log handler."""
        return self._stderr

    # --- results (stdout) ---

    def format_response(self, data: Any) -> None:
        """Render a command result in the active format."""
        if self._format == OutputFormat.JSON:
            self.print_data(_to_json(data))
        elif self._format == OutputFormat.RICH and isinstance(data, (dict, list)):
            self._stdout.print(Syntax(_to_json(data), "json", word_wrap=True))
        elif self._format == OutputFormat.RICH:
            self._stdout.print(escape(str(data)))
        elif isinstance(data, dict):
            for key, value in data.items():
                self.print_data(f"{key}\t{value}")
        elif isinstance(data, list):
            for item in data:
                self.print_data(str(item))
        else:
            self.print_data(str(data))

    def print_data(self, text: str) -> None:
        """Write *text* to stdout verbatim, e.g. a cached value."""
        sys.stdout.write(text + "\n")
        sys.stdout.flush()

    # --- diagnostics (stderr) ---

    def info(self, message: str) -> None:
        self._diagnostic("info", message)

    def success(self, message: str) -> None:
        self._diagnostic("success", message)

    def warning(self, message: str) -> None:
        """Shown even with ``--quiet``."""
        self._diagnostic("warning", message)

    def error(self, message: str) -> None:
        """Shown even with ``--quiet``."""
        self._diagnostic("error", message)

    def debug(self, message: str) -> None:
        if self._verbose:
            self._diagnostic("debug", message)

    def _diagnostic(self, level: str, message: str) -> None:
        spec = _LEVELS[level]
        if self._quiet and spec.quiet_hides:
            return
        if self._no_color:
            sys.stderr.write(f"{spec.prefix}{message}\n")
            sys.stderr.flush()
            return
        text = escape(f"{spec.prefix}{message}")
        self._stderr.print(f"[{spec.style}]{text}[/]" if spec.style else text)


def _to_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


def _is_tty() -> bool:
    isatty = getattr(sys.stdout, "isatty", None)
    return bool(isatty and isatty())


def _should_disable_color() -> bool:
    """``NO_COLOR`` set to anything, or a dumb terminal."""
    return "NO_COLOR" in os.environ or os.environ.get("TERM") == "dumb"


# --- process-wide instance, installed by the CLI callback ---

_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    """Forget the installed manager; the next :func:`get_output` builds a fresh one."""
    global _output
    _output = None


def format_response(data: Any) -> None:
    get_output().format_response(data)


def print_data(text: str) -> None:
    get_output().print_data(text)


def info(message: str) -> None:
    get_output().info(message)


def success(message: str) -> None:
    get_output().success(message)


def warning(message: str) -> None:
    get_output().warning(message)


def error(message: str) -> None:
    get_output().error(message)


def debug(message: str) -> None:
    get_output().debug(message)
