"""Typer application and CLI entry point for compassone-cache.

The admin CLI inspects and maintains a cache directory shared by CompassOne
API client processes. It mounts two sub-command groups, ``cache`` and
``config``, and installs a :class:`rich.logging.RichHandler` so that engine
log records (sweep summaries, skipped keys) show up on stderr.

:func:`main` is the console-script entry point declared in
``pyproject.toml``. :class:`~compassone_cache.exceptions.CacheError`
exits with the error's ``exit_code``; anything else writes a crash log.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

import typer
from rich.logging import RichHandler

from compassone_cache import __version__
from compassone_cache.commands.cache import cache_app
from compassone_cache.commands.config import config_app
from compassone_cache.exit_codes import EXIT_GENERIC_FAILURE

if TYPE_CHECKING:
    from compassone_cache.output import OutputFormat


app = typer.Typer(
    name="compassone-cache",
    help="Inspect and maintain the CompassOne API response cache.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.add_typer(cache_app, name="cache", help="Cache directory maintenance.")
app.add_typer(config_app, name="config", help="Configuration management.")


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"compassone-cache {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool, console: Any) -> None:
    """Route ``compassone_cache`` log records to stderr through Rich."""
    logger = logging.getLogger("compassone_cache")
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
    handler = RichHandler(console=console, show_path=False, show_time=verbose)
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


def _configured_format() -> OutputFormat:
    """Output format from the global config file, ``AUTO`` if unset or unreadable."""
    from compassone_cache.config import load_global_config
    from compassone_cache.exceptions import ConfigError
    from compassone_cache.output import OutputFormat

    try:
        return OutputFormat(load_global_config().output.format)
    except (ConfigError, ValueError):
        # A broken config file is reported by the command that needs it.
        return OutputFormat.AUTO


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
    path: Optional[str] = typer.Option(
        None, "--path", help="Cache directory (overrides config and environment)."
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
    force: bool = typer.Option(
        False, "--force", "-f", help="Skip confirmations."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Installs the global :class:`~compassone_cache.output.OutputManager`,
    configures logging, and stores shared options in ``ctx.obj``.
    """
    from compassone_cache.output import OutputFormat, OutputManager, set_output

    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN
    else:
        fmt = _configured_format()

    output = OutputManager(
        format=fmt,
        no_color=no_color,
        quiet=quiet,
        verbose=verbose,
    )
    set_output(output)
    _configure_logging(verbose, output.stderr_console)

    ctx.ensure_object(dict)
    ctx.obj["path"] = path
    ctx.obj["force"] = force
    ctx.obj["verbose"] = verbose


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log() -> str:
    """Write the current traceback to the config directory and return its path."""
    from compassone_cache.config import get_config_dir

    logs_dir = get_config_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``compassone-cache`` console script.

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
        from compassone_cache.exceptions import CacheError
        from compassone_cache.output import error

        if isinstance(exc, CacheError):
            error(str(exc))
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log()
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
