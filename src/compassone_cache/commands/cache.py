"""Cache commands -- inspect and maintain a cache directory.

Every command resolves the effective
:class:`~compassone_cache.models.CacheConfig` (``--path`` flag,
``COMPASSONE_CACHE_*`` environment variables, global config file), opens
the cache without a background cleanup thread, and closes it on exit.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterator, Optional

import typer

from compassone_cache.exceptions import CacheError
from compassone_cache.exit_codes import EXIT_NOT_FOUND
from compassone_cache.output import (
    debug,
    error,
    format_response,
    info,
    print_data,
    success,
    warning,
)

if TYPE_CHECKING:
    from compassone_cache.cache import Cache


cache_app = typer.Typer(no_args_is_help=True)


@contextmanager
def _open_cache(ctx: typer.Context) -> Iterator[Cache]:
    """Yield an initialised cache for the CLI invocation, exiting cleanly on errors."""
    from compassone_cache.cache import initialize
    from compassone_cache.config import resolve_cache_config

    cli_path: Optional[str] = ctx.obj.get("path") if ctx.obj else None
    try:
        config = resolve_cache_config(cli_path=cli_path)
        cache = initialize(config.path, config)
    except CacheError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    debug(f"Cache directory: {config.path}")
    try:
        yield cache
    except CacheError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    finally:
        cache.close()


@cache_app.command("stats")
def cache_stats(ctx: typer.Context) -> None:
    """Show entry count, total size, limits and hit ratio.

    Example::

        compassone-cache cache stats --json
    """
    with _open_cache(ctx) as cache:
        stats = cache.stats()
        data = stats.model_dump()
        data["hit_ratio"] = round(stats.hit_ratio, 4)
        format_response(data)


@cache_app.command("cleanup")
def cache_cleanup(ctx: typer.Context) -> None:
    """Run one expiry and size-budget sweep now."""
    with _open_cache(ctx) as cache:
        report = cache.run_cleanup()
        format_response(report.as_dict())
        if report.errors:
            warning(f"{report.errors} entries could not be processed")
        success(
            f"Removed {report.expired} expired and {report.evicted} evicted entries."
        )


@cache_app.command("clear")
def cache_clear(ctx: typer.Context) -> None:
    """Remove every entry from the cache.

    Asks for confirmation unless ``--force`` is active.
    """
    force = ctx.obj.get("force", False) if ctx.obj else False
    if not force:
        confirmed = typer.confirm("Remove all cached responses?")
        if not confirmed:
            info("Cancelled.")
            raise typer.Exit()

    with _open_cache(ctx) as cache:
        removed = cache.clear()
        success(f"Removed {removed} entries.")


@cache_app.command("get")
def cache_get(
    ctx: typer.Context,
    key: str = typer.Argument(help="Cache key."),
) -> None:
    """Print the cached value for KEY to stdout.

    Exits with code 4 when there is no live entry.
    """
    with _open_cache(ctx) as cache:
        result = cache.lookup(key)
        if result.error is not None:
            error(str(result.error))
            raise typer.Exit(code=result.error.exit_code)
        if not result.found or result.value is None:
            error(f"No live entry for key: {key}")
            raise typer.Exit(code=EXIT_NOT_FOUND)
        print_data(result.value.decode("utf-8", errors="replace"))


@cache_app.command("set")
def cache_set(
    ctx: typer.Context,
    key: str = typer.Argument(help="Cache key."),
    value: str = typer.Argument(help="Value to store (UTF-8 text)."),
    ttl: Optional[float] = typer.Option(
        None, "--ttl", help="Time-to-live in seconds (default: configured TTL)."
    ),
) -> None:
    """Store VALUE under KEY."""
    if ttl is not None and ttl <= 0:
        error("--ttl must be positive")
        raise typer.Exit(code=2)
    with _open_cache(ctx) as cache:
        cache.set(key, value.encode("utf-8"), ttl)
        success(f"Stored {key}")


@cache_app.command("delete")
def cache_delete(
    ctx: typer.Context,
    key: str = typer.Argument(help="Cache key."),
) -> None:
    """Remove the entry for KEY. Succeeds even if it does not exist."""
    with _open_cache(ctx) as cache:
        if cache.delete(key):
            success(f"Deleted {key}")
        else:
            info(f"No entry for {key}")
