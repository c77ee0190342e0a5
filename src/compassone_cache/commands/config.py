"""Config commands -- view and modify global configuration.

Provides the ``compassone-cache config`` sub-command group for reading,
updating, and resetting the user's global configuration file
(:class:`~compassone_cache.models.GlobalConfig`). Settings control the
cache directory, TTL, size budget, and output format.
"""

from __future__ import annotations

import typer

from compassone_cache.output import error, format_response, info, success


config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show() -> None:
    """Show the stored configuration and the effective cache settings.

    Example::

        compassone-cache config show --json
    """
    from compassone_cache.config import (
        get_config_dir,
        load_global_config,
        resolve_cache_config,
    )

    config = load_global_config()
    info(f"Config directory: {get_config_dir()}")
    data = config.model_dump(mode="json")
    data["effective_cache"] = resolve_cache_config(global_config=config).model_dump(
        mode="json"
    )
    format_response(data)


def _coerce(key: str, current: object, value: str) -> object:
    """Coerce *value* to the type of the field's current value."""
    if isinstance(current, bool):
        return value.lower() in ("true", "1", "yes")
    if isinstance(current, int):
        try:
            return int(value)
        except ValueError:
            error(f"Expected integer for {key}, got: {value}")
            raise typer.Exit(code=2) from None
    if isinstance(current, float):
        try:
            return float(value)
        except ValueError:
            error(f"Expected number for {key}, got: {value}")
            raise typer.Exit(code=2) from None
    return value


@config_app.command("set")
def config_set(
    key: str = typer.Argument(
        help="Config key (dot notation, e.g., 'cache.default_ttl')."
    ),
    value: str = typer.Argument(help="Value to set."),
) -> None:
    """Set a configuration value.

    Uses dot notation for nested keys. The value is coerced to the existing
    field's type and the result is validated before saving.

    Example::

        compassone-cache config set cache.default_ttl 600
        compassone-cache config set cache.max_size 52428800
        compassone-cache config set output.format json
    """
    from compassone_cache.config import load_global_config, save_global_config
    from compassone_cache.models import GlobalConfig

    config = load_global_config()
    data = config.model_dump(mode="json")

    keys = key.split(".")
    target = data
    for k in keys[:-1]:
        if k not in target or not isinstance(target[k], dict):
            error(f"Invalid config key: {key}")
            raise typer.Exit(code=2)
        target = target[k]

    final_key = keys[-1]
    if final_key not in target:
        error(f"Unknown config key: {key}")
        raise typer.Exit(code=2)

    coerced = _coerce(key, target[final_key], value)
    target[final_key] = coerced

    try:
        new_config = GlobalConfig.model_validate(data)
    except ValueError as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=2) from None

    save_global_config(new_config)
    success(f"Set {key} = {coerced}")


@config_app.command("reset")
def config_reset(ctx: typer.Context) -> None:
    """Reset configuration to defaults.

    Asks for confirmation unless ``--force`` is active.
    """
    from compassone_cache.config import save_global_config
    from compassone_cache.models import GlobalConfig

    force = ctx.obj.get("force", False) if ctx.obj else False
    if not force:
        confirmed = typer.confirm("Reset all config to defaults?")
        if not confirmed:
            info("Cancelled.")
            raise typer.Exit()

    save_global_config(GlobalConfig())
    success("Configuration reset to defaults.")
