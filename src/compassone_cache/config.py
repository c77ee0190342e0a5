"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for compassone_cache:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.compassone/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_cache_dir`.
* **Global config** -- A single :class:`~compassone_cache.models.GlobalConfig`
  JSON file storing the ``cache`` and ``output`` sections.
* **Precedence resolution** -- :func:`resolve_cache_config` merges CLI
  overrides, environment variables, the global config file, and defaults
  into the effective :class:`~compassone_cache.models.CacheConfig`.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) so that a crash never leaves a half-written file in
place. The cache's file storage backend writes its entries the same way.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import ValidationError

from compassone_cache.exceptions import ConfigError
from compassone_cache.models import CacheConfig, GlobalConfig

_APP_NAME = "compassone"
_CONFIG_FILENAME = "config.json"

ENV_CACHE_DIR = "COMPASSONE_CACHE_DIR"
ENV_CACHE_ENABLED = "COMPASSONE_CACHE_ENABLED"
ENV_CACHE_TTL = "COMPASSONE_CACHE_TTL"
ENV_CACHE_MAX_SIZE = "COMPASSONE_CACHE_MAX_SIZE"


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

    On Linux/BSD: ``$XDG_CONFIG_HOME/compassone/`` (default ``~/.config/compassone/``).
    On macOS/Windows: ``~/.compassone/``.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_CONFIG_HOME", (".config",))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_cache_dir() -> Path:
    """Return the default cache storage directory.

    Unlike :func:`get_config_dir` the directory is *not* created here:
    :func:`~compassone_cache.cache.initialize` owns its creation so that
    owner-only permissions are applied.

    On Linux/BSD: ``$XDG_CACHE_HOME/compassone/responses`` (default
    ``~/.cache/compassone/responses``).
    On macOS/Windows: ``~/.compassone/cache/responses``.
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_CACHE_HOME", (".cache",))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir() / "cache"
    return path / "responses"


# --- Atomic file writes ---


def atomic_write(
    path: Path,
    data: Union[str, bytes],
    permissions: Optional[int] = None,
) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. On success the temp
    file is renamed over *path*; on any failure the temp file is cleaned up.

    Args:
        path: Final destination.
        data: Text (written as UTF-8) or raw bytes.
        permissions: Optional mode applied to the temp file before any
            content is written, e.g. ``0o600``.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = data.encode("utf-8") if isinstance(data, str) else data

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="wb",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        )
        tmp_path = fd.name
        if permissions is not None:
            os.chmod(tmp_path, permissions)
        fd.write(payload)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close in finally
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Global config ---


def _global_config_path() -> Path:
    """Path to the global config file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Load the global configuration from the XDG config directory.

    Returns:
        The deserialised :class:`~compassone_cache.models.GlobalConfig`. If
        the file does not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = _global_config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    """Persist the global configuration atomically to disk.

    Args:
        config: The configuration to save.
    """
    data = config.model_dump(mode="json")
    atomic_write(_global_config_path(), json.dumps(data, indent=2) + "\n")


# --- Precedence resolution ---


def _env_overrides() -> dict[str, Any]:
    """Collect ``COMPASSONE_CACHE_*`` environment overrides as raw values."""
    overrides: dict[str, Any] = {}
    cache_dir = os.environ.get(ENV_CACHE_DIR)
    if cache_dir:
        overrides["path"] = cache_dir
    enabled = os.environ.get(ENV_CACHE_ENABLED)
    if enabled:
        overrides["enabled"] = enabled.strip().lower() in ("1", "true", "yes", "on")
    ttl = os.environ.get(ENV_CACHE_TTL)
    if ttl:
        overrides["default_ttl"] = ttl
    max_size = os.environ.get(ENV_CACHE_MAX_SIZE)
    if max_size:
        overrides["max_size"] = max_size
    return overrides


def resolve_cache_config(
    cli_path: Optional[str] = None,
    global_config: Optional[GlobalConfig] = None,
) -> CacheConfig:
    """Resolve the effective cache configuration.

    Precedence (high to low):
        1. CLI flags (``cli_path``)
        2. Environment variables (``COMPASSONE_CACHE_DIR``,
           ``COMPASSONE_CACHE_ENABLED``, ``COMPASSONE_CACHE_TTL``,
           ``COMPASSONE_CACHE_MAX_SIZE``)
        3. User config (``~/.config/compassone/config.json``)
        4. Defaults

    The returned config always has ``path`` set, falling back to
    :func:`get_cache_dir`.

    Raises:
        ConfigError: If the config file or an environment override holds an
            invalid value.
    """
    if global_config is None:
        global_config = load_global_config()

    data = global_config.cache.model_dump()
    data.update(_env_overrides())
    if cli_path is not None:
        data["path"] = cli_path
    if not data.get("path"):
        data["path"] = str(get_cache_dir())

    try:
        return CacheConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid cache configuration: {exc}") from exc
