"""Shared test fixtures for compassone_cache.

Provides isolated config directories, a controllable clock, ready-made
cache instances over each storage backend, and a CLI runner. Fixtures are
discovered automatically by pytest.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Iterator

import pytest

from compassone_cache.cache import Cache, initialize
from compassone_cache.models import CacheConfig
from compassone_cache.output import reset_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> Iterator[None]:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time, which go stale once CliRunner restores the streams.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced epoch clock, starting at the real current time."""

    def __init__(self, start: float | None = None) -> None:
        self.now = time.time() if start is None else start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Cache fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cache_config() -> CacheConfig:
    """A small-threshold config so compression paths are exercised."""
    return CacheConfig(
        max_size=10 * 1024 * 1024,
        default_ttl=300,
        compression_threshold=1024,
        lock_timeout=5.0,
    )


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "responses"


@pytest.fixture
def cache(cache_dir: Path, cache_config: CacheConfig, clock: FakeClock) -> Iterator[Cache]:
    """File-backed cache driven by the fake clock."""
    c = initialize(cache_dir, cache_config, clock=clock)
    yield c
    c.close()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Points XDG_CONFIG_HOME and XDG_CACHE_HOME at subdirectories of
    tmp_path, forces the XDG code path, and clears COMPASSONE_CACHE_*
    variables so that tests never touch real user config.
    """
    monkeypatch.setattr("compassone_cache.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    for var in [
        "COMPASSONE_CACHE_DIR",
        "COMPASSONE_CACHE_ENABLED",
        "COMPASSONE_CACHE_TTL",
        "COMPASSONE_CACHE_MAX_SIZE",
    ]:
        monkeypatch.delenv(var, raising=False)
    return tmp_path


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
