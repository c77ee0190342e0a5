"""Tests for compassone_cache.output -- result rendering and diagnostics."""

from __future__ import annotations

import json

import pytest

from compassone_cache import output as output_module
from compassone_cache.output import (
    OutputFormat,
    OutputManager,
    _should_disable_color,
    get_output,
    reset_output,
    set_output,
)


@pytest.fixture()
def piped(monkeypatch):
    """stdout is not a terminal."""
    monkeypatch.setattr("compassone_cache.output._is_tty", lambda: False)


@pytest.fixture()
def terminal(monkeypatch):
    """stdout is an interactive terminal with colour allowed."""
    monkeypatch.setattr("compassone_cache.output._is_tty", lambda: True)
    monkeypatch.delenv("NO_COLOR", raising=False)
    monkeypatch.setenv("TERM", "xterm-256color")


def _plain(**kwargs) -> OutputManager:
    return OutputManager(format=OutputFormat.PLAIN, no_color=True, **kwargs)


# ---------------------------------------------------------------------------
# Format and colour selection
# ---------------------------------------------------------------------------


class TestFormatSelection:
    def test_auto_on_pipe_is_plain(self, piped) -> None:
        assert OutputManager().format == OutputFormat.PLAIN

    def test_auto_on_terminal_is_rich(self, terminal) -> None:
        assert OutputManager().format == OutputFormat.RICH

    def test_auto_on_terminal_without_colour_is_plain(self, terminal) -> None:
        assert OutputManager(no_color=True).format == OutputFormat.PLAIN

    def test_explicit_format_kept(self, terminal) -> None:
        assert OutputManager(format=OutputFormat.JSON).format == OutputFormat.JSON

    @pytest.mark.parametrize(
        ("env", "disabled"),
        [
            ({"NO_COLOR": ""}, True),
            ({"NO_COLOR": "1"}, True),
            ({"TERM": "dumb"}, True),
            ({"TERM": "xterm"}, False),
            ({}, False),
        ],
    )
    def test_colour_environment(self, monkeypatch, env: dict, disabled: bool) -> None:
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.delenv("TERM", raising=False)
        for name, value in env.items():
            monkeypatch.setenv(name, value)
        assert _should_disable_color() is disabled


# ---------------------------------------------------------------------------
# Results on stdout
# ---------------------------------------------------------------------------


class TestResults:
    def test_json_stats_parse_back(self, capfd, piped) -> None:
        stats = {"enabled": True, "entries": 2, "hit_ratio": 0.5, "directory": None}
        OutputManager(format=OutputFormat.JSON).format_response(stats)
        captured = capfd.readouterr()
        assert json.loads(captured.out) == stats
        assert captured.err == ""

    def test_json_uses_str_for_unknown_types(self, capfd, piped) -> None:
        OutputManager(format=OutputFormat.JSON).format_response({"fmt": OutputFormat.PLAIN})
        assert json.loads(capfd.readouterr().out) == {"fmt": "plain"}

    def test_plain_report_is_tab_separated(self, capfd, piped) -> None:
        _plain().format_response({"expired": 3, "evicted": 0})
        assert capfd.readouterr().out.splitlines() == ["expired\t3", "evicted\t0"]

    def test_plain_list_one_item_per_line(self, capfd, piped) -> None:
        _plain().format_response(["a", "b"])
        assert capfd.readouterr().out.splitlines() == ["a", "b"]

    def test_rich_report_contains_keys(self, capfd, piped) -> None:
        OutputManager(format=OutputFormat.RICH, no_color=True).format_response({"scanned": 7})
        out = capfd.readouterr().out
        assert "scanned" in out
        assert "7" in out

    def test_print_data_is_verbatim(self, capfd, piped) -> None:
        _plain(quiet=True).print_data('{"items": [1]} [bold]')
        assert capfd.readouterr().out == '{"items": [1]} [bold]\n'


# ---------------------------------------------------------------------------
# Diagnostics on stderr
# ---------------------------------------------------------------------------


class TestDiagnostics:
    @pytest.mark.parametrize(
        ("level", "expected"),
        [
            ("info", "Removed 2 entries."),
            ("success", "Removed 2 entries."),
            ("warning", "Warning: Removed 2 entries."),
            ("error", "Error: Removed 2 entries."),
        ],
    )
    def test_levels_write_to_stderr(self, capfd, piped, level: str, expected: str) -> None:
        getattr(_plain(), level)("Removed 2 entries.")
        captured = capfd.readouterr()
        assert captured.out == ""
        assert captured.err == expected + "\n"

    @pytest.mark.parametrize(
        ("level", "shown"),
        [("info", False), ("success", False), ("warning", True), ("error", True)],
    )
    def test_quiet(self, capfd, piped, level: str, shown: bool) -> None:
        getattr(_plain(quiet=True), level)("message")
        assert ("message" in capfd.readouterr().err) is shown

    def test_debug_needs_verbose(self, capfd, piped) -> None:
        _plain().debug("hidden")
        _plain(verbose=True).debug("Cache directory: /tmp/c")
        assert capfd.readouterr().err == "[debug] Cache directory: /tmp/c\n"

    def test_markup_in_messages_is_literal(self, capfd, monkeypatch, piped) -> None:
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "xterm")
        OutputManager(format=OutputFormat.PLAIN).error("No live entry for key: [red]x")
        assert "[red]x" in capfd.readouterr().err


# ---------------------------------------------------------------------------
# Process-wide instance
# ---------------------------------------------------------------------------


class TestGlobalInstance:
    def test_default_created_lazily(self) -> None:
        assert output_module._output is None
        assert isinstance(get_output(), OutputManager)

    def test_set_and_reset(self) -> None:
        mgr = OutputManager(format=OutputFormat.JSON)
        set_output(mgr)
        assert get_output() is mgr
        reset_output()
        assert get_output() is not mgr

    def test_module_helpers_use_installed_manager(self, capfd, piped) -> None:
        set_output(_plain(verbose=True))
        output_module.format_response({"k": "v"})
        output_module.success("stored")
        output_module.debug("detail")
        captured = capfd.readouterr()
        assert captured.out == "k\tv\n"
        assert captured.err == "stored\n[debug] detail\n"
