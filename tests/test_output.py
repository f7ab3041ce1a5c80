"""Tests for kfgen.output -- stream routing, verbosity and table formats."""

from __future__ import annotations

import json
from decimal import Decimal
from pathlib import Path

import pytest

from kfgen import output as output_module
from kfgen.output import OutputFormat, OutputManager, get_output, set_output


@pytest.fixture()
def non_tty(monkeypatch):
    monkeypatch.setattr("kfgen.output._is_tty", lambda: False)


def _plain(**kwargs) -> OutputManager:
    return OutputManager(format=OutputFormat.PLAIN, no_color=True, **kwargs)


# ------------------------------------------------------------------ #
# Format and colour
# ------------------------------------------------------------------ #


class TestFormat:
    def test_auto_is_plain_when_piped(self, non_tty):
        assert OutputManager().format == OutputFormat.PLAIN

    def test_auto_is_rich_on_colour_terminal(self, monkeypatch):
        monkeypatch.setattr("kfgen.output._is_tty", lambda: True)
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "xterm-256color")
        assert OutputManager().format == OutputFormat.RICH
        assert OutputManager(no_color=True).format == OutputFormat.PLAIN

    @pytest.mark.parametrize("env", [{"NO_COLOR": ""}, {"TERM": "dumb"}])
    def test_environment_disables_colour(self, monkeypatch, env):
        monkeypatch.setattr("kfgen.output._is_tty", lambda: True)
        monkeypatch.delenv("NO_COLOR", raising=False)
        for name, value in env.items():
            monkeypatch.setenv(name, value)
        assert OutputManager().format == OutputFormat.PLAIN

    def test_explicit_format_is_kept(self, non_tty):
        assert OutputManager(format=OutputFormat.JSON).format == OutputFormat.JSON


# ------------------------------------------------------------------ #
# Diagnostics
# ------------------------------------------------------------------ #


class TestDiagnostics:
    @pytest.mark.parametrize("method", ["info", "success", "warning", "error", "suggest"])
    def test_diagnostics_go_to_stderr(self, capfd, method):
        getattr(_plain(), method)("Alert/monitoring/cpu-high: created wavefront_alert 42")
        captured = capfd.readouterr()
        assert captured.out == ""
        assert "Alert/monitoring/cpu-high: created wavefront_alert 42" in captured.err

    @pytest.mark.parametrize("method", ["info", "success", "suggest"])
    def test_quiet_drops_progress(self, capfd, method):
        getattr(_plain(quiet=True), method)("Generated 3 kind(s)")
        assert capfd.readouterr().err == ""

    def test_quiet_keeps_warnings_and_errors(self, capfd):
        output = _plain(quiet=True)
        output.warning("Alert/monitoring/cpu-high: external drift in minutes")
        output.error("Alert/monitoring/cpu-high: plugin rejected the spec")
        err = capfd.readouterr().err
        assert "Warning: Alert/monitoring/cpu-high: external drift in minutes" in err
        assert "Error: Alert/monitoring/cpu-high: plugin rejected the spec" in err

    def test_debug_needs_verbose(self, capfd):
        _plain().debug("plugin GET /resources/wavefront_alert/42")
        assert capfd.readouterr().err == ""
        _plain(verbose=True).debug("plugin GET /resources/wavefront_alert/42")
        assert "[debug] plugin GET /resources/wavefront_alert/42" in capfd.readouterr().err

    def test_suggestion_has_arrow(self, capfd):
        _plain().suggest("kfgen run provider_wavefront_controller")
        assert "→ kfgen run provider_wavefront_controller" in capfd.readouterr().err

    def test_markup_in_messages_is_printed_literally(self, capfd, non_tty):
        OutputManager(format=OutputFormat.RICH).info("updated ['[bold]name[/bold]']")
        assert "[bold]name[/bold]" in capfd.readouterr().err


# ------------------------------------------------------------------ #
# Data
# ------------------------------------------------------------------ #


class TestData:
    HEADERS = ["Kind", "Resource", "Plural"]
    ROWS = [
        ["Alert", "wavefront_alert", "alerts"],
        ["Dashboard", "wavefront_dashboard", "dashboards"],
    ]

    def test_report_json_stringifies_paths_and_numbers(self, capfd):
        _plain().print_json({"written": [Path("out/alert.py")], "minutes": Decimal("2.5")})
        captured = capfd.readouterr()
        assert json.loads(captured.out) == {"written": ["out/alert.py"], "minutes": "2.5"}
        assert captured.err == ""

    def test_table_as_json(self, capfd):
        OutputManager(format=OutputFormat.JSON, no_color=True).print_table(self.HEADERS, self.ROWS)
        parsed = json.loads(capfd.readouterr().out)
        assert parsed[0] == {"Kind": "Alert", "Resource": "wavefront_alert", "Plural": "alerts"}
        assert len(parsed) == 2

    def test_table_as_tsv(self, capfd):
        _plain().print_table(self.HEADERS, self.ROWS, title="ignored")
        assert capfd.readouterr().out.splitlines() == [
            "Kind\tResource\tPlural",
            "Alert\twavefront_alert\talerts",
            "Dashboard\twavefront_dashboard\tdashboards",
        ]

    def test_table_as_rich(self, capfd, non_tty):
        OutputManager(format=OutputFormat.RICH, no_color=True).print_table(
            self.HEADERS, self.ROWS[:1], title="Kinds"
        )
        out = capfd.readouterr().out
        for text in ("Kind", "Alert", "alerts", "Kinds"):
            assert text in out


# ------------------------------------------------------------------ #
# Process-wide instance
# ------------------------------------------------------------------ #


class TestInstalledOutput:
    def test_default_is_created_once(self):
        assert get_output() is get_output()

    def test_set_output_replaces_default(self):
        custom = OutputManager(format=OutputFormat.JSON, no_color=True)
        set_output(custom)
        assert get_output() is custom

    @pytest.mark.parametrize("name", ["info", "error", "suggest", "debug"])
    def test_module_helpers_use_installed_output(self, capfd, name):
        set_output(_plain(verbose=True))
        getattr(output_module, name)("Controller manager stopped")
        assert "Controller manager stopped" in capfd.readouterr().err
