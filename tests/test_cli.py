"""Tests for CLI commands and helper functions."""

import json
import os
from datetime import datetime, timezone
from pathlib import Path

import click
import pytest
from aioresponses import aioresponses
from click.testing import CliRunner

from wells.cli import _format_age, _parse_headers, main, run_async
from wells.store import ReportStore

URL_REPORTS = "https://collector.example.com/reports"


@pytest.fixture
def runner(monkeypatch):
    for var in ("WELLS_CONFIG", "WELLS_STORE_ROOT", "WELLS_MAX_REPORT_AGE"):
        monkeypatch.delenv(var, raising=False)
    return CliRunner()


# --- Helper function tests ---

class TestHelperFunctions:
    """Tests for CLI helper functions."""

    def test_run_async(self):
        """Test run_async executes coroutine synchronously."""
        async def async_func():
            return 42

        assert run_async(async_func()) == 42

    def test_format_age(self):
        assert _format_age(5) == "5s"
        assert _format_age(120) == "2m"
        assert _format_age(7200) == "2h"
        assert _format_age(3 * 86400) == "3d"
        assert _format_age(-1) == "0s"

    def test_parse_headers(self):
        assert _parse_headers(("X-App: demo", "Authorization:Bearer t")) == {
            "X-App": "demo",
            "Authorization": "Bearer t",
        }
        with pytest.raises(click.BadParameter):
            _parse_headers(("no-colon",))


# --- Command tests ---

class TestListCommand:
    def test_list_empty(self, runner, tmp_path):
        result = runner.invoke(main, ["--root", str(tmp_path), "list"])
        assert result.exit_code == 0
        assert "No stored reports" in result.output

    def test_list_json(self, runner, tmp_path):
        store = ReportStore(tmp_path)
        store.persist("ABC", b"12345")

        result = runner.invoke(main, ["--root", str(tmp_path), "list", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [item["identifier"] for item in data] == ["ABC"]
        assert data[0]["size"] == 5

    def test_list_table(self, runner, tmp_path):
        ReportStore(tmp_path).persist("ABC", b"x")
        result = runner.invoke(main, ["--root", str(tmp_path), "list"])
        assert result.exit_code == 0
        assert "ABC" in result.output


class TestSweepCommand:
    def test_sweep_expires_old_reports(self, runner, tmp_path):
        store = ReportStore(tmp_path)
        old = store.persist("OLD", b"1")
        young = store.persist("YOUNG", b"2")
        past = datetime(2020, 1, 1, tzinfo=timezone.utc).timestamp()
        os.utime(old, (past, past))

        result = runner.invoke(main, ["--root", str(tmp_path), "sweep", "--max-age", "3600"])

        assert result.exit_code == 0, result.output
        assert "expired 1" in result.output
        assert not old.exists()
        assert young.exists()


class TestSubmitCommand:
    def test_submit_delivers(self, runner, tmp_path):
        payload = tmp_path / "crash.log"
        payload.write_bytes(b"crash")
        store_root = tmp_path / "store"

        with aioresponses() as m:
            m.post(URL_REPORTS, status=201)
            result = runner.invoke(
                main,
                ["--root", str(store_root), "submit", str(payload), "--url", URL_REPORTS, "-H", "X-App: demo"],
            )

        assert result.exit_code == 0, result.output
        assert "processed" in result.output
        assert list(store_root.iterdir()) == []

    def test_submit_deferred_keeps_payload(self, runner, tmp_path):
        payload = tmp_path / "crash.log"
        payload.write_bytes(b"crash")
        store_root = tmp_path / "store"

        with aioresponses() as m:
            m.post(URL_REPORTS, status=503, headers={"Retry-After": "120"})
            result = runner.invoke(main, ["--root", str(store_root), "submit", str(payload), "--url", URL_REPORTS])

        assert result.exit_code == 0, result.output
        assert "deferred" in result.output
        assert len(list(store_root.iterdir())) == 1

    def test_submit_invalid_method(self, runner, tmp_path):
        payload = tmp_path / "crash.log"
        payload.write_bytes(b"crash")

        result = runner.invoke(
            main,
            ["--root", str(tmp_path / "store"), "submit", str(payload), "--url", URL_REPORTS, "--method", " "],
        )

        assert result.exit_code == 1
        assert not Path(tmp_path / "store").exists()
