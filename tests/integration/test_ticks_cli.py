from __future__ import annotations

from pathlib import Path

import pytest

import apps.scrap.ticks as ticks
from tickdump.storage.archive import read_archive
from tickdump.utils.config import API_KEY_ENV
from tests.helpers.fakes_polygon import FakeResponse, FakeSession, make_client, quote_row, symbol_routes, trade_row

DAY = "2022-12-23"


@pytest.fixture
def wire(monkeypatch: pytest.MonkeyPatch):
    """Patch the app so it talks to a FakeSession and leaves global logging/signals alone."""

    def _wire(session: FakeSession) -> None:
        monkeypatch.setenv(API_KEY_ENV, "test-key")
        monkeypatch.setattr(ticks, "init_logging", lambda *a, **k: None)
        monkeypatch.setattr(ticks.signal, "signal", lambda *a, **k: None)
        monkeypatch.setattr(ticks, "PolygonRESTClient", lambda **kw: make_client(session))

    return _wire


def test_main_dumps_day_and_prints_error_count(tmp_path: Path, wire, capsys: pytest.CaptureFixture) -> None:
    session = FakeSession(
        {
            **symbol_routes("AAA", trades=[[trade_row(1000, 10.0)]], quotes=[[quote_row(999)]]),
            **symbol_routes("BBB"),
        }
    )
    wire(session)

    rc = ticks.main(["--days", DAY, "--symbols", "AAA,BBB", "--output-root", str(tmp_path), "--no-progress"])

    assert rc == ticks.EXIT_OK
    out = capsys.readouterr().out
    assert f"{DAY}: ok=2 failed=0 not_started=0" in out
    assert "errors: 0" in out
    assert [e.kind for e in read_archive(tmp_path / DAY / f"AAA-{DAY}.arrow.lz4")] == ["Q", "T"]


def test_main_exits_nonzero_on_fatal_fetch(tmp_path: Path, wire, capsys: pytest.CaptureFixture) -> None:
    routes = {**symbol_routes("AAA"), **symbol_routes("BBB")}
    routes["/v3/trades/AAA"] = FakeResponse(500, None, text="internal error")
    wire(FakeSession(routes))

    rc = ticks.main(
        ["--days", DAY, "--symbols", "AAA,BBB", "--output-root", str(tmp_path), "--concurrency", "1", "--no-progress"]
    )

    assert rc == ticks.EXIT_FATAL_FETCH
    captured = capsys.readouterr()
    assert "errors: 1" in captured.out
    assert "aborted on" in captured.err
    assert not (tmp_path / DAY / f"AAA-{DAY}.arrow.lz4").exists()


def test_main_skip_policy_exits_zero(tmp_path: Path, wire, capsys: pytest.CaptureFixture) -> None:
    routes = {**symbol_routes("AAA"), **symbol_routes("BBB")}
    routes["/v3/trades/AAA"] = FakeResponse(500, None, text="internal error")
    wire(FakeSession(routes))

    rc = ticks.main(
        ["--days", DAY, "--symbols", "AAA,BBB", "--output-root", str(tmp_path),
         "--on-fetch-failure", "skip", "--no-progress"]
    )

    assert rc == ticks.EXIT_OK
    out = capsys.readouterr().out
    assert f"{DAY}: ok=1 failed=1 not_started=0" in out
    assert "errors: 1" in out


def test_missing_api_key_is_a_config_error(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
    monkeypatch.delenv(API_KEY_ENV, raising=False)
    assert ticks.main(["--days", DAY]) == ticks.EXIT_CONFIG
    assert "API key" in capsys.readouterr().err


def test_missing_days_is_a_config_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(API_KEY_ENV, "k")
    assert ticks.main([]) == ticks.EXIT_CONFIG


def test_bad_day_is_a_config_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(API_KEY_ENV, "k")
    assert ticks.main(["--days", "12/23/2022"]) == ticks.EXIT_CONFIG


def test_unknown_log_profile_is_a_config_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    monkeypatch.setenv(API_KEY_ENV, "k")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(ticks.signal, "signal", lambda *a, **k: None)

    rc = ticks.main(["--days", DAY, "--log-profile", "nosuch", "--output-root", str(tmp_path)])

    assert rc == ticks.EXIT_CONFIG
    assert "nosuch" in capsys.readouterr().err


def test_missing_logging_file_is_a_config_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    monkeypatch.setenv(API_KEY_ENV, "k")
    cfg_path = tmp_path / "dump.json"
    cfg_path.write_text(
        '{"days": ["%s"], "logging_config": "%s"}' % (DAY, (tmp_path / "absent.json").as_posix()),
        encoding="utf-8",
    )

    assert ticks.main(["--config", str(cfg_path)]) == ticks.EXIT_CONFIG
    assert "config error: logging" in capsys.readouterr().err


def test_stop_signal_exits_with_stopped_code(
    tmp_path: Path, wire, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
) -> None:
    session = FakeSession(symbol_routes("AAA"))
    wire(session)
    # deliver the signal as soon as the handler is installed
    monkeypatch.setattr(ticks.signal, "signal", lambda signum, handler: handler(signum, None))

    rc = ticks.main(["--days", DAY, "--symbols", "AAA", "--output-root", str(tmp_path), "--no-progress"])

    assert rc == ticks.EXIT_STOPPED
    assert "stopped: 0/1 days ran" in capsys.readouterr().out
    assert session.calls == []
