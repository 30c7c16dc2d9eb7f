from __future__ import annotations

import argparse
from types import SimpleNamespace

import pytest

from wabridge import cli


def _parsed(*extra: str) -> argparse.Namespace:
    return cli._build_parser("wabridge").parse_args(["serve", "--bind", "127.0.0.1", "--port", "3300", *extra])


def _fake_app(begin_shutdown_calls: list[int], shutdown_calls: list[int] | None = None) -> object:
    bridge = SimpleNamespace(
        begin_shutdown=lambda: begin_shutdown_calls.append(1),
        shutdown=lambda: (shutdown_calls if shutdown_calls is not None else []).append(1),
    )
    return SimpleNamespace(state=SimpleNamespace(bridge=bridge))


def test_cli_returns_zero_on_keyboard_interrupt(monkeypatch) -> None:
    begin_calls: list[int] = []
    shutdown_calls: list[int] = []
    monkeypatch.setattr(cli, "create_app", lambda **kwargs: _fake_app(begin_calls, shutdown_calls))
    monkeypatch.setattr(cli.uvicorn, "Config", lambda *args, **kwargs: object())

    class _InterruptServer:
        def __init__(self, _config: object) -> None:
            self.should_exit = False
            self.started = True

        def run(self) -> None:
            raise KeyboardInterrupt

    monkeypatch.setattr(cli.uvicorn, "Server", _InterruptServer)

    assert cli._run(_parsed()) == 0
    assert len(begin_calls) == 2
    assert len(shutdown_calls) == 1


def test_cli_returns_nonzero_when_server_never_starts(monkeypatch) -> None:
    begin_calls: list[int] = []
    monkeypatch.setattr(cli, "create_app", lambda **kwargs: _fake_app(begin_calls))
    monkeypatch.setattr(cli.uvicorn, "Config", lambda *args, **kwargs: object())

    class _NeverStartedServer:
        def __init__(self, _config: object) -> None:
            self.should_exit = False
            self.started = False

        def run(self) -> None:
            return None

    monkeypatch.setattr(cli.uvicorn, "Server", _NeverStartedServer)

    assert cli._run(_parsed()) == 1
    assert len(begin_calls) == 1


def test_cli_forces_single_uvicorn_worker(monkeypatch) -> None:
    captured_app: dict[str, object] = {}
    captured: dict[str, object] = {}

    def _create_app(**kwargs):
        captured_app.update(kwargs)
        return _fake_app([])

    def _capture_config(*_args, **kwargs):
        captured.update(kwargs)
        return object()

    monkeypatch.setattr(cli, "create_app", _create_app)
    monkeypatch.setattr(cli.uvicorn, "Config", _capture_config)

    class _StartedServer:
        def __init__(self, _config: object) -> None:
            self.should_exit = False
            self.started = True

        def run(self) -> None:
            return None

    monkeypatch.setattr(cli.uvicorn, "Server", _StartedServer)

    assert cli._run(_parsed("--no-mqtt")) == 0
    assert captured["workers"] == 1
    assert captured["port"] == 3300
    assert captured_app["start_event_bus"] is False


def test_cli_treats_system_exit_after_should_exit_as_clean(monkeypatch) -> None:
    monkeypatch.setattr(cli, "create_app", lambda **kwargs: _fake_app([]))
    monkeypatch.setattr(cli.uvicorn, "Config", lambda *args, **kwargs: object())

    class _SystemExitServer:
        def __init__(self, _config: object) -> None:
            self.should_exit = True
            self.started = True

        def run(self) -> None:
            raise SystemExit(1)

    monkeypatch.setattr(cli.uvicorn, "Server", _SystemExitServer)

    assert cli._run(_parsed()) == 0


def test_main_defaults_to_serve(monkeypatch) -> None:
    seen: list[argparse.Namespace] = []

    def _record(parsed: argparse.Namespace) -> int:
        seen.append(parsed)
        return 0

    monkeypatch.setattr(cli, "_run", _record)
    assert cli.main(["--port", "3100"]) == 0
    assert seen[0].command == "serve"
    assert seen[0].port == 3100
    assert seen[0].bind == "127.0.0.1"


def test_main_returns_zero_on_interrupt(monkeypatch) -> None:
    def _raise_interrupt(_parsed: argparse.Namespace) -> int:
        raise KeyboardInterrupt

    monkeypatch.setattr(cli, "_run", _raise_interrupt)
    assert cli.main(["--no-mqtt"]) == 0


def test_main_reports_startup_errors(monkeypatch, capsys) -> None:
    def _fail(_parsed: argparse.Namespace) -> int:
        raise RuntimeError("data dir is read-only")

    monkeypatch.setattr(cli, "_run", _fail)
    assert cli.main([]) == 2
    assert "data dir is read-only" in capsys.readouterr().out


def test_parser_rejects_non_numeric_port() -> None:
    with pytest.raises(SystemExit):
        cli._build_parser("wabridge").parse_args(["serve", "--port", "abc"])
