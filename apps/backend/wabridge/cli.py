from __future__ import annotations

import argparse
import signal
import sys

import uvicorn

from wabridge.config.defaults import DEFAULT_BIND, DEFAULT_LOG_LEVEL, DEFAULT_PORT
from wabridge.main import create_app

_KNOWN_COMMANDS = {"serve"}


def _add_serve_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--data-dir", default=None, help="Path for runtime data (sessions/logs/config)")
    parser.add_argument("--bind", default=DEFAULT_BIND, help=f"Bind host (default {DEFAULT_BIND})")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help=f"Bind port (default {DEFAULT_PORT})")
    parser.add_argument("--log-level", default=DEFAULT_LOG_LEVEL, help="Log level")
    parser.add_argument("--no-mqtt", action="store_true", help="Do not connect to the MQTT broker")


def _build_parser(prog: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog, description="Relay Frigate NVR events to WhatsApp groups")
    subparsers = parser.add_subparsers(dest="command", required=True)
    serve = subparsers.add_parser("serve", help="Run the bridge API, dashboard socket and MQTT listener")
    _add_serve_arguments(serve)
    return parser


def _run(parsed: argparse.Namespace) -> int:
    if parsed.bind == "0.0.0.0":
        print("[warning] LAN access enabled. Keep the bridge on trusted networks and do not expose publicly.")

    app = create_app(
        data_dir=parsed.data_dir,
        bind=parsed.bind,
        port=parsed.port,
        log_level=parsed.log_level,
        start_event_bus=not parsed.no_mqtt,
    )

    print(f"Bridge listening on http://{parsed.bind}:{parsed.port}")
    config = uvicorn.Config(
        app,
        host=parsed.bind,
        port=parsed.port,
        log_level=parsed.log_level,
        workers=1,
        timeout_graceful_shutdown=2,
    )
    server = uvicorn.Server(config)
    previous_handlers: dict[int, object] = {}
    run_exit_code: int | None = None

    def _begin_runtime_shutdown() -> None:
        bridge_state = getattr(getattr(app, "state", None), "bridge", None)
        if bridge_state is not None:
            bridge_state.begin_shutdown()

    def _request_exit(signum: int, _frame: object) -> None:
        if signum in {signal.SIGINT, signal.SIGTERM}:
            _begin_runtime_shutdown()
            server.should_exit = True

    def _request_exit_from_api() -> None:
        server.should_exit = True

    app.state.request_exit = _request_exit_from_api

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            previous_handlers[sig] = signal.getsignal(sig)
            signal.signal(sig, _request_exit)
        except (AttributeError, ValueError):
            continue

    try:
        try:
            server.run()
        except KeyboardInterrupt:
            _begin_runtime_shutdown()
            server.should_exit = True
        except SystemExit as exc:
            if server.should_exit:
                run_exit_code = 0
            else:
                code = exc.code
                run_exit_code = code if isinstance(code, int) else 1
    finally:
        _begin_runtime_shutdown()
        bridge_state = getattr(app.state, "bridge", None)
        if bridge_state is not None:
            bridge_state.shutdown()
        for sig, handler in previous_handlers.items():
            try:
                signal.signal(sig, handler)
            except (AttributeError, ValueError, TypeError):
                continue
    if run_exit_code is not None:
        return run_exit_code
    if bool(getattr(server, "started", False)) or server.should_exit:
        return 0
    return 1


def main(argv: list[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if not args or args[0] not in _KNOWN_COMMANDS:
        args = ["serve", *args]
    try:
        parsed = _build_parser("wabridge").parse_args(args)
        return _run(parsed)
    except KeyboardInterrupt:
        return 0
    except Exception as exc:
        print(f"[error] {exc}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
