"""Command line driver for the coordination server and its load generator."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from typing import List, Optional

from monsters import BusError, GameConfig, GameServer
from monsters.stress import run_stress

logger = logging.getLogger("monsters")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Hit the monsters: game coordination server.")
    parser.add_argument("--log-level", default="INFO")
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the coordination server.")
    serve.add_argument("--mode", choices=["interactive", "stress"], default="interactive")
    serve.add_argument("--host")
    serve.add_argument("--port", type=int)
    serve.add_argument("--bus-host")
    serve.add_argument("--bus-port", type=int)
    serve.add_argument("--topic")
    serve.add_argument("--win-threshold", type=int)
    serve.add_argument("--spawn-interval", type=float)
    serve.add_argument("--expected-clients", type=int)
    serve.add_argument("--max-rounds", type=int)
    serve.add_argument("--results-path")

    stress = commands.add_parser("stress", help="Simulate many players against a running server.")
    stress.add_argument("--host", default="127.0.0.1")
    stress.add_argument("--port", type=int, default=5000)
    stress.add_argument("--clients", type=int, default=500)
    stress.add_argument("--max-delay", type=float, default=0.5)
    stress.add_argument("--duration", type=float, default=120.0)
    stress.add_argument("--seed", type=int)
    return parser


def build_config(args: argparse.Namespace) -> GameConfig:
    """Preset for the mode, then environment, then explicit flags."""
    base = GameConfig.stress() if args.mode == "stress" else GameConfig.interactive()
    config = base.with_env()
    overrides = {
        name: getattr(args, name)
        for name in (
            "host",
            "port",
            "bus_host",
            "bus_port",
            "topic",
            "win_threshold",
            "spawn_interval",
            "expected_clients",
            "max_rounds",
            "results_path",
        )
        if getattr(args, name) is not None
    }
    return replace(config, **overrides)


def serve(args: argparse.Namespace) -> int:
    try:
        config = build_config(args)
        server = GameServer(config)
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2
    try:
        server.start()
    except (OSError, BusError) as exc:
        logger.error("Could not start the server: %s", exc)
        return 1
    try:
        server.wait()
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down.")
    finally:
        server.stop()
    if server.failure is not None:
        logger.error("Server stopped after a fatal error: %s", server.failure)
        return 1
    return 0


def stress(args: argparse.Namespace) -> int:
    report = run_stress(
        args.host,
        args.port,
        args.clients,
        max_delay=args.max_delay,
        duration=args.duration,
        seed=args.seed,
    )
    print(f"registered={report.registered} failed={report.failed} winners={','.join(report.winners) or '-'}")
    return 0 if report.registered else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    if args.command == "serve":
        return serve(args)
    return stress(args)


if __name__ == "__main__":
    sys.exit(main())
