from __future__ import annotations

import argparse
import json
import logging
from dataclasses import replace
from typing import Any

from .config import (
    BufferSimulationConfig,
    ConfigurationError,
    StreamSimulationConfig,
    load_simulation_config,
)
from .events import logging_sink
from .session import BufferSession, StreamSession

logger = logging.getLogger("prodcon.cli")

EXIT_CONFIG_ERROR = 2

_BUFFER_OVERRIDES = {
    "capacity": "capacity",
    "producers": "producers",
    "consumers": "consumers",
    "backend": "backend",
    "pacing": "pacing",
    "items": "items_per_producer",
}

_STREAM_OVERRIDES = {
    "host": "host",
    "base_port": "base_port",
    "producers": "producers",
    "consumers": "consumers",
    "producer_rate": "producer_rate",
    "consumer_rate": "consumer_rate",
    "items": "items_per_producer",
    "startup_delay_s": "startup_delay_s",
}


def _overrides(args: argparse.Namespace, mapping: dict[str, str]) -> dict[str, Any]:
    return {
        field: getattr(args, attr)
        for attr, field in mapping.items()
        if getattr(args, attr, None) is not None
    }


def _print_report(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def resolve_buffer_config(args: argparse.Namespace) -> BufferSimulationConfig:
    config = (
        load_simulation_config(args.config)["buffer"] if args.config else BufferSimulationConfig()
    )
    updates = _overrides(args, _BUFFER_OVERRIDES)
    if args.production_ms is not None:
        updates["production_interval_s"] = args.production_ms / 1000.0
    if args.consumption_ms is not None:
        updates["consumption_interval_s"] = args.consumption_ms / 1000.0
    return replace(config, **updates) if updates else config


def resolve_stream_config(args: argparse.Namespace) -> StreamSimulationConfig:
    config = (
        load_simulation_config(args.config)["stream"] if args.config else StreamSimulationConfig()
    )
    updates = _overrides(args, _STREAM_OVERRIDES)
    return replace(config, **updates) if updates else config


def cmd_buffer(args: argparse.Namespace) -> int:
    try:
        config = resolve_buffer_config(args)
    except (ConfigurationError, FileNotFoundError) as exc:
        print(f"[prodcon] configuration error: {exc}")
        return EXIT_CONFIG_ERROR

    session = BufferSession(config, log=logging_sink(logging.getLogger("prodcon.log")), seed=args.seed)
    settled = True
    try:
        if config.items_per_producer is not None and args.duration is None:
            settled = session.drain(timeout_s=args.timeout)
            report = session.report()
        else:
            report = session.run_for(args.duration if args.duration is not None else 5.0)
    except KeyboardInterrupt:
        session.stop()
        return 130
    _print_report(report.to_dict())
    if not settled:
        logger.warning(
            f"[CLI] drain timed out after {args.timeout}s with "
            f"{report.inserted - report.removed} item(s) undelivered"
        )
        return 1
    return 0


def cmd_stream(args: argparse.Namespace) -> int:
    try:
        config = resolve_stream_config(args)
    except (ConfigurationError, FileNotFoundError) as exc:
        print(f"[prodcon] configuration error: {exc}")
        return EXIT_CONFIG_ERROR

    session = StreamSession(config, log=logging_sink(logging.getLogger("prodcon.log")))
    try:
        report = session.run(timeout_s=args.timeout)
    except KeyboardInterrupt:
        session.stop()
        return 130
    _print_report(report.to_dict())
    return 1 if report.errors else 0


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {parsed}")
    return parsed


def _positive_float(value: str) -> float:
    try:
        parsed = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected a number, got {value!r}") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive number, got {parsed}")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="prodcon producer/consumer simulator")
    p.add_argument("--log-level", default="INFO")
    sp = p.add_subparsers(dest="cmd", required=True)

    s = sp.add_parser("buffer", help="shared bounded buffer in this process")
    s.add_argument("--config", help="YAML file with a buffer: section")
    s.add_argument("--capacity", type=_positive_int)
    s.add_argument("--producers", type=_positive_int)
    s.add_argument("--consumers", type=_positive_int)
    s.add_argument("--production-ms", type=float)
    s.add_argument("--consumption-ms", type=float)
    s.add_argument("--backend", choices=("condition", "semaphore"))
    s.add_argument("--pacing", choices=("delay", "deadline"))
    s.add_argument("--items", type=_positive_int, help="items per producer, then drain and stop")
    s.add_argument("--duration", type=_positive_float, help="seconds to run before stopping")
    s.add_argument("--timeout", type=_positive_float, default=None)
    s.add_argument("--seed", type=int, default=None)
    s.set_defaults(fn=cmd_buffer)

    s = sp.add_parser("stream", help="one TCP listener per consumer")
    s.add_argument("--config", help="YAML file with a stream: section")
    s.add_argument("--host")
    s.add_argument("--base-port", type=int)
    s.add_argument("--producers", type=_positive_int)
    s.add_argument("--consumers", type=_positive_int)
    s.add_argument("--producer-rate", type=_positive_float)
    s.add_argument("--consumer-rate", type=_positive_float)
    s.add_argument("--items", type=_positive_int, help="items per producer")
    s.add_argument("--startup-delay-s", type=float)
    s.add_argument("--timeout", type=_positive_float, default=None)
    s.set_defaults(fn=cmd_stream)
    return p


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    raise SystemExit(args.fn(args))


if __name__ == "__main__":
    main()
