"""CLI interface for k6_clickhouse."""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
from itertools import islice
from pathlib import Path
from typing import Any

import yaml

from . import __version__
from .errors import ClickHouseOutputError
from .output import Output, OutputParams
from .register import new_output

DEFAULT_CONFIG_FILE = "k6_clickhouse.yaml"


def _load_json_config(path: str | None) -> str | None:
    """Read the YAML (or JSON) config file and re-encode it as a JSON document."""
    if path is None:
        candidate = Path(DEFAULT_CONFIG_FILE)
        if not candidate.exists():
            return None
    else:
        candidate = Path(path)

    with open(candidate, encoding="utf-8") as fh:
        loaded: Any = yaml.safe_load(fh)
    if loaded is None:
        return None
    return json.dumps(loaded, default=str)


def _build_output(args: argparse.Namespace) -> Output:
    params = OutputParams(
        json_config=_load_json_config(args.config),
        environment=dict(os.environ),
        config_argument=args.dsn or "",
        stdout=sys.stdout,
    )
    return new_output(params)


def _cmd_check(args: argparse.Namespace) -> int:
    """Verify the destination database and table."""
    output = _build_output(args)
    print(f"Checking {output.description()}")
    try:
        output.start()
    finally:
        output.stop()
    print(f"OK: {output.database}.{output.table} is ready")
    return 0


def _cmd_replay(args: argparse.Namespace) -> int:
    """Ship the samples of a k6 JSON output file."""
    from .reader import read_k6_json

    output = _build_output(args)
    try:
        output.start()
    except ClickHouseOutputError:
        output.stop()
        raise

    stop = False

    def _handle_signal(_sig: int, _frame: object) -> None:
        nonlocal stop
        stop = True

    previous = {sig: signal.signal(sig, _handle_signal) for sig in (signal.SIGINT, signal.SIGTERM)}

    print(f"Replaying {args.file} into {output.description()}")
    total = 0
    samples = read_k6_json(args.file)
    try:
        while not stop:
            chunk = list(islice(samples, args.chunk_size))
            if not chunk:
                break
            output.add_metric_samples(chunk)
            total += len(chunk)
    finally:
        for sig, handler in previous.items():
            if handler is not None:
                signal.signal(sig, handler)
        output.stop()

    print(f"Read {total} samples: sent={output.samples_sent} dropped={output.samples_dropped}")
    return 0 if output.samples_dropped == 0 else 1


def _cmd_version(_args: argparse.Namespace) -> int:
    print(f"k6_clickhouse {__version__}")
    return 0


def main(argv: list[str] | None = None) -> None:
    """Entry point for the k6-clickhouse CLI."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    parser = argparse.ArgumentParser(
        prog="k6-clickhouse",
        description="Ship k6 metric samples to ClickHouse",
    )
    parser.add_argument(
        "--config", "-c", default=None, help=f"Path to a YAML/JSON config (default: {DEFAULT_CONFIG_FILE})"
    )
    sub = parser.add_subparsers(dest="command")

    # check
    check_p = sub.add_parser("check", help="Verify the destination database and table")
    check_p.add_argument("dsn", nargs="?", default=None, help="ClickHouse DSN")
    check_p.set_defaults(func=_cmd_check)

    # replay
    replay_p = sub.add_parser("replay", help="Ship the samples of a k6 JSON output file")
    replay_p.add_argument("file", help="File written by 'k6 run --out json=FILE'")
    replay_p.add_argument("dsn", nargs="?", default=None, help="ClickHouse DSN")
    replay_p.add_argument("--chunk-size", type=int, default=1000, help="Samples handed over per call")
    replay_p.set_defaults(func=_cmd_replay)

    # version
    ver_p = sub.add_parser("version", help="Print version")
    ver_p.set_defaults(func=_cmd_version)

    args = parser.parse_args(argv)
    if getattr(args, "chunk_size", 1) < 1:
        parser.error("--chunk-size must be positive")
    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    try:
        code = args.func(args)
    except (ClickHouseOutputError, OSError, yaml.YAMLError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
