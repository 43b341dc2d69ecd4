# bitalino_ble/cli/args.py
from __future__ import annotations

import argparse
from pathlib import Path
from typing import Optional

from bitalino_ble.app.config import BitalinoConfig, load_config
from bitalino_ble.core.errors import ConfigError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bitalino-ble")
    sub = parser.add_subparsers(dest="cmd", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--address", help="Device MAC address, e.g. A0:E6:F8:D4:BE:A8.")
    common.add_argument("--name", default=None, help="Logical device name (display only).")
    common.add_argument("--config", type=Path, default=None, help="YAML config file.")
    common.add_argument("--adapter", default=None, help="Host Bluetooth adapter (e.g. hci0).")
    common.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Connect timeout in seconds (0 = wait forever).",
    )
    common.add_argument("--log-file", type=Path, default=None, help="Append logs to this file.")
    common.add_argument("-v", "--verbose", action="store_true", help="Debug logging on the console.")

    sub.add_parser("services", parents=[common], help="Connect and list GATT services.")

    pr = sub.add_parser("read", parents=[common], help="Read one characteristic.")
    pr.add_argument("--char", required=True, help="Characteristic UUID.")

    ps = sub.add_parser("stream", parents=[common], help="Acquire and print frames.")
    ps.add_argument("--secs", type=float, default=None, help="Stop after N seconds (default: until Ctrl-C).")

    return parser


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def resolve_config(args: argparse.Namespace) -> BitalinoConfig:
    """
    Config file first, then command-line flags on top.
    """
    base = load_config(args.config) if args.config else BitalinoConfig()

    cfg = base.with_overrides(
        address=args.address,
        name=args.name,
        adapter=args.adapter,
        connect_timeout_s=args.timeout,
        log_path=args.log_file,
    )

    if not cfg.address:
        raise ConfigError(
            "No device address given.",
            hint="Use --address or set 'address' in the config file.",
        )
    return cfg
