# bitalino_ble/cli/main.py
from __future__ import annotations

from typing import Optional

from bitalino_ble.core.errors import BitalinoError

from bitalino_ble.cli.args import parse_args, resolve_config
from bitalino_ble.cli.commands import (
    cmd_read,
    cmd_services,
    cmd_stream,
    configure_logging,
)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(verbose=args.verbose)
    try:
        cfg = resolve_config(args)
        if cfg.log_path is not None:
            configure_logging(verbose=args.verbose, log_path=cfg.log_path)

        if args.cmd == "services":
            return cmd_services(cfg)
        if args.cmd == "read":
            return cmd_read(cfg, args.char)
        if args.cmd == "stream":
            return cmd_stream(cfg, secs=args.secs)

        return 2
    except BitalinoError as e:
        print(f"ERROR: {e.message}")
        if e.hint:
            print(f"Hint: {e.hint}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
