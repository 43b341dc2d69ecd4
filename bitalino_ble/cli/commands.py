# bitalino_ble/cli/commands.py
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Collection, Optional

from bitalino_ble.app.config import BitalinoConfig
from bitalino_ble.app.runner import build_session
from bitalino_ble.core.errors import NotInitializedError
from bitalino_ble.interfaces.command_sink import LoggingCommandSink
from bitalino_ble.runtime.device_session import DeviceSession
from bitalino_ble.runtime.emitter import EventQueue
from bitalino_ble.runtime.events import EventKind, InboundEvent
from bitalino_ble.runtime.state import ServiceCatalogue

SessionFactory = Callable[[BitalinoConfig], DeviceSession]

_TERMINAL = (EventKind.DISCONNECTED, EventKind.CONNECT_TIMED_OUT)
# extra wait for service discovery once the link is up
DISCOVERY_GRACE_S = 10.0
_POLL_S = 0.5


def _default_factory(cfg: BitalinoConfig) -> DeviceSession:
    return build_session(cfg, cmd_sink=LoggingCommandSink())


# ---------------- Logging ----------------

def configure_logging(*, verbose: bool = False, log_path: Optional[Path] = None) -> None:
    """
    Console handler on the root logger, plus the session log file from
    BitalinoConfig.log_path / --log-file when one is set.
    """
    root = logging.getLogger()
    level = logging.DEBUG if verbose else logging.WARNING

    if not any(type(h) is logging.StreamHandler for h in root.handlers):
        sh = logging.StreamHandler()
        sh.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        root.addHandler(sh)
    for h in root.handlers:
        if type(h) is logging.StreamHandler:
            h.setLevel(level)

    if root.level == logging.NOTSET or root.level > level:
        root.setLevel(level)

    if log_path is not None:
        configure_file_logging(log_path, verbose=verbose)


_FILE_FORMAT = "%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s"


def configure_file_logging(log_path: Path, *, verbose: bool = False) -> logging.Handler:
    """
    Append session logs (transitions, GATT traffic, command telemetry) to `log_path`.

    One handler per resolved path; calling again only widens its level.
    """
    level = logging.DEBUG if verbose else logging.INFO
    target = log_path.expanduser().resolve()
    root = logging.getLogger()

    for h in root.handlers:
        if isinstance(h, logging.FileHandler) and h.baseFilename == str(target):
            h.setLevel(min(h.level, level))
            break
    else:
        target.parent.mkdir(parents=True, exist_ok=True)
        h = logging.FileHandler(target, encoding="utf-8", delay=True)
        h.setLevel(level)
        h.setFormatter(logging.Formatter(_FILE_FORMAT))
        root.addHandler(h)

    if root.level == logging.NOTSET or root.level > level:
        root.setLevel(level)
    return h


# ---------------- Helpers ----------------

def wait_for(
    events: EventQueue,
    kinds: Collection[EventKind],
    timeout_s: Optional[float],
) -> Optional[InboundEvent]:
    """
    Next event whose kind is in `kinds`, or a terminal event (disconnect /
    connect timeout), or None on timeout. `timeout_s=None` waits until one arrives.
    """
    deadline = None if timeout_s is None else time.monotonic() + timeout_s
    while True:
        if deadline is None:
            remaining = _POLL_S
        else:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
        ev = events.get(timeout=remaining)
        if ev is None:
            continue
        if ev.kind in kinds or ev.kind in _TERMINAL:
            return ev


def _connect_and_discover(session: DeviceSession, events: EventQueue, cfg: BitalinoConfig) -> bool:
    if not session.initialize():
        raise NotInitializedError(
            "Bluetooth adapter could not be initialized.",
            hint="Check that Bluetooth is enabled and the adapter name is correct.",
        )

    assert cfg.address is not None
    session.connect(cfg.address, cfg.name)

    discovery_timeout = None if cfg.connect_timeout_s is None else cfg.connect_timeout_s + DISCOVERY_GRACE_S
    ev = wait_for(events, (EventKind.SERVICES_DISCOVERED,), discovery_timeout)
    if ev is None:
        print("ERROR: timed out waiting for service discovery.")
        return False
    if ev.kind is EventKind.CONNECT_TIMED_OUT:
        print(f"ERROR: connect to {cfg.address} timed out.")
        return False
    if ev.kind is EventKind.DISCONNECTED:
        print(f"ERROR: {cfg.address} disconnected before services were discovered.")
        return False
    return True


def print_catalogue(catalogue: Optional[ServiceCatalogue]) -> None:
    if catalogue is None or not len(catalogue):
        print("Services: (none)")
        return
    print("Services:")
    for svc, chars in catalogue.services.items():
        print(f"  {svc}")
        for c in chars:
            print(f"    - {c}")


def print_event(ev: InboundEvent) -> None:
    if ev.kind is EventKind.DATA_AVAILABLE:
        print(f"DATA {ev.characteristic} -> {ev.payload.extra or '(empty)'}")
    elif ev.kind is EventKind.SERVICES_DISCOVERED:
        print_catalogue(ev.catalogue)
    else:
        print(f"EVENT {ev.kind.value}")


# ---------------- Commands ----------------

def cmd_services(cfg: BitalinoConfig, *, factory: SessionFactory = _default_factory) -> int:
    session = factory(cfg)
    events = EventQueue()
    session.subscribe(events)
    try:
        if not _connect_and_discover(session, events, cfg):
            return 1

        print(f"Device: {cfg.name} ({cfg.address})")
        print_catalogue(session.catalogue)

        session.disconnect()
        return 0
    finally:
        session.close()


def cmd_read(cfg: BitalinoConfig, characteristic: str, *, factory: SessionFactory = _default_factory) -> int:
    session = factory(cfg)
    events = EventQueue()
    session.subscribe(events)
    try:
        if not _connect_and_discover(session, events, cfg):
            return 1

        session.read_characteristic(characteristic)
        ev = wait_for(events, (EventKind.DATA_AVAILABLE,), 5.0)
        if ev is None or ev.kind is not EventKind.DATA_AVAILABLE:
            print(f"ERROR: no value received for {characteristic}.")
            return 1

        print_event(ev)
        session.disconnect()
        return 0
    finally:
        session.close()


def cmd_stream(
    cfg: BitalinoConfig,
    *,
    secs: Optional[float] = None,
    factory: SessionFactory = _default_factory,
) -> int:
    session = factory(cfg)
    events = EventQueue()
    session.subscribe(events)
    try:
        if not _connect_and_discover(session, events, cfg):
            return 1

        session.subscribe_frames(True)
        session.start_acquisition()
        print("Acquiring... (Ctrl-C to stop)")

        t_end = (time.monotonic() + secs) if secs else None
        try:
            while t_end is None or time.monotonic() < t_end:
                ev = events.get(timeout=0.2)
                if ev is None:
                    continue
                print_event(ev)
                if ev.kind is EventKind.DISCONNECTED:
                    return 1
        except KeyboardInterrupt:
            pass

        # stop-before-disconnect happens inside disconnect()
        session.disconnect()
        return 0
    finally:
        session.close()
