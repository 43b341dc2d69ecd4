# bitalino_ble/app/runner.py
from __future__ import annotations

import logging
from typing import Optional

from bitalino_ble.app.config import BitalinoConfig
from bitalino_ble.interfaces.command_sink import CommandSink
from bitalino_ble.runtime.device_session import DeviceSession
from bitalino_ble.transport.bleak_adapter import BleakTransport

# bleak must not give up before the session timer does
BLEAK_TIMEOUT_MARGIN_S = 5.0
# bleak has no "wait forever"; one day stands in for it
BLEAK_UNBOUNDED_TIMEOUT_S = 24 * 3600.0


def bleak_connect_timeout(session_timeout_s: Optional[float]) -> float:
    if session_timeout_s is None:
        return BLEAK_UNBOUNDED_TIMEOUT_S
    return float(session_timeout_s) + BLEAK_TIMEOUT_MARGIN_S


def build_session(
    cfg: BitalinoConfig,
    *,
    cmd_sink: Optional[CommandSink] = None,
    logger: Optional[logging.Logger] = None,
) -> DeviceSession:
    """
    Wire a DeviceSession to the bleak transport. Nothing is opened yet.

    The session owns the connect timeout; bleak's own timeout is pushed past it
    so an expired attempt always surfaces as ConnectTimedOut.
    """
    log = logger or logging.getLogger(__name__)

    transport = BleakTransport(
        adapter=cfg.adapter,
        connect_timeout_s=bleak_connect_timeout(cfg.connect_timeout_s),
        write_with_response=cfg.write_with_response,
        logger=log,
    )

    return DeviceSession(
        transport,
        profile=cfg.profile,
        connect_timeout_s=cfg.connect_timeout_s,
        cmd_sink=cmd_sink,
        logger=log,
    )
