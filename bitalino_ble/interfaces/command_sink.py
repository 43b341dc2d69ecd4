from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Protocol


@dataclass(frozen=True, slots=True)
class CommandEvent:
    """
    Runtime command telemetry event (for tracing/debugging).
    Keep this small + stable; put details into payload.
    """
    name: str                   # e.g. "START_ACQUISITION"
    kind: str                   # "send" | "ok" | "rejected"
    payload: Optional[Mapping[str, Any]] = None
    ts_utc: Optional[str] = None


class CommandSink(Protocol):
    def on_command(self, event: CommandEvent) -> None: ...
    def close(self) -> None: ...


class LoggingCommandSink:
    """Writes command events to a logger, one line each."""

    def __init__(self, logger: Optional[logging.Logger] = None, *, level: int = logging.INFO):
        self._log = logger or logging.getLogger("bitalino_ble.commands")
        self._level = level

    def on_command(self, event: CommandEvent) -> None:
        ts = event.ts_utc or datetime.now(timezone.utc).isoformat()
        self._log.log(
            self._level,
            "CMD name=%s kind=%s ts=%s payload=%s",
            event.name,
            event.kind,
            ts,
            dict(event.payload or {}),
        )

    def close(self) -> None:
        return None
