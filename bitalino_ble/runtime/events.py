# bitalino_ble/runtime/events.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from bitalino_ble.protocol.frames import DecodedPayload
from bitalino_ble.runtime.state import DeviceIdentity, ServiceCatalogue


class EventKind(Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    SERVICES_DISCOVERED = "services_discovered"
    DATA_AVAILABLE = "data_available"
    CONNECT_TIMED_OUT = "connect_timed_out"


@dataclass(frozen=True)
class Connected:
    identity: DeviceIdentity
    kind: EventKind = field(default=EventKind.CONNECTED, init=False)


@dataclass(frozen=True)
class Disconnected:
    identity: Optional[DeviceIdentity]
    kind: EventKind = field(default=EventKind.DISCONNECTED, init=False)


@dataclass(frozen=True)
class ServicesDiscovered:
    catalogue: ServiceCatalogue
    kind: EventKind = field(default=EventKind.SERVICES_DISCOVERED, init=False)


@dataclass(frozen=True)
class DataAvailable:
    characteristic: str
    raw: bytes
    payload: DecodedPayload
    kind: EventKind = field(default=EventKind.DATA_AVAILABLE, init=False)


@dataclass(frozen=True)
class ConnectTimedOut:
    identity: DeviceIdentity
    timeout_s: float
    kind: EventKind = field(default=EventKind.CONNECT_TIMED_OUT, init=False)


InboundEvent = Union[Connected, Disconnected, ServicesDiscovered, DataAvailable, ConnectTimedOut]
