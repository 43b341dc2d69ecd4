from __future__ import annotations

import logging

import pytest

from bitalino_ble.protocol.defs import (
    COMMANDS_CHARACTERISTIC,
    EXCHANGE_DATA_SERVICE,
    FRAMES_CHARACTERISTIC,
)
from bitalino_ble.runtime.device_session import DeviceSession
from bitalino_ble.runtime.emitter import EventQueue
from bitalino_ble.transport.base import LinkUp, ServicesResolved, Transport

DEVICE_INFO_SERVICE = "0000180a-0000-1000-8000-00805f9b34fb"
MANUFACTURER_NAME = "00002a29-0000-1000-8000-00805f9b34fb"

BITALINO_SERVICES = {
    EXCHANGE_DATA_SERVICE: (COMMANDS_CHARACTERISTIC, FRAMES_CHARACTERISTIC),
    DEVICE_INFO_SERVICE: (MANUFACTURER_NAME,),
}

ADDRESS = "AA:BB:CC:DD:EE:FF"


class FakeTransport(Transport):
    """
    Records every request; signals are injected by the test through emit().
    """

    def __init__(self):
        self.calls: list = []
        self.writes: list[bytes] = []
        self.init_ok = True
        self.accept_connect = True
        self.accept_write = True
        self.accept_read = True
        self.accept_notify = True
        self.discover_ok = True
        self.closed = 0

    def initialize(self) -> bool:
        self.calls.append("initialize")
        return self.init_ok

    def connect(self, address: str) -> bool:
        self.calls.append(("connect", address))
        return self.accept_connect

    def disconnect(self) -> None:
        self.calls.append("disconnect")

    def close(self) -> None:
        self.closed += 1
        self.calls.append("close")

    def discover_services(self) -> bool:
        self.calls.append("discover")
        return self.discover_ok

    def write_characteristic(self, service: str, characteristic: str, payload: bytes) -> bool:
        self.calls.append(("write", service, characteristic, payload))
        if self.accept_write:
            self.writes.append(payload)
        return self.accept_write

    def read_characteristic(self, service: str, characteristic: str) -> bool:
        self.calls.append(("read", service, characteristic))
        return self.accept_read

    def set_notification(self, characteristic: str, enabled: bool) -> bool:
        self.calls.append(("notify", characteristic, enabled))
        return self.accept_notify

    def emit(self, signal) -> None:
        self._signal(signal)


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def session(fake_transport):
    s = DeviceSession(fake_transport, connect_timeout_s=None, logger=logging.getLogger("test"))
    assert s.initialize() is True
    yield s
    s.close()


@pytest.fixture
def events(session) -> EventQueue:
    q = EventQueue()
    session.subscribe(q)
    return q


@pytest.fixture
def connected(session, fake_transport, events):
    """Session that is CONNECTED with the BITalino services discovered."""
    session.connect(ADDRESS)
    fake_transport.emit(LinkUp(ADDRESS))
    fake_transport.emit(ServicesResolved(ok=True, services=BITALINO_SERVICES))
    assert session.wait_idle(1.0)
    events.drain()
    return session
