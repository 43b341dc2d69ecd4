from __future__ import annotations

import threading
import time

import pytest

import bitalino_ble.transport.bleak_adapter as ble_mod
from bitalino_ble.core.errors import InvalidAddressError
from bitalino_ble.protocol.defs import COMMANDS_CHARACTERISTIC, EXCHANGE_DATA_SERVICE, FRAMES_CHARACTERISTIC
from bitalino_ble.runtime.device_session import DeviceSession
from bitalino_ble.transport.base import (
    CharacteristicChanged,
    CharacteristicRead,
    LinkDown,
    LinkUp,
    ServicesResolved,
)

ADDRESS = "AA:BB:CC:DD:EE:FF"


class FakeChar:
    def __init__(self, uuid: str):
        self.uuid = uuid


class FakeService:
    def __init__(self, uuid: str, chars):
        self.uuid = uuid
        self.characteristics = [FakeChar(c) for c in chars]

    def get_characteristic(self, uuid: str):
        return next((c for c in self.characteristics if c.uuid == uuid), None)


class FakeServices:
    def __init__(self, services):
        self._services = services

    def __iter__(self):
        return iter(self._services)

    def get_service(self, uuid: str):
        return next((s for s in self._services if s.uuid == uuid), None)


class FakeBleakClient:
    """Stand-in for bleak.BleakClient (async API, no radio)."""

    def __init__(self, address, disconnected_callback=None, timeout=10.0, **kwargs):
        self.address = address
        self.disconnected_callback = disconnected_callback
        self.timeout = timeout
        self.kwargs = kwargs
        self.is_connected = False
        self.writes = []
        self.notify = {}
        self.fail_connect = None
        self.read_value = b"\x41\x42"
        self.services = FakeServices(
            [FakeService(EXCHANGE_DATA_SERVICE, [COMMANDS_CHARACTERISTIC, FRAMES_CHARACTERISTIC])]
        )

    async def connect(self):
        if self.fail_connect is not None:
            raise self.fail_connect
        self.is_connected = True

    async def disconnect(self):
        was = self.is_connected
        self.is_connected = False
        if was and self.disconnected_callback:
            self.disconnected_callback(self)

    async def write_gatt_char(self, char, data, response=True):
        self.writes.append((char, bytes(data), response))

    async def read_gatt_char(self, char):
        return bytearray(self.read_value)

    async def start_notify(self, char, handler):
        self.notify[char] = handler

    async def stop_notify(self, char):
        self.notify.pop(char, None)


class SignalRecorder:
    def __init__(self):
        self.signals = []
        self._cond = threading.Condition()

    def __call__(self, signal):
        with self._cond:
            self.signals.append(signal)
            self._cond.notify_all()

    def wait_for(self, cls, timeout=2.0):
        deadline = time.monotonic() + timeout
        with self._cond:
            while True:
                for s in self.signals:
                    if isinstance(s, cls):
                        self.signals.remove(s)
                        return s
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._cond.wait(remaining)


@pytest.fixture
def clients(monkeypatch):
    created = []
    config = {"fail_connect": None}

    def _ctor(address, **kwargs):
        c = FakeBleakClient(address, **kwargs)
        c.fail_connect = config["fail_connect"]
        created.append(c)
        return c

    monkeypatch.setattr(ble_mod, "BleakClient", _ctor)
    return created, config


@pytest.fixture
def transport(clients):
    t = ble_mod.BleakTransport(adapter="hci1", connect_timeout_s=3.0)
    rec = SignalRecorder()
    t.on_event = rec
    assert t.initialize() is True
    yield t, rec
    t.close()


def _wait(pred, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if pred():
            return True
        time.sleep(0.005)
    return False


def test_requests_rejected_before_initialize(clients):
    t = ble_mod.BleakTransport()
    assert t.connect(ADDRESS) is False
    assert t.write_characteristic(EXCHANGE_DATA_SERVICE, COMMANDS_CHARACTERISTIC, b"\x02") is False
    t.close()


def test_connect_signals_link_up_and_passes_adapter(transport, clients):
    t, rec = transport
    created, _ = clients

    assert t.connect(ADDRESS) is True
    assert isinstance(rec.wait_for(LinkUp), LinkUp)
    assert created[0].kwargs == {"adapter": "hci1"}
    assert created[0].timeout == 3.0


def test_connect_failure_signals_link_down(transport, clients):
    t, rec = transport
    _, config = clients
    config["fail_connect"] = ble_mod.BleakError("device not found")

    assert t.connect(ADDRESS) is True
    down = rec.wait_for(LinkDown)
    assert down is not None
    assert "device not found" in down.reason


def test_discover_reports_service_map(transport):
    t, rec = transport
    t.connect(ADDRESS)
    rec.wait_for(LinkUp)

    assert t.discover_services() is True
    sr = rec.wait_for(ServicesResolved)
    assert sr.ok is True
    assert sr.services == {EXCHANGE_DATA_SERVICE: (COMMANDS_CHARACTERISTIC, FRAMES_CHARACTERISTIC)}


def test_discover_without_client_fails(transport):
    t, rec = transport
    assert t.discover_services() is True
    assert rec.wait_for(ServicesResolved).ok is False


def test_write_goes_to_characteristic_in_service(transport, clients):
    t, rec = transport
    created, _ = clients
    t.connect(ADDRESS)
    rec.wait_for(LinkUp)

    assert t.write_characteristic(EXCHANGE_DATA_SERVICE, COMMANDS_CHARACTERISTIC, b"\x02") is True
    assert _wait(lambda: created[0].writes)

    target, data, response = created[0].writes[0]
    assert target.uuid == COMMANDS_CHARACTERISTIC
    assert data == b"\x02"
    assert response is True


def test_write_before_connect_is_not_accepted(transport):
    t, _ = transport
    assert t.write_characteristic(EXCHANGE_DATA_SERVICE, COMMANDS_CHARACTERISTIC, b"\x02") is False


def test_read_signals_value(transport):
    t, rec = transport
    t.connect(ADDRESS)
    rec.wait_for(LinkUp)

    assert t.read_characteristic(EXCHANGE_DATA_SERVICE, COMMANDS_CHARACTERISTIC) is True
    r = rec.wait_for(CharacteristicRead)
    assert r.ok is True
    assert r.data == b"AB"
    assert r.characteristic == COMMANDS_CHARACTERISTIC


def test_notifications_are_forwarded(transport, clients):
    t, rec = transport
    created, _ = clients
    t.connect(ADDRESS)
    rec.wait_for(LinkUp)

    assert t.set_notification(FRAMES_CHARACTERISTIC, True) is True
    assert _wait(lambda: FRAMES_CHARACTERISTIC in created[0].notify)

    created[0].notify[FRAMES_CHARACTERISTIC](FakeChar(FRAMES_CHARACTERISTIC), bytearray(b"\x01\x02"))
    ch = rec.wait_for(CharacteristicChanged)
    assert ch == CharacteristicChanged(FRAMES_CHARACTERISTIC, b"\x01\x02")

    assert t.set_notification(FRAMES_CHARACTERISTIC, False) is True
    assert _wait(lambda: FRAMES_CHARACTERISTIC not in created[0].notify)


def test_disconnect_signals_link_down(transport):
    t, rec = transport
    t.connect(ADDRESS)
    rec.wait_for(LinkUp)

    t.disconnect()
    assert rec.wait_for(LinkDown) is not None


def test_close_is_idempotent_and_stops_loop(clients):
    t = ble_mod.BleakTransport()
    rec = SignalRecorder()
    t.on_event = rec
    t.initialize()
    t.connect(ADDRESS)
    rec.wait_for(LinkUp)

    t.close()
    t.close()

    assert t.is_initialized() is False
    assert rec.wait_for(LinkDown) is not None
    assert t.connect(ADDRESS) is False


def test_reinitialize_after_close(clients):
    t = ble_mod.BleakTransport()
    t.initialize()
    t.close()

    assert t.initialize() is True
    assert t.connect(ADDRESS) is True
    t.close()


def test_session_close_stops_loop_when_never_connected(clients):
    t = ble_mod.BleakTransport()
    s = DeviceSession(t, connect_timeout_s=None)
    assert s.initialize() is True
    worker = t._worker

    with pytest.raises(InvalidAddressError):
        s.connect("not-a-mac")
    s.close()

    assert worker is not None
    assert not worker.is_alive()
