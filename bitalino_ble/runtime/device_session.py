# bitalino_ble/runtime/device_session.py
from __future__ import annotations

import logging
import re
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from bitalino_ble.core.errors import (
    BitalinoError,
    InvalidAddressError,
    NotConnectedError,
    NotInitializedError,
    ServiceUnavailableError,
    SessionActiveError,
    TransportRejectedError,
    UnsupportedOperationError,
)
from bitalino_ble.interfaces.command_sink import CommandEvent, CommandSink
from bitalino_ble.protocol.defs import CommandCode, DigitalPort, GattProfile
from bitalino_ble.protocol.frames import FrameInterpreter
from bitalino_ble.runtime.emitter import EventCallback, EventEmitter
from bitalino_ble.runtime.events import (
    ConnectTimedOut,
    Connected,
    DataAvailable,
    Disconnected,
    ServicesDiscovered,
)
from bitalino_ble.runtime.state import ConnectionState, DeviceIdentity, ServiceCatalogue, SessionStatus
from bitalino_ble.transport.base import (
    CharacteristicChanged,
    CharacteristicRead,
    LinkDown,
    LinkUp,
    ServicesResolved,
    Transport,
    TransportSignal,
)

_MAC_RE = re.compile(r"^[0-9A-F]{2}(:[0-9A-F]{2}){5}$")


def normalize_address(address: object) -> str:
    """
    Upper-case MAC (AA:BB:CC:DD:EE:FF) or CoreBluetooth UUID.
    """
    if not isinstance(address, str) or not address.strip():
        raise InvalidAddressError(
            "Device address is empty.",
            hint="Pass the device MAC address, e.g. AA:BB:CC:DD:EE:FF.",
        )

    candidate = address.strip().upper()
    if _MAC_RE.match(candidate):
        return candidate

    try:
        return str(uuid.UUID(candidate)).upper()
    except ValueError:
        raise InvalidAddressError(
            f"Malformed device address {address!r}.",
            hint="Expected AA:BB:CC:DD:EE:FF (or a CoreBluetooth UUID on macOS).",
            details={"address": address},
        ) from None


class DeviceSession:
    """
    Connection / acquisition state machine for one BITalino BLE device.

    Commands validate against the current state and delegate to the
    transport; only on_transport_event() moves the connection state forward.
    All state is guarded by one re-entrant lock, and events are published
    while it is held so subscribers see them in transition order.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        profile: Optional[GattProfile] = None,
        interpreter: Optional[FrameInterpreter] = None,
        emitter: Optional[EventEmitter] = None,
        connect_timeout_s: Optional[float] = 10.0,
        cmd_sink: Optional[CommandSink] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._log = logger or logging.getLogger(__name__)
        self._profile = profile or GattProfile()
        self._interpreter = interpreter or FrameInterpreter(self._profile, logger=self._log)
        self._emitter = emitter or EventEmitter(logger=self._log)
        self._connect_timeout_s = connect_timeout_s
        self._cmd_sink = cmd_sink

        self._lock = threading.RLock()

        self._transport = transport
        self._transport.on_event = self.on_transport_event

        self._initialized = False
        self._handle_open = False
        self._disconnect_requested = False

        self._state = ConnectionState.DISCONNECTED
        self._acquiring = False
        self._identity: Optional[DeviceIdentity] = None
        self._catalogue: Optional[ServiceCatalogue] = None

        self._attempt = 0
        self._connect_timer: Optional[threading.Timer] = None

    # ---------------- accessors ----------------
    @property
    def profile(self) -> GattProfile:
        return self._profile

    @property
    def connect_timeout_s(self) -> Optional[float]:
        return self._connect_timeout_s

    @property
    def connection_state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def identity(self) -> Optional[DeviceIdentity]:
        with self._lock:
            return self._identity

    @property
    def catalogue(self) -> Optional[ServiceCatalogue]:
        with self._lock:
            return self._catalogue

    def is_connected(self) -> bool:
        with self._lock:
            return self._state is ConnectionState.CONNECTED

    def is_acquiring(self) -> bool:
        with self._lock:
            return self._acquiring

    def status(self) -> SessionStatus:
        with self._lock:
            return SessionStatus(
                state=self._state,
                acquiring=self._acquiring,
                identity=self._identity,
                catalogue=self._catalogue,
            )

    def subscribe(self, cb: EventCallback) -> Callable[[], None]:
        return self._emitter.subscribe(cb)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until all events published so far reached the subscribers."""
        return self._emitter.wait_idle(timeout)

    # ---------------- lifecycle ----------------
    def initialize(self) -> bool:
        ok = bool(self._transport.initialize())
        with self._lock:
            self._initialized = ok
        if ok:
            self._log.info("TRANSPORT_INITIALIZED driver=%s", type(self._transport).__name__)
        else:
            self._log.error("TRANSPORT_INIT_FAILED driver=%s", type(self._transport).__name__)
        return ok

    def connect(self, address: str, name: Optional[str] = None) -> None:
        with self._lock:
            if not self._initialized:
                raise NotInitializedError(
                    "BLE transport is not initialized.",
                    hint="Call initialize() and check that a Bluetooth adapter is available.",
                )

            addr = normalize_address(address)

            if self._state is not ConnectionState.DISCONNECTED:
                if self._identity is not None and self._identity.address == addr:
                    self._log.info("SESSION_CONNECT_IGNORED address=%s state=%s", addr, self._state.value)
                    return
                raise SessionActiveError(
                    f"A session for {self._identity.address if self._identity else '?'} is still active.",
                    hint="Disconnect or close the current session first.",
                    details={"active": self._identity.address if self._identity else None, "requested": addr},
                )

            self._identity = DeviceIdentity(address=addr, name=name or "BITalino")
            self._catalogue = None
            self._acquiring = False
            self._state = ConnectionState.CONNECTING
            self._attempt += 1
            attempt = self._attempt
            self._disconnect_requested = False

            self._record("CONNECT", "send", address=addr)
            if not self._transport.connect(addr):
                self._state = ConnectionState.DISCONNECTED
                self._record("CONNECT", "rejected", address=addr)
                self._log.warning("SESSION_CONNECT_REJECTED address=%s", addr)
                raise TransportRejectedError(
                    f"Transport did not accept connect to {addr}.",
                    details={"address": addr},
                )

            self._handle_open = True
            self._arm_connect_timer(attempt)
            self._log.info("SESSION_CONNECT address=%s name=%s", addr, self._identity.name)

    def disconnect(self) -> None:
        with self._lock:
            if not self._handle_open:
                self._log.warning("SESSION_DISCONNECT_IGNORED reason=no_connection")
                return

            if self._acquiring:
                try:
                    self.stop_acquisition()
                except BitalinoError as e:
                    self._log.warning("STOP_BEFORE_DISCONNECT_FAILED code=%s msg=%s", e.code, e.message)

            self._disconnect_requested = True
            self._record("DISCONNECT", "send")
            self._log.info("SESSION_DISCONNECT state=%s", self._state.value)
            self._transport.disconnect()

    def close(self) -> None:
        with self._lock:
            timer, self._connect_timer = self._connect_timer, None
            owns_transport = self._initialized or self._handle_open
            self._handle_open = False
            self._disconnect_requested = False
            prev_state, identity = self._state, self._identity
            self._attempt += 1

            self._state = ConnectionState.DISCONNECTED
            self._acquiring = False
            self._catalogue = None
            self._identity = None
            self._initialized = False

            if prev_state is not ConnectionState.DISCONNECTED:
                self._emitter.publish(Disconnected(identity))

        if timer is not None:
            timer.cancel()

        # outside the lock: the transport may deliver a final signal while closing
        if owns_transport:
            try:
                self._transport.close()
            except Exception:
                self._log.exception("TRANSPORT_CLOSE_FAILED")
            self._log.info("SESSION_CLOSED")

        self._emitter.stop()

    def __enter__(self) -> "DeviceSession":
        if not self.initialize():
            raise NotInitializedError("BLE transport could not be initialized.")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ---------------- acquisition ----------------
    def start_acquisition(self) -> None:
        self._write_command(CommandCode.START, "START_ACQUISITION")

    def stop_acquisition(self) -> None:
        self._write_command(CommandCode.STOP, "STOP_ACQUISITION")

    def _write_command(self, code: CommandCode, name: str) -> None:
        with self._lock:
            self._require_connected(name)
            service = self._require_characteristic(self._profile.commands_uuid, service=self._profile.service_uuid)

            self._record(name, "send", value=int(code))
            if not self._transport.write_characteristic(service, self._profile.commands_uuid, code.encode()):
                self._record(name, "rejected", value=int(code))
                self._log.warning("%s_REJECTED", name)
                raise TransportRejectedError(
                    f"Transport did not accept the {name.lower()} command.",
                    details={"command": int(code)},
                )

            self._acquiring = code is CommandCode.START
            self._record(name, "ok", value=int(code))
            self._log.info("%s acquiring=%s", name, self._acquiring)

    # ---------------- diagnostics ----------------
    def read_characteristic(self, characteristic: str) -> None:
        characteristic = characteristic.lower()
        with self._lock:
            self._require_connected("READ_CHARACTERISTIC")
            service = self._require_characteristic(characteristic)
            if not self._transport.read_characteristic(service, characteristic):
                raise TransportRejectedError(
                    f"Transport did not accept read of {characteristic}.",
                    details={"characteristic": characteristic},
                )
            self._log.debug("READ_REQUESTED char=%s", characteristic)

    def set_notification(self, characteristic: str, enabled: bool = True) -> None:
        characteristic = characteristic.lower()
        with self._lock:
            self._require_connected("SET_NOTIFICATION")
            self._require_characteristic(characteristic)
            if not self._transport.set_notification(characteristic, enabled):
                raise TransportRejectedError(
                    f"Transport did not accept notification change on {characteristic}.",
                    details={"characteristic": characteristic, "enabled": enabled},
                )
            self._log.info("NOTIFY char=%s enabled=%s", characteristic, enabled)

    def subscribe_frames(self, enabled: bool = True) -> None:
        self.set_notification(self._profile.frames_uuid, enabled)

    def write_digital_port(self, port: DigitalPort, value: bool) -> None:
        raise UnsupportedOperationError(
            "Writing digital ports is not implemented.",
            details={"port": port.name, "value": bool(value)},
        )

    def read_analog_port(self, port: int) -> int:
        raise UnsupportedOperationError(
            "Reading analog ports is not implemented.",
            details={"port": int(port)},
        )

    # ---------------- transport callbacks ----------------
    def on_transport_event(self, signal: TransportSignal) -> None:
        if isinstance(signal, LinkUp):
            self._on_link_up(signal)
        elif isinstance(signal, LinkDown):
            self._on_link_down(signal)
        elif isinstance(signal, ServicesResolved):
            self._on_services(signal)
        elif isinstance(signal, CharacteristicRead):
            if not signal.ok:
                self._log.warning("CHARACTERISTIC_READ_FAILED char=%s", signal.characteristic)
                return
            self._on_data(signal.characteristic, signal.data)
        elif isinstance(signal, CharacteristicChanged):
            self._on_data(signal.characteristic, signal.data)
        else:
            self._log.warning("UNKNOWN_TRANSPORT_SIGNAL type=%s", type(signal).__name__)

    def _on_link_up(self, signal: LinkUp) -> None:
        with self._lock:
            if self._state is not ConnectionState.CONNECTING:
                self._log.warning("STALE_LINK_UP address=%s state=%s", signal.address, self._state.value)
                if self._state is ConnectionState.DISCONNECTED and self._handle_open:
                    self._transport.disconnect()
                return

            self._cancel_connect_timer()
            self._state = ConnectionState.CONNECTED
            assert self._identity is not None
            self._record("CONNECT", "ok", address=self._identity.address)
            self._emitter.publish(Connected(self._identity))
            self._log.info("GATT_CONNECTED address=%s", self._identity.address)

            if not self._transport.discover_services():
                self._log.warning("SERVICE_DISCOVERY_NOT_STARTED")

    def _on_link_down(self, signal: LinkDown) -> None:
        with self._lock:
            self._cancel_connect_timer()
            prev = self._state
            was_acquiring = self._acquiring
            requested, self._disconnect_requested = self._disconnect_requested, False

            self._state = ConnectionState.DISCONNECTED
            self._acquiring = False
            self._catalogue = None

            if prev is ConnectionState.DISCONNECTED:
                self._log.debug("LINK_DOWN_IGNORED address=%s", signal.address)
                return

            self._emitter.publish(Disconnected(self._identity))
            if requested:
                self._record("DISCONNECT", "ok", address=signal.address)
            self._log.info(
                "GATT_DISCONNECTED address=%s reason=%s was_acquiring=%s",
                signal.address,
                signal.reason,
                was_acquiring,
            )

    def _on_services(self, signal: ServicesResolved) -> None:
        with self._lock:
            if self._state is not ConnectionState.CONNECTED:
                self._log.warning("SERVICES_IGNORED state=%s", self._state.value)
                return
            if not signal.ok:
                self._log.warning("SERVICE_DISCOVERY_FAILED")
                return

            catalogue = ServiceCatalogue(signal.services)
            self._catalogue = catalogue
            self._emitter.publish(ServicesDiscovered(catalogue))
            self._log.info("SERVICES_DISCOVERED count=%d", len(catalogue))

            if not catalogue.has_characteristic(self._profile.commands_uuid, self._profile.service_uuid):
                self._log.warning("EXCHANGE_DATA_SERVICE_MISSING service=%s", self._profile.service_uuid)

    def _on_data(self, characteristic: str, data: bytes) -> None:
        payload = self._interpreter.interpret(characteristic, data)
        with self._lock:
            self._emitter.publish(DataAvailable(payload.characteristic, payload.raw, payload))

    # ---------------- connect timeout ----------------
    def _arm_connect_timer(self, attempt: int) -> None:
        if not self._connect_timeout_s:
            return
        timer = threading.Timer(self._connect_timeout_s, self._on_connect_timeout, args=(attempt,))
        timer.daemon = True
        self._connect_timer = timer
        timer.start()

    def _cancel_connect_timer(self) -> None:
        timer, self._connect_timer = self._connect_timer, None
        if timer is not None:
            timer.cancel()

    def _on_connect_timeout(self, attempt: int) -> None:
        with self._lock:
            if attempt != self._attempt or self._state is not ConnectionState.CONNECTING:
                return

            self._connect_timer = None
            self._state = ConnectionState.DISCONNECTED
            self._acquiring = False
            self._catalogue = None

            assert self._identity is not None
            self._emitter.publish(ConnectTimedOut(self._identity, float(self._connect_timeout_s or 0)))
            self._log.warning(
                "CONNECT_TIMED_OUT address=%s timeout_s=%s",
                self._identity.address,
                self._connect_timeout_s,
            )
            self._transport.disconnect()

    # ---------------- helpers ----------------
    def _require_connected(self, op: str) -> None:
        if self._state is not ConnectionState.CONNECTED:
            raise NotConnectedError(
                f"{op}: device is not connected.",
                details={"state": self._state.value},
            )

    def _require_characteristic(self, characteristic: str, *, service: Optional[str] = None) -> str:
        catalogue = self._catalogue
        if catalogue is None:
            raise ServiceUnavailableError(
                "Service discovery has not completed.",
                hint="Wait for the services-discovered event before issuing commands.",
            )
        if service is not None and not catalogue.has_service(service):
            raise ServiceUnavailableError(
                f"Service {service} not found on device.",
                hint="Is this a BITalino BLE device?",
                details={"service": service},
            )

        found = catalogue.service_of(characteristic, within=service)
        if found is None:
            raise ServiceUnavailableError(
                f"Characteristic {characteristic} not found on device.",
                details={"characteristic": characteristic, "service": service},
            )
        return found

    def _record(self, name: str, kind: str, **payload) -> None:
        sink = self._cmd_sink
        if sink is None:
            return
        try:
            sink.on_command(
                CommandEvent(
                    name=name,
                    kind=kind,
                    payload=payload or None,
                    ts_utc=datetime.now(timezone.utc).isoformat(),
                )
            )
        except Exception:
            self._log.exception("CMD_SINK_ERROR name=%s kind=%s", name, kind)
