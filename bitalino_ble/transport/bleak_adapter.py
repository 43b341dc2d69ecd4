from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Future
from typing import Any, Coroutine, Dict, Optional, Tuple

from bleak import BleakClient
from bleak.exc import BleakError

from ._internal.loop_worker import LoopWorker
from .base import (
    CharacteristicChanged,
    CharacteristicRead,
    LinkDown,
    LinkUp,
    ServicesResolved,
    Transport,
)


class ClientUnavailableError(RuntimeError):
    """No connected BleakClient when a GATT coroutine ran."""

    def __init__(self, address: Optional[str]):
        super().__init__(f"no connected client for {address or '?'}")


class BleakTransport(Transport):
    """
    BLE GATT transport implemented via bleak.

    All bleak coroutines run on one private event loop thread; requests made
    from other threads are scheduled onto it and return at once.
    """

    def __init__(
        self,
        *,
        adapter: Optional[str] = None,
        connect_timeout_s: float = 10.0,
        write_with_response: bool = True,
        close_timeout_s: float = 5.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.adapter = adapter
        self.connect_timeout_s = float(connect_timeout_s)
        self.write_with_response = write_with_response
        self.close_timeout_s = float(close_timeout_s)
        self._log = logger or logging.getLogger(__name__)

        self._worker: Optional[LoopWorker] = None
        self._client: Optional[BleakClient] = None
        self._address: Optional[str] = None
        self._connect_future: Optional[Future] = None

    # ---------------- lifecycle ----------------
    def initialize(self) -> bool:
        if self._worker is not None and self._worker.is_alive():
            return True

        worker = LoopWorker()
        worker.start()
        if not worker.wait_ready(timeout=2.0):
            self._log.error("BLE_LOOP_START_FAILED")
            worker.stop()
            return False

        self._worker = worker
        self._log.info("BLE_LOOP_STARTED adapter=%s", self.adapter or "default")
        return True

    def is_initialized(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def connect(self, address: str) -> bool:
        self._address = address
        fut = self._submit(self._connect(address))
        if fut is None:
            return False
        self._connect_future = fut
        return True

    def disconnect(self) -> None:
        fut = self._connect_future
        if fut is not None and not fut.done():
            fut.cancel()
        self._submit(self._disconnect())

    def close(self) -> None:
        worker, self._worker = self._worker, None
        if worker is None:
            return

        if not worker.loop.is_closed():
            try:
                fut = asyncio.run_coroutine_threadsafe(self._disconnect(), worker.loop)
                fut.result(timeout=self.close_timeout_s)
            except Exception as e:
                self._log.warning("BLE_CLOSE_DISCONNECT_FAILED err=%s", e)

        worker.stop()
        worker.join(timeout=self.close_timeout_s)
        self._client = None
        self._connect_future = None
        self._log.info("BLE_LOOP_STOPPED")

    # ---------------- GATT requests ----------------
    def discover_services(self) -> bool:
        return self._submit(self._discover()) is not None

    def write_characteristic(self, service: str, characteristic: str, payload: bytes) -> bool:
        if self._client is None:
            return False
        return self._submit(self._write(service, characteristic, bytes(payload))) is not None

    def read_characteristic(self, service: str, characteristic: str) -> bool:
        if self._client is None:
            return False
        return self._submit(self._read(service, characteristic)) is not None

    def set_notification(self, characteristic: str, enabled: bool) -> bool:
        if self._client is None:
            return False
        return self._submit(self._notify(characteristic, enabled)) is not None

    # ---------------- coroutines (loop thread) ----------------
    async def _connect(self, address: str) -> None:
        kwargs: Dict[str, Any] = {
            "disconnected_callback": self._on_disconnected,
            "timeout": self.connect_timeout_s,
        }
        if self.adapter:
            kwargs["adapter"] = self.adapter

        client = BleakClient(address, **kwargs)
        try:
            await client.connect()
        except asyncio.CancelledError:
            self._log.info("BLE_CONNECT_CANCELLED address=%s", address)
            self._signal(LinkDown(address, reason="cancelled"))
            raise
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            self._log.warning("BLE_CONNECT_FAILED address=%s err=%s", address, e)
            self._signal(LinkDown(address, reason=str(e)))
            return

        self._client = client
        self._log.info("BLE_CONNECTED address=%s", address)
        self._signal(LinkUp(address))

    async def _disconnect(self) -> None:
        client = self._client
        if client is None:
            return
        try:
            await client.disconnect()
        except (BleakError, OSError) as e:
            self._log.warning("BLE_DISCONNECT_FAILED err=%s", e)
        finally:
            self._client = None

    async def _discover(self) -> None:
        client = self._client
        if client is None or not client.is_connected:
            self._signal(ServicesResolved(ok=False))
            return

        try:
            services: Dict[str, Tuple[str, ...]] = {
                str(svc.uuid): tuple(str(c.uuid) for c in svc.characteristics)
                for svc in client.services
            }
        except BleakError as e:
            self._log.warning("BLE_DISCOVERY_FAILED err=%s", e)
            self._signal(ServicesResolved(ok=False))
            return

        self._signal(ServicesResolved(ok=True, services=services))

    async def _write(self, service: str, characteristic: str, payload: bytes) -> None:
        try:
            client = self._require_client()
            await client.write_gatt_char(
                self._resolve(client, service, characteristic),
                payload,
                response=self.write_with_response,
            )
        except (BleakError, ClientUnavailableError, OSError) as e:
            self._log.warning("GATT_WRITE_FAILED char=%s payload=%s err=%s", characteristic, payload.hex(), e)

    async def _read(self, service: str, characteristic: str) -> None:
        try:
            client = self._require_client()
            data = await client.read_gatt_char(self._resolve(client, service, characteristic))
        except (BleakError, ClientUnavailableError, OSError) as e:
            self._log.warning("GATT_READ_FAILED char=%s err=%s", characteristic, e)
            self._signal(CharacteristicRead(characteristic, b"", ok=False))
            return
        self._signal(CharacteristicRead(characteristic, bytes(data), ok=True))

    async def _notify(self, characteristic: str, enabled: bool) -> None:
        def _handler(sender: Any, data: bytearray) -> None:
            uuid = str(getattr(sender, "uuid", characteristic))
            self._signal(CharacteristicChanged(uuid, bytes(data)))

        try:
            client = self._require_client()
            if enabled:
                await client.start_notify(characteristic, _handler)
            else:
                await client.stop_notify(characteristic)
        except (BleakError, ClientUnavailableError, OSError) as e:
            self._log.warning("GATT_NOTIFY_FAILED char=%s enabled=%s err=%s", characteristic, enabled, e)

    # ---------------- helpers ----------------
    def _on_disconnected(self, client: BleakClient) -> None:
        self._client = None
        self._log.info("BLE_DISCONNECTED address=%s", self._address)
        self._signal(LinkDown(self._address or "", reason="link lost"))

    def _require_client(self) -> BleakClient:
        client = self._client
        if client is None:
            raise ClientUnavailableError(self._address)
        return client

    @staticmethod
    def _resolve(client: BleakClient, service: str, characteristic: str) -> Any:
        # Characteristic UUIDs may repeat across services; prefer the one in `service`.
        svc = client.services.get_service(service)
        if svc is not None:
            char = svc.get_characteristic(characteristic)
            if char is not None:
                return char
        return characteristic

    def _submit(self, coro: Coroutine[Any, Any, None]) -> Optional[Future]:
        worker = self._worker
        if worker is None or not worker.is_alive() or worker.loop.is_closed():
            coro.close()
            return None

        try:
            fut = asyncio.run_coroutine_threadsafe(coro, worker.loop)
        except RuntimeError as e:
            coro.close()
            self._log.warning("BLE_SUBMIT_FAILED err=%s", e)
            return None

        fut.add_done_callback(self._log_failure)
        return fut

    def _log_failure(self, fut: Future) -> None:
        if fut.cancelled():
            return
        exc = fut.exception()
        if exc is not None:
            self._log.error("BLE_TASK_FAILED err=%r", exc)
