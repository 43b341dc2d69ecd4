# bitalino_ble/transport/_internal/loop_worker.py
from __future__ import annotations

import asyncio
import threading


class LoopWorker(threading.Thread):
    """Thread that owns the asyncio loop all BLE coroutines run on."""

    def __init__(self) -> None:
        super().__init__(daemon=True, name="bitalino-ble-loop")
        self.loop = asyncio.new_event_loop()
        self._ready = threading.Event()

    def run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.call_soon(self._ready.set)
        try:
            self.loop.run_forever()
        finally:
            tasks = asyncio.all_tasks(self.loop)
            for t in tasks:
                t.cancel()
            if tasks:
                self.loop.run_until_complete(asyncio.gather(*tasks, return_exceptions=True))
            self.loop.close()

    def wait_ready(self, timeout: float | None = None) -> bool:
        return self._ready.wait(timeout)

    def stop(self) -> None:
        if not self.loop.is_closed():
            self.loop.call_soon_threadsafe(self.loop.stop)
