from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Tuple, Union


@dataclass(frozen=True)
class LinkUp:
    address: str


@dataclass(frozen=True)
class LinkDown:
    address: str
    reason: Optional[str] = None


@dataclass(frozen=True)
class ServicesResolved:
    ok: bool
    services: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class CharacteristicRead:
    characteristic: str
    data: bytes
    ok: bool = True


@dataclass(frozen=True)
class CharacteristicChanged:
    characteristic: str
    data: bytes


TransportSignal = Union[LinkUp, LinkDown, ServicesResolved, CharacteristicRead, CharacteristicChanged]
SignalCallback = Callable[[TransportSignal], None]


class Transport(ABC):
    """
    Abstract BLE GATT transport.

    Contract:
      - every request returns immediately; True means "accepted for
        processing", never "completed".
      - outcomes arrive later as TransportSignal values passed to on_event,
        from the transport's own thread.
      - close() releases the connection handle and must tolerate repeated calls.
    """

    on_event: Optional[SignalCallback] = None

    @abstractmethod
    def initialize(self) -> bool: ...

    @abstractmethod
    def connect(self, address: str) -> bool: ...

    @abstractmethod
    def disconnect(self) -> None: ...

    @abstractmethod
    def close(self) -> None: ...

    @abstractmethod
    def discover_services(self) -> bool: ...

    @abstractmethod
    def write_characteristic(self, service: str, characteristic: str, payload: bytes) -> bool: ...

    @abstractmethod
    def read_characteristic(self, service: str, characteristic: str) -> bool: ...

    @abstractmethod
    def set_notification(self, characteristic: str, enabled: bool) -> bool: ...

    def _signal(self, signal: TransportSignal) -> None:
        cb = self.on_event
        if cb is not None:
            cb(signal)

    def __enter__(self) -> "Transport":
        self.initialize()
        return self

    def __exit__(self, exc_type: type | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        self.close()
