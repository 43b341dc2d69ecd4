# bitalino_ble/runtime/state.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Tuple


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class DeviceIdentity:
    """
    Target device of a session. Fixed once connect() is issued.
    """
    address: str
    name: str = "BITalino"


class ServiceCatalogue:
    """
    Read-only snapshot of discovered services -> characteristic UUIDs.
    """

    def __init__(self, services: Mapping[str, Iterable[str]]):
        self._services: Mapping[str, Tuple[str, ...]] = MappingProxyType(
            {s.lower(): tuple(c.lower() for c in chars) for s, chars in services.items()}
        )

    @property
    def services(self) -> Mapping[str, Tuple[str, ...]]:
        return self._services

    def has_service(self, service: str) -> bool:
        return service.lower() in self._services

    def has_characteristic(self, characteristic: str, service: Optional[str] = None) -> bool:
        return self.service_of(characteristic, within=service) is not None

    def service_of(self, characteristic: str, *, within: Optional[str] = None) -> Optional[str]:
        """Return the service holding `characteristic`, optionally restricted to `within`."""
        characteristic = characteristic.lower()
        for svc, chars in self._services.items():
            if within is not None and svc != within.lower():
                continue
            if characteristic in chars:
                return svc
        return None

    def __len__(self) -> int:
        return len(self._services)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ServiceCatalogue):
            return NotImplemented
        return dict(self._services) == dict(other._services)

    def __repr__(self) -> str:
        return f"ServiceCatalogue({dict(self._services)!r})"


@dataclass(frozen=True)
class SessionStatus:
    """
    A snapshot of the session, safe to share across threads.
    """
    state: ConnectionState
    acquiring: bool
    identity: Optional[DeviceIdentity] = None
    catalogue: Optional[ServiceCatalogue] = None

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED
