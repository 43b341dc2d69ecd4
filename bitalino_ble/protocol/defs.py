# bitalino_ble/protocol/defs.py
from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Mapping

# BITalino (r)evolution BLE UUIDs
EXCHANGE_DATA_SERVICE = "c566488a-0882-4e1b-a6d0-0b717e652234"
COMMANDS_CHARACTERISTIC = "4051eb11-bf0a-4c74-8730-a48f4193fcea"
FRAMES_CHARACTERISTIC = "40fdba6b-672e-47c4-808a-e529adff3633"


class CommandCode(IntEnum):
    """Single-byte commands written to the commands characteristic."""
    STOP = 0x00
    START = 0x02

    def encode(self) -> bytes:
        # one signed byte on the wire
        return int(self).to_bytes(1, "little", signed=True)


class DigitalPort(Enum):
    ONE = 1
    TWO = 2


def normalize_uuid(value: Any) -> str:
    """
    Canonical lower-case 128-bit UUID string.

    Raises ValueError for anything that is not a UUID.
    """
    return str(uuid.UUID(str(value).strip()))


@dataclass(frozen=True)
class GattProfile:
    """
    UUIDs the session relies on. Defaults match the device firmware;
    overrides exist for firmware variants and test rigs.
    """
    service_uuid: str = EXCHANGE_DATA_SERVICE
    commands_uuid: str = COMMANDS_CHARACTERISTIC
    frames_uuid: str = FRAMES_CHARACTERISTIC

    def __post_init__(self) -> None:
        for name in ("service_uuid", "commands_uuid", "frames_uuid"):
            object.__setattr__(self, name, normalize_uuid(getattr(self, name)))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GattProfile":
        known = ("service_uuid", "commands_uuid", "frames_uuid")
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ValueError(f"Unknown profile keys: {', '.join(unknown)}")

        values = {k: data[k] for k in known if data.get(k) is not None}
        return cls(**values)

    def is_frames(self, characteristic: str) -> bool:
        return characteristic.lower() == self.frames_uuid
