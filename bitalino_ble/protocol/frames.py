# bitalino_ble/protocol/frames.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Tuple, Union

from .defs import GattProfile


def hex_string(data: bytes) -> str:
    """Two-digit upper-case hex per byte, each followed by a space."""
    return "".join(f"{b:02X} " for b in data)


@dataclass(frozen=True)
class GenericPayload:
    """Fallback rendering for characteristics without a dedicated decoder."""
    text: str
    hex: str

    @property
    def display(self) -> str:
        return f"{self.text}\n{self.hex}"


@dataclass(frozen=True)
class BiosignalFrame:
    """
    One notification from the frames characteristic.

    `samples` stays None until a decoder that knows the on-air frame layout
    is plugged in.
    """
    raw: bytes
    samples: Optional[Tuple[int, ...]] = None

    @property
    def display(self) -> str:
        if self.samples is None:
            return f"frame[{len(self.raw)}]: {hex_string(self.raw)}"
        return f"frame[{len(self.raw)}]: " + ", ".join(str(s) for s in self.samples)


@dataclass(frozen=True)
class DecodedPayload:
    characteristic: str
    raw: bytes
    value: Union[BiosignalFrame, GenericPayload, None] = None

    @property
    def is_frame(self) -> bool:
        return isinstance(self.value, BiosignalFrame)

    @property
    def extra(self) -> Optional[str]:
        """Text suitable for presentation; None for empty payloads."""
        return self.value.display if self.value is not None else None


class FrameDecoder(Protocol):
    def decode(self, data: bytes) -> BiosignalFrame: ...


class PlaceholderFrameDecoder:
    """
    Keeps the raw bytes without interpreting them.

    The frame layout of the BLE firmware is not pinned down; replace this
    with a real decoder via FrameInterpreter(frames_decoder=...).
    """

    def decode(self, data: bytes) -> BiosignalFrame:
        return BiosignalFrame(raw=bytes(data))


class FrameInterpreter:
    """
    Stateless mapping (characteristic, bytes) -> DecodedPayload.
    """

    def __init__(
        self,
        profile: Optional[GattProfile] = None,
        *,
        frames_decoder: Optional[FrameDecoder] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._profile = profile or GattProfile()
        self._frames_decoder = frames_decoder or PlaceholderFrameDecoder()
        self._log = logger or logging.getLogger(__name__)

    def interpret(self, characteristic: str, data: bytes) -> DecodedPayload:
        characteristic = characteristic.lower()
        data = bytes(data or b"")

        if not data:
            return DecodedPayload(characteristic=characteristic, raw=data)

        if self._profile.is_frames(characteristic):
            try:
                frame = self._frames_decoder.decode(data)
                return DecodedPayload(characteristic=characteristic, raw=data, value=frame)
            except Exception as e:
                self._log.warning("FRAME_DECODE_FAILED len=%d err=%s", len(data), e)

        return DecodedPayload(
            characteristic=characteristic,
            raw=data,
            value=GenericPayload(
                text=data.decode("utf-8", errors="replace"),
                hex=hex_string(data),
            ),
        )


_default = FrameInterpreter()


def interpret(characteristic: str, data: bytes) -> DecodedPayload:
    """Interpret with the default profile and the placeholder frame decoder."""
    return _default.interpret(characteristic, data)
