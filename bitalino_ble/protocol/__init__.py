# protocol/__init__.py

from .defs import (
    COMMANDS_CHARACTERISTIC,
    EXCHANGE_DATA_SERVICE,
    FRAMES_CHARACTERISTIC,
    CommandCode,
    DigitalPort,
    GattProfile,
)
from .frames import (
    BiosignalFrame,
    DecodedPayload,
    FrameInterpreter,
    GenericPayload,
    interpret,
)

__all__ = [
    "EXCHANGE_DATA_SERVICE", "COMMANDS_CHARACTERISTIC", "FRAMES_CHARACTERISTIC",
    "CommandCode", "DigitalPort", "GattProfile",
    "FrameInterpreter", "DecodedPayload", "BiosignalFrame", "GenericPayload", "interpret"]
