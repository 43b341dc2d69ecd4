from __future__ import annotations

import logging

from bitalino_ble.protocol.defs import COMMANDS_CHARACTERISTIC, FRAMES_CHARACTERISTIC, GattProfile
from bitalino_ble.protocol.frames import (
    BiosignalFrame,
    FrameInterpreter,
    GenericPayload,
    PlaceholderFrameDecoder,
    hex_string,
    interpret,
)

MANUFACTURER_NAME = "00002a29-0000-1000-8000-00805f9b34fb"


def test_hex_string_two_digit_uppercase_with_trailing_space():
    assert hex_string(bytes([0x41, 0x00, 0xFF])) == "41 00 FF "
    assert hex_string(b"") == ""


def test_generic_payload_has_text_and_hex():
    p = interpret(MANUFACTURER_NAME, bytes([0x41, 0x00, 0xFF]))

    assert isinstance(p.value, GenericPayload)
    assert p.value.hex == "41 00 FF "
    assert p.value.text == "A\x00\ufffd"
    assert p.extra == "A\x00\ufffd\n41 00 FF "
    assert not p.is_frame


def test_empty_payload_has_no_extra():
    p = interpret(MANUFACTURER_NAME, b"")
    assert p.value is None
    assert p.extra is None

    f = interpret(FRAMES_CHARACTERISTIC, b"")
    assert f.extra is None


def test_decoding_is_pure():
    data = bytes(range(16))
    assert interpret(FRAMES_CHARACTERISTIC, data) == interpret(FRAMES_CHARACTERISTIC, data)
    assert interpret(MANUFACTURER_NAME, data) == interpret(MANUFACTURER_NAME, data)


def test_frames_characteristic_uses_placeholder_decoder():
    p = interpret(FRAMES_CHARACTERISTIC.upper(), b"\x10\x20\x30")

    assert p.characteristic == FRAMES_CHARACTERISTIC
    assert p.is_frame
    assert p.value == BiosignalFrame(raw=b"\x10\x20\x30")
    assert p.value.samples is None
    assert p.extra == "frame[3]: 10 20 30 "


def test_custom_frame_decoder_is_used():
    class TwoByteDecoder:
        def decode(self, data: bytes) -> BiosignalFrame:
            samples = tuple(int.from_bytes(data[i:i + 2], "little") for i in range(0, len(data), 2))
            return BiosignalFrame(raw=data, samples=samples)

    fi = FrameInterpreter(frames_decoder=TwoByteDecoder())
    p = fi.interpret(FRAMES_CHARACTERISTIC, b"\x01\x00\x02\x00")

    assert p.value.samples == (1, 2)
    assert p.extra == "frame[4]: 1, 2"


def test_frame_decoder_failure_falls_back_to_generic(caplog):
    class Broken:
        def decode(self, data: bytes) -> BiosignalFrame:
            raise ValueError("bad crc")

    fi = FrameInterpreter(frames_decoder=Broken(), logger=logging.getLogger("test"))
    with caplog.at_level(logging.WARNING, logger="test"):
        p = fi.interpret(FRAMES_CHARACTERISTIC, b"\xAA")

    assert isinstance(p.value, GenericPayload)
    assert p.value.hex == "AA "
    assert any("FRAME_DECODE_FAILED" in r.message for r in caplog.records)


def test_profile_override_changes_frames_characteristic():
    profile = GattProfile(frames_uuid=COMMANDS_CHARACTERISTIC)
    fi = FrameInterpreter(profile)

    assert fi.interpret(COMMANDS_CHARACTERISTIC, b"\x01").is_frame
    assert not fi.interpret(FRAMES_CHARACTERISTIC, b"\x01").is_frame


def test_placeholder_copies_input():
    buf = bytearray(b"\x01\x02")
    frame = PlaceholderFrameDecoder().decode(buf)
    buf[0] = 0xFF
    assert frame.raw == b"\x01\x02"


def test_upper_case_profile_still_routes_frames():
    fi = FrameInterpreter(GattProfile(frames_uuid=FRAMES_CHARACTERISTIC.upper()))
    assert fi.interpret(FRAMES_CHARACTERISTIC, b"\x01").is_frame
