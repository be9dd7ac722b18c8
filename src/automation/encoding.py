"""Wire encoding for the Luma3DS input-redirection UDP packet.

The packet is five little-endian uint32 words (20 bytes):

  0  pad register, active-low: 0xFFF with pressed bits cleared
  4  touch as (y << 16) | x, or 0x02000000 when not touching
  8  circle pad as (cy << 12) | cx, 12 bits per axis centred on 0x800
  12 c-stick as (csy << 24) | (csx << 16) | 0x81, 8 bits per axis centred on 0x80
  16 interface buttons (HOME / POWER / POWER_LONG)
"""
from __future__ import annotations

import struct

from src.models import AnalogStick, InputCommand

PACKET_SIZE = 20
PAD_MASK = 0xFFF
TOUCH_NONE = 0x02000000
CIRCLE_PAD_SCALE = 0x5D0
CIRCLE_PAD_CENTER = 0x800
C_STICK_SCALE = 0x7F
C_STICK_CENTER = 0x80
C_STICK_MARKER = 0x0081

_PACKET = struct.Struct("<5I")


def _circle_pad_word(stick: AnalogStick) -> int:
    cx = (int(stick.x * CIRCLE_PAD_SCALE) + CIRCLE_PAD_CENTER) & 0xFFF
    cy = (int(stick.y * CIRCLE_PAD_SCALE) + CIRCLE_PAD_CENTER) & 0xFFF
    return (cy << 12) | cx


def _c_stick_word(stick: AnalogStick) -> int:
    csx = (int(stick.x * C_STICK_SCALE) + C_STICK_CENTER) & 0xFF
    csy = (int(stick.y * C_STICK_SCALE) + C_STICK_CENTER) & 0xFF
    return (csy << 24) | (csx << 16) | C_STICK_MARKER


def encode_packet(command: InputCommand) -> bytes:
    hid = PAD_MASK & ~(command.buttons & PAD_MASK)
    if command.touch.active:
        touch = ((command.touch.y & 0xFFFF) << 16) | (command.touch.x & 0xFFFF)
    else:
        touch = TOUCH_NONE
    return _PACKET.pack(
        hid,
        touch,
        _circle_pad_word(command.circle_pad),
        _c_stick_word(command.c_stick),
        command.interface_buttons & 0xFFFFFFFF,
    )


def decode_words(packet: bytes) -> tuple[int, int, int, int, int]:
    """Split a packet back into its five raw words (for logging and tests)."""
    if len(packet) != PACKET_SIZE:
        raise ValueError(f"expected {PACKET_SIZE} bytes, got {len(packet)}")
    return _PACKET.unpack(packet)


RELEASE_PACKET = encode_packet(InputCommand())
