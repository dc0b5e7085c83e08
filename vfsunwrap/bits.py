"""Bit helpers and the table-driven field descrambler shared by header and directory."""
from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Type

from .errors import DecodeError

U16 = struct.Struct(">H")
U32 = struct.Struct(">I")
U32LE = struct.Struct("<I")


def rotl(value: int, count: int, width: int) -> int:
    mask = (1 << width) - 1
    count %= width
    value &= mask
    return ((value << count) | (value >> (width - count))) & mask


def rotr(value: int, count: int, width: int) -> int:
    mask = (1 << width) - 1
    count %= width
    value &= mask
    return ((value >> count) | (value << (width - count))) & mask


def bswap32(value: int) -> int:
    return int.from_bytes((value & 0xFFFFFFFF).to_bytes(4, "little"), "big")


def to_signed(value: int, width: int) -> int:
    if value & (1 << (width - 1)):
        return value - (1 << width)
    return value


@dataclass(frozen=True)
class FieldRecipe:
    """How one scrambled integer is stored.

    The stored form is two words ``hi`` and ``lo`` of ``half`` bits each. The
    real value is ``rot(((hi ^ lo ^ nonce) << half) | lo) ^ mask`` where the
    rotation acts on ``2 * half`` bits.
    """

    half: int
    rotate: int
    mask: int
    nonce: int = 0
    left: bool = False

    @property
    def width(self) -> int:
        return self.half * 2

    def descramble(self, hi: int, lo: int) -> int:
        half_mask = (1 << self.half) - 1
        lo &= half_mask
        word = (((hi ^ lo ^ self.nonce) & half_mask) << self.half) | lo
        if self.left:
            word = rotl(word, self.rotate, self.width)
        else:
            word = rotr(word, self.rotate, self.width)
        return word ^ self.mask


class ByteReader:
    """Sequential reader over an in-memory buffer.

    Reads past the end raise ``error`` instead of returning short data.
    """

    def __init__(self, data: bytes, error: Type[DecodeError], offset: int = 0) -> None:
        self.data = data
        self.offset = offset
        self.error = error

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def read_bytes(self, count: int) -> bytes:
        if count < 0 or self.offset + count > len(self.data):
            raise self.error(
                f"Unexpected end of data: wanted {count} bytes at offset {self.offset}, "
                f"{max(self.remaining, 0)} available"
            )
        chunk = self.data[self.offset:self.offset + count]
        self.offset += count
        return bytes(chunk)

    def read_byte(self) -> int:
        return self.read_bytes(1)[0]

    def read_u16be(self) -> int:
        return U16.unpack(self.read_bytes(2))[0]

    def read_u32be(self) -> int:
        return U32.unpack(self.read_bytes(4))[0]

    def read_u32le(self) -> int:
        return U32LE.unpack(self.read_bytes(4))[0]
