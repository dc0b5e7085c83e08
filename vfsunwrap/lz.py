"""Byte-oriented LZ decompressors used by the container.

Both variants share the LZ4 sequence structure (token, literal run, 2-byte
distance, match run, 0xFF-extended lengths, minimum match 4). They differ only
in how the token nibbles are laid out and in the byte order of the distance.
"""
from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

import lz4.block as lz4_block

from .errors import CorruptBlock, InvalidDataFormat

LOGGER = logging.getLogger(__name__)

MIN_MATCH = 4
LENGTH_EXTENDED = 0x0F
MAX_EXPANSION = 255
EXPANSION_SLACK = 32


def check_expansion(compressed_size: int, expected_size: int) -> None:
    if expected_size < 0:
        raise InvalidDataFormat(f"Negative uncompressed size: {expected_size}")
    limit = compressed_size * MAX_EXPANSION + EXPANSION_SLACK
    if expected_size > limit:
        raise CorruptBlock(
            f"Declared size {expected_size} cannot come from {compressed_size} compressed bytes"
        )


class LzDecompressor:
    """Common sequence loop; subclasses define the token layout and distance order."""

    name = "lz"

    def split_token(self, token: int) -> Tuple[int, int]:
        raise NotImplementedError

    def read_distance(self, data: bytes, pos: int) -> int:
        raise NotImplementedError

    def _read_length(self, length: int, data: bytes, pos: int) -> Tuple[int, int]:
        if length != LENGTH_EXTENDED:
            return length, pos
        while True:
            if pos >= len(data):
                raise CorruptBlock(f"Unexpected end while reading {self.name} length")
            extra = data[pos]
            pos += 1
            length += extra
            if extra != 0xFF:
                return length, pos

    def decompress(self, data: bytes, expected_size: int) -> bytes:
        check_expansion(len(data), expected_size)
        return self._decompress(data, expected_size)

    def _decompress(self, data: bytes, expected_size: int) -> bytes:
        out = bytearray(expected_size)
        src_len = len(data)
        src = 0
        dst = 0

        while src < src_len and dst < expected_size:
            literal_count, match_count = self.split_token(data[src])
            src += 1

            literal_count, src = self._read_length(literal_count, data, src)
            if src + literal_count > src_len or dst + literal_count > expected_size:
                raise CorruptBlock(f"Invalid {self.name} literal block range")
            out[dst:dst + literal_count] = data[src:src + literal_count]
            src += literal_count
            dst += literal_count

            if src >= src_len:
                break
            if src + 1 >= src_len:
                raise CorruptBlock(f"Invalid {self.name} back-reference offset")

            distance = self.read_distance(data, src)
            src += 2
            match_count, src = self._read_length(match_count, data, src)
            match_count += MIN_MATCH

            start = dst - distance
            if start < 0:
                raise CorruptBlock(f"Invalid {self.name} back-reference position")

            if match_count <= distance:
                if dst + match_count > expected_size:
                    raise CorruptBlock(f"Invalid {self.name} output range")
                out[dst:dst + match_count] = out[start:start + match_count]
                dst += match_count
            else:
                # Overlapping copy: bytes written this sequence feed the rest of it.
                if dst + match_count > expected_size:
                    raise CorruptBlock(f"Invalid {self.name} overlapping copy range")
                for _ in range(match_count):
                    out[dst] = out[start]
                    dst += 1
                    start += 1

        if dst != expected_size:
            raise CorruptBlock(
                f"{self.name} decompress size mismatch, expected={expected_size}, actual={dst}"
            )
        return bytes(out)


class Lz4Decompressor(LzDecompressor):
    """Standard LZ4 block layout: high nibble literals, little-endian distance."""

    name = "LZ4"

    def split_token(self, token: int) -> Tuple[int, int]:
        return (token >> 4) & 0x0F, token & 0x0F

    def read_distance(self, data: bytes, pos: int) -> int:
        return data[pos] | (data[pos + 1] << 8)

    def decompress(self, data: bytes, expected_size: int) -> bytes:
        check_expansion(len(data), expected_size)
        if not data or expected_size == 0:
            return self._decompress(data, expected_size)
        try:
            result = lz4_block.decompress(bytes(data), uncompressed_size=expected_size)
        except lz4_block.LZ4BlockError as exc:
            LOGGER.debug("lz4 rejected block (%s); using tolerant decoder", exc)
        else:
            if len(result) == expected_size:
                return result
            LOGGER.debug(
                "lz4 produced %d bytes, expected %d; using tolerant decoder",
                len(result),
                expected_size,
            )
        return self._decompress(data, expected_size)


class Lz4InvDecompressor(LzDecompressor):
    """Interleaved token bits and big-endian distance.

    Literal length bits sit at token bits 0-1 and 4-5, match length bits at
    2-3 and 6-7.
    """

    name = "LZ4Inv"

    def split_token(self, token: int) -> Tuple[int, int]:
        literal = token & 0x33
        match = (token & 0xCC) >> 2
        return (literal & 0x03) | (literal >> 2), (match & 0x03) | (match >> 2)

    def read_distance(self, data: bytes, pos: int) -> int:
        return (data[pos] << 8) | data[pos + 1]


LZ4 = Lz4Decompressor()
LZ4_INV = Lz4InvDecompressor()

COMPRESSION_NONE = 0
COMPRESSION_LZ4_INV = 5

BLOCK_DECOMPRESSORS: Dict[int, Optional[LzDecompressor]] = {
    COMPRESSION_NONE: None,
    COMPRESSION_LZ4_INV: LZ4_INV,
}


def decompressor_for(compression_type: int) -> Optional[LzDecompressor]:
    """Strategy for a payload block; ``None`` means the block is stored."""
    try:
        return BLOCK_DECOMPRESSORS[compression_type]
    except KeyError:
        raise InvalidDataFormat(
            f"Unsupported block compression type: {compression_type}"
        ) from None
