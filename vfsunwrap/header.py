"""Validation and descrambling of the container header."""
from __future__ import annotations

import logging
import struct
from dataclasses import dataclass

from .bits import FieldRecipe, rotr, to_signed
from .errors import CorruptBlock, InvalidContainer

LOGGER = logging.getLogger(__name__)

HEADER_MASK = 0x4A92F0CD
HEADER_CHECK_MASK = 0xD8B1E637
HEADER_FIELD_MASK32 = 0xF74324EE
HEADER_FIELD_MASK64 = 0xA4F1A11747816520
HEADER_FLAGS_MASK = 0xA7F49310
NONCE16 = 0xA121
NONCE32 = 0xDAD76848

FLAG_COMPRESSION_MASK = 0x3F
FLAG_BLOCKS_INFO_AT_END = 0x80
FLAG_BLOCKS_INFO_PADDING = 0x200

# a, b, cbs2, flags2, encFlags, size2, flags1, ubs1, unused, ubs2, size1, cbs1, unused
HEADER_STRUCT = struct.Struct(">IIHIIIIHIHIHB")
CHECK_SIZE = 8
EXTENDED_ENC_FLAGS = 7

SIZE32 = FieldRecipe(half=16, rotate=18, mask=HEADER_FIELD_MASK32, nonce=NONCE16)
SIZE64 = FieldRecipe(half=32, rotate=18, mask=HEADER_FIELD_MASK64, nonce=NONCE32)


@dataclass(frozen=True)
class ContainerHeader:
    size: int
    flags: int
    enc_flags: int
    compressed_blocks_info_size: int
    uncompressed_blocks_info_size: int

    @property
    def blocks_info_compression(self) -> int:
        return self.flags & FLAG_COMPRESSION_MASK

    @property
    def blocks_info_at_end(self) -> bool:
        return bool(self.flags & FLAG_BLOCKS_INFO_AT_END)

    @property
    def blocks_info_offset(self) -> int:
        return 48 if self.enc_flags >= EXTENDED_ENC_FLAGS else 40

    @property
    def data_offset(self) -> int:
        """Start of the payload region that follows the blocks-info section."""
        size = self.compressed_blocks_info_size
        if self.flags & FLAG_BLOCKS_INFO_PADDING:
            size = (size + 15) & ~15
        return self.blocks_info_offset + size


def expected_check(a: int) -> int:
    x = a ^ HEADER_MASK
    c1 = (4 * x) & 0xFFFF0000
    c2 = rotr(x, 14, 32)
    return (c1 ^ c2 ^ HEADER_CHECK_MASK) & 0xFFFFFFFF


def validate_checksum(data: bytes) -> None:
    if len(data) < CHECK_SIZE:
        raise InvalidContainer("Input too small to contain a VFS header")
    a, b = struct.unpack_from(">II", data, 0)
    if b != expected_check(a):
        raise InvalidContainer("Input is not a valid VFS-encrypted bundle header")


def read_header(data: bytes) -> ContainerHeader:
    validate_checksum(data)
    if len(data) < HEADER_STRUCT.size:
        raise CorruptBlock(
            f"Truncated header: {len(data)} bytes, need {HEADER_STRUCT.size}"
        )
    (
        _a,
        _b,
        cbs2,
        flags2,
        enc_flags,
        size2,
        flags1,
        ubs1,
        _unused,
        ubs2,
        size1,
        cbs1,
        _pad,
    ) = HEADER_STRUCT.unpack_from(data, 0)

    header = ContainerHeader(
        size=SIZE64.descramble(size1, size2),
        flags=flags1 ^ flags2 ^ HEADER_FLAGS_MASK,
        enc_flags=enc_flags ^ flags2,
        compressed_blocks_info_size=to_signed(SIZE32.descramble(cbs1, cbs2), 32),
        uncompressed_blocks_info_size=to_signed(SIZE32.descramble(ubs1, ubs2), 32),
    )
    LOGGER.debug(
        "Header size=%d flags=0x%08X enc_flags=0x%08X blocks_info=%d/%d",
        header.size,
        header.flags,
        header.enc_flags,
        header.compressed_blocks_info_size,
        header.uncompressed_blocks_info_size,
    )
    return header
