"""Block table and node table stored in the decompressed blocks-info section."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Tuple

from .bits import ByteReader, FieldRecipe, bswap32, to_signed
from .errors import InvalidDataFormat
from .header import HEADER_FIELD_MASK64, NONCE32, SIZE32

LOGGER = logging.getLogger(__name__)

BLOCK_COUNT_XOR = 0x8A7BF723
BLOCK_COUNT_MASK = 0x91CE0A4F
NODE_COUNT_XOR = 0x5DE50A6B
NODE_COUNT_MASK = 0xE4C1D9F2

BLOCK_FLAGS_XOR = 0x9CD6
BLOCK_FLAGS_MASK = 0x523F
NODE_A_XOR = 0x8E06A9F8
NODE_FLAGS_MASK = 0xF13927C4
NAME_XOR = 0x97
MAX_NAME_LENGTH = 64
MAX_COUNT = 0x7FFFFFFF

BLOCK_RECORD_SIZE = 10
MIN_NODE_RECORD_SIZE = 21

BLOCK_COUNT = FieldRecipe(half=16, rotate=18, mask=BLOCK_COUNT_MASK)
NODE_COUNT = FieldRecipe(half=16, rotate=18, mask=NODE_COUNT_MASK)
BLOCK_FLAGS = FieldRecipe(half=8, rotate=14, mask=BLOCK_FLAGS_MASK, left=True)
NODE_FLAGS = FieldRecipe(half=16, rotate=18, mask=NODE_FLAGS_MASK)
NODE_RANGE = FieldRecipe(half=32, rotate=14, mask=HEADER_FIELD_MASK64, nonce=NONCE32, left=True)


@dataclass(frozen=True)
class BlockDescriptor:
    compressed_size: int
    uncompressed_size: int
    flags: int

    @property
    def compression_type(self) -> int:
        return self.flags & 0x3F


@dataclass(frozen=True)
class NodeDescriptor:
    """One named byte range inside the assembled block stream."""

    offset: int
    size: int
    flags: int
    path: str

    def fits(self, total: int) -> bool:
        return self.offset >= 0 and self.size > 0 and self.offset + self.size <= total


def _read_count(reader: ByteReader, xor: int, recipe: FieldRecipe, label: str) -> int:
    raw = bswap32(reader.read_u32le() ^ xor)
    count = recipe.descramble(raw >> 16, raw & 0xFFFF)
    if count > MAX_COUNT:
        raise InvalidDataFormat(f"Invalid {label} count: {count}")
    return count


def read_blocks(reader: ByteReader) -> List[BlockDescriptor]:
    count = _read_count(reader, BLOCK_COUNT_XOR, BLOCK_COUNT, "blocks")
    if count * BLOCK_RECORD_SIZE > reader.remaining:
        raise InvalidDataFormat(
            f"Blocks count {count} does not fit in {reader.remaining} remaining bytes"
        )
    LOGGER.debug("Reading %d block descriptor(s)", count)

    blocks: List[BlockDescriptor] = []
    for _ in range(count):
        a = reader.read_u16be()
        b = reader.read_u16be()
        c = reader.read_u16be()
        enc_flags = reader.read_u16be() ^ BLOCK_FLAGS_XOR
        d = reader.read_u16be()

        flags = c ^ BLOCK_FLAGS.descramble(enc_flags >> 8, enc_flags & 0xFF)
        blocks.append(
            BlockDescriptor(
                compressed_size=to_signed(SIZE32.descramble(b, d), 32),
                uncompressed_size=to_signed(SIZE32.descramble(a, c), 32),
                flags=flags & 0xFFFF,
            )
        )
    return blocks


def _read_name(reader: ByteReader) -> str:
    raw = bytearray()
    while reader.remaining > 0 and len(raw) < MAX_NAME_LENGTH:
        value = reader.read_byte()
        if value == 0:
            break
        raw.append(value)
    for i in range(len(raw)):
        raw[i] ^= (i ^ NAME_XOR) & 0xFF
    return raw.decode("ascii", errors="replace").replace("\ufffd", "?")


def read_nodes(reader: ByteReader) -> List[NodeDescriptor]:
    count = _read_count(reader, NODE_COUNT_XOR, NODE_COUNT, "nodes")
    if count * MIN_NODE_RECORD_SIZE > reader.remaining:
        raise InvalidDataFormat(
            f"Nodes count {count} does not fit in {reader.remaining} remaining bytes"
        )
    LOGGER.debug("Reading %d node descriptor(s)", count)

    nodes: List[NodeDescriptor] = []
    for _ in range(count):
        a = reader.read_u32be() ^ NODE_A_XOR
        b = reader.read_u32be()
        c = reader.read_u32be()
        d = reader.read_u32be()
        path = _read_name(reader)
        e = reader.read_u32be()

        nodes.append(
            NodeDescriptor(
                offset=to_signed(NODE_RANGE.descramble(d, c), 64),
                size=to_signed(NODE_RANGE.descramble(b, e), 64),
                flags=NODE_FLAGS.descramble(a >> 16, a & 0xFFFF) ^ b,
                path=path,
            )
        )
    return nodes


def read_directory(blocks_info: bytes) -> Tuple[List[BlockDescriptor], List[NodeDescriptor]]:
    reader = ByteReader(blocks_info, InvalidDataFormat)
    blocks = read_blocks(reader)
    nodes = read_nodes(reader)
    if reader.remaining:
        LOGGER.debug("%d trailing byte(s) after directory", reader.remaining)
    return blocks, nodes
