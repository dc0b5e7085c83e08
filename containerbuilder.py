"""Test-only writer that produces containers the decoder can read.

Every scrambled field is written by inverting its recipe. Encryption reuses
the decoder's cipher, since applying it twice is the identity.
"""
from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import lz4.block as lz4_block

from vfsunwrap.bits import FieldRecipe, bswap32, rotl, rotr
from vfsunwrap.cipher import decrypt_in_place
from vfsunwrap.directory import (
    BLOCK_COUNT,
    BLOCK_COUNT_XOR,
    BLOCK_FLAGS,
    BLOCK_FLAGS_XOR,
    NAME_XOR,
    NODE_A_XOR,
    NODE_COUNT,
    NODE_COUNT_XOR,
    NODE_FLAGS,
    NODE_RANGE,
)
from vfsunwrap.header import (
    FLAG_BLOCKS_INFO_PADDING,
    HEADER_FLAGS_MASK,
    HEADER_STRUCT,
    SIZE32,
    SIZE64,
    expected_check,
)

CHECK_WORD = 0x1234ABCD
FLAGS2 = 0x0BADF00D

PRIMARY_PAYLOAD = (
    b"UnityFS\x00" + b"5.x.x\x00" + b"2021.3.34f1\x00" + bytes(range(256)) * 6 + b"CAB-data" * 120
)
RESOURCE_PAYLOAD = b"resS" + bytes(i * 7 & 0xFF for i in range(900))
STORED_PAYLOAD = b"stored-block:" + b"\x01\x02\x03\x04" * 40


def scramble(recipe: FieldRecipe, value: int) -> Tuple[int, int]:
    """Return ``(hi, lo)`` such that ``recipe.descramble(hi, lo) == value``."""
    width = recipe.width
    half_mask = (1 << recipe.half) - 1
    word = (value ^ recipe.mask) & ((1 << width) - 1)
    if recipe.left:
        word = rotr(word, recipe.rotate, width)
    else:
        word = rotl(word, recipe.rotate, width)
    lo = word & half_mask
    hi = ((word >> recipe.half) ^ lo ^ recipe.nonce) & half_mask
    return hi, lo


def encrypt(data: bytes) -> bytes:
    buffer = bytearray(data)
    decrypt_in_place(buffer)
    return bytes(buffer)


def inv_token(literal: int, match: int) -> int:
    return (literal & 3) | ((literal >> 2) << 4) | ((match & 3) << 2) | ((match >> 2) << 6)


def _skip_length(stream: bytes, pos: int, nibble: int) -> Tuple[int, int]:
    length = nibble
    if nibble == 15:
        while True:
            extra = stream[pos]
            pos += 1
            length += extra
            if extra != 0xFF:
                break
    return length, pos


def to_lz4inv(stream: bytes) -> bytes:
    """Rewrite an LZ4 block stream into the interleaved-token, big-endian variant."""
    out = bytearray()
    pos = 0
    while pos < len(stream):
        token = stream[pos]
        pos += 1
        literal_nibble, match_nibble = token >> 4, token & 0x0F
        out.append(inv_token(literal_nibble, match_nibble))
        start = pos
        literal, pos = _skip_length(stream, pos, literal_nibble)
        out += stream[start:pos + literal]
        pos += literal
        if pos >= len(stream):
            break
        out += bytes((stream[pos + 1], stream[pos]))
        pos += 2
        start = pos
        _, pos = _skip_length(stream, pos, match_nibble)
        out += stream[start:pos]
    return bytes(out)


def lz4_compress(data: bytes) -> bytes:
    return lz4_block.compress(data, store_size=False)


def encode_count(value: int, xor: int, recipe: FieldRecipe) -> bytes:
    hi, lo = scramble(recipe, value)
    return struct.pack("<I", bswap32((hi << 16) | lo) ^ xor)


def encode_block(compressed_size: int, uncompressed_size: int, flags: int) -> bytes:
    a, c = scramble(SIZE32, uncompressed_size & 0xFFFFFFFF)
    b, d = scramble(SIZE32, compressed_size & 0xFFFFFFFF)
    hi, lo = scramble(BLOCK_FLAGS, (flags ^ c) & 0xFFFF)
    raw_flags = ((hi << 8) | lo) ^ BLOCK_FLAGS_XOR
    return struct.pack(">5H", a, b, c, raw_flags, d)


def encode_name(path: str) -> bytes:
    return bytes(ch ^ ((i ^ NAME_XOR) & 0xFF) for i, ch in enumerate(path.encode("ascii")))


def encode_node(offset: int, size: int, flags: int, path: str, terminate: bool = True) -> bytes:
    d, c = scramble(NODE_RANGE, offset & 0xFFFFFFFFFFFFFFFF)
    b, e = scramble(NODE_RANGE, size & 0xFFFFFFFFFFFFFFFF)
    a1, a0 = scramble(NODE_FLAGS, flags ^ b)
    a = ((a1 << 16) | a0) ^ NODE_A_XOR
    name = encode_name(path) + (b"\x00" if terminate else b"")
    return struct.pack(">4I", a, b, c, d) + name + struct.pack(">I", e)


@dataclass
class Node:
    offset: int
    size: int
    flags: int
    path: str


@dataclass
class Block:
    compressed_size: int
    uncompressed_size: int
    flags: int


def encode_directory(blocks: Sequence[Block], nodes: Sequence[Node]) -> bytes:
    out = bytearray(encode_count(len(blocks), BLOCK_COUNT_XOR, BLOCK_COUNT))
    for block in blocks:
        out += encode_block(block.compressed_size, block.uncompressed_size, block.flags)
    out += encode_count(len(nodes), NODE_COUNT_XOR, NODE_COUNT)
    for node in nodes:
        out += encode_node(node.offset, node.size, node.flags, node.path)
    return bytes(out)


def encode_header(
    size: int,
    flags: int,
    enc_flags: int,
    compressed_blocks_info_size: int,
    uncompressed_blocks_info_size: int,
) -> bytes:
    """Header bytes up to the start of the blocks-info section (40 or 48 bytes)."""
    cbs1, cbs2 = scramble(SIZE32, compressed_blocks_info_size & 0xFFFFFFFF)
    ubs1, ubs2 = scramble(SIZE32, uncompressed_blocks_info_size & 0xFFFFFFFF)
    size1, size2 = scramble(SIZE64, size)
    packed = HEADER_STRUCT.pack(
        CHECK_WORD,
        expected_check(CHECK_WORD),
        cbs2,
        FLAGS2,
        enc_flags ^ FLAGS2,
        size2,
        flags ^ FLAGS2 ^ HEADER_FLAGS_MASK,
        ubs1,
        0,
        ubs2,
        size1,
        cbs1,
        0,
    )
    if enc_flags >= 7:
        return packed + bytes(48 - len(packed))
    return packed[:40]


def build_container(
    payloads: Sequence[Tuple[bytes, int]],
    nodes: Sequence[Node],
    enc_flags: int = 7,
    compress_blocks_info: bool = True,
    pad_blocks_info: bool = False,
    extra_flags: int = 0,
) -> bytes:
    """Build a container from ``(plaintext, compression_type)`` blocks and a node table."""
    blocks: List[Block] = []
    body = bytearray()
    for plain, compression in payloads:
        if compression == 0:
            blocks.append(Block(len(plain), len(plain), 0x0040))
            body += plain
        else:
            packed = encrypt(to_lz4inv(lz4_compress(plain)))
            blocks.append(Block(len(packed), len(plain), 0x0040 | compression))
            body += packed

    directory = encode_directory(blocks, nodes)
    flags = extra_flags
    if compress_blocks_info:
        section = encrypt(lz4_compress(directory))
        flags |= 2
    else:
        section = directory
    compressed_size = len(section)
    if pad_blocks_info:
        flags |= FLAG_BLOCKS_INFO_PADDING
        section += bytes(-len(section) % 16)

    header = encode_header(0, flags, enc_flags, compressed_size, len(directory))
    total = len(header) + len(section) + len(body)
    header = encode_header(total, flags, enc_flags, compressed_size, len(directory))
    return header + section + bytes(body)
