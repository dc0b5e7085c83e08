"""Top-level decode of one VFS container into its assembled block stream and nodes."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

from .bits import ByteReader
from .cipher import decrypt_in_place
from .directory import BlockDescriptor, NodeDescriptor, read_directory
from .errors import CorruptBlock, InvalidDataFormat, NoValidNode, UnsupportedLayout
from .header import ContainerHeader, read_header
from .lz import LZ4, check_expansion, decompressor_for

LOGGER = logging.getLogger(__name__)

UNITYFS_MAGIC = b"UnityFS"
SIGNATURE_LENGTH = 8


@dataclass(frozen=True)
class DecodedContainer:
    """Everything recovered from a single container.

    ``data`` is the concatenation of every decompressed payload block; node
    offsets index into it. ``payload`` is the primary node's slice.
    """

    header: ContainerHeader
    blocks: Tuple[BlockDescriptor, ...]
    nodes: Tuple[NodeDescriptor, ...]
    primary: NodeDescriptor
    data: bytes
    payload: bytes
    blocks_info: bytes

    @property
    def primary_index(self) -> int:
        return self.nodes.index(self.primary)

    @property
    def signature(self) -> str:
        return signature_preview(self.payload)

    @property
    def is_unityfs(self) -> bool:
        return self.payload.startswith(UNITYFS_MAGIC)

    def node_bytes(self, node: NodeDescriptor) -> bytes:
        if not node.fits(len(self.data)):
            raise InvalidDataFormat(
                f"Node {node.path!r} range {node.offset}+{node.size} is outside "
                f"the {len(self.data)}-byte block stream"
            )
        return self.data[node.offset:node.offset + node.size]

    def iter_node_payloads(self) -> Iterator[Tuple[int, NodeDescriptor, Optional[bytes]]]:
        """Yield ``(index, node, bytes)``; bytes is ``None`` for nodes outside the stream."""
        total = len(self.data)
        for index, node in enumerate(self.nodes):
            if node.fits(total):
                yield index, node, self.data[node.offset:node.offset + node.size]
            else:
                yield index, node, None


def signature_preview(data: bytes, length: int = SIGNATURE_LENGTH) -> str:
    return "".join(chr(b) if 32 <= b <= 126 else "." for b in data[:length])


def unpack_blocks_info(data: bytes, header: ContainerHeader) -> bytes:
    offset = header.blocks_info_offset
    size = header.compressed_blocks_info_size
    if size < 0:
        raise InvalidDataFormat(f"Negative blocks info size: {size}")
    if offset + size > len(data):
        raise CorruptBlock(
            f"Invalid blocks info range: {offset}+{size} exceeds {len(data)} bytes"
        )

    section = bytearray(data[offset:offset + size])
    if header.blocks_info_compression == 0:
        LOGGER.debug("Blocks info stored (%d bytes)", size)
        return bytes(section)

    decrypt_in_place(section)
    LOGGER.debug(
        "Blocks info compression=%d, %d -> %d bytes",
        header.blocks_info_compression,
        size,
        header.uncompressed_blocks_info_size,
    )
    return LZ4.decompress(bytes(section), header.uncompressed_blocks_info_size)


def assemble_blocks(data: bytes, offset: int, blocks: Sequence[BlockDescriptor]) -> bytes:
    reader = ByteReader(data, CorruptBlock, offset)
    out = bytearray()
    for index, block in enumerate(blocks):
        decompressor = decompressor_for(block.compression_type)
        if decompressor is None:
            if block.uncompressed_size < 0:
                raise InvalidDataFormat(
                    f"Block {index} has negative size {block.uncompressed_size}"
                )
            out += reader.read_bytes(block.uncompressed_size)
            LOGGER.debug("Block %d stored, %d bytes", index, block.uncompressed_size)
            continue

        if block.compressed_size < 0:
            raise InvalidDataFormat(
                f"Block {index} has negative compressed size {block.compressed_size}"
            )
        check_expansion(block.compressed_size, block.uncompressed_size)
        chunk = bytearray(reader.read_bytes(block.compressed_size))
        decrypt_in_place(chunk)
        out += decompressor.decompress(bytes(chunk), block.uncompressed_size)
        LOGGER.debug(
            "Block %d %s, %d -> %d bytes",
            index,
            decompressor.name,
            block.compressed_size,
            block.uncompressed_size,
        )
    return bytes(out)


def choose_primary_node(nodes: Sequence[NodeDescriptor], total: int) -> Optional[NodeDescriptor]:
    for node in nodes:
        if node.fits(total):
            return node
    return None


def decode_container(data: bytes) -> DecodedContainer:
    """Decode a complete container held in memory.

    Raises a :class:`~vfsunwrap.errors.DecodeError` subclass on any failure;
    no partial result is returned.
    """
    data = bytes(data)
    header = read_header(data)
    if header.blocks_info_at_end:
        raise UnsupportedLayout("BlocksInfoAtTheEnd layout is not supported")

    blocks_info = unpack_blocks_info(data, header)
    blocks, nodes = read_directory(blocks_info)
    LOGGER.debug("Directory: %d block(s), %d node(s)", len(blocks), len(nodes))

    stream = assemble_blocks(data, header.data_offset, blocks)
    primary = choose_primary_node(nodes, len(stream))
    if primary is None:
        raise NoValidNode(
            f"No node entry fits the {len(stream)}-byte block stream ({len(nodes)} node(s))"
        )

    payload = stream[primary.offset:primary.offset + primary.size]
    LOGGER.debug(
        "Primary node %r offset=%d size=%d signature=%s",
        primary.path,
        primary.offset,
        primary.size,
        signature_preview(payload),
    )
    return DecodedContainer(
        header=header,
        blocks=tuple(blocks),
        nodes=tuple(nodes),
        primary=primary,
        data=stream,
        payload=payload,
        blocks_info=blocks_info,
    )


def decode_nodes(data: bytes) -> List[Tuple[NodeDescriptor, bytes]]:
    """Decode ``data`` and return every node that lies inside the block stream."""
    decoded = decode_container(data)
    return [(node, payload) for _, node, payload in decoded.iter_node_payloads() if payload is not None]
