"""End-to-end decode of built containers."""
from __future__ import annotations

import struct
from concurrent.futures import ThreadPoolExecutor

import pytest

from containerbuilder import (
    PRIMARY_PAYLOAD,
    RESOURCE_PAYLOAD,
    STORED_PAYLOAD,
    Block,
    Node,
    build_container,
    encode_directory,
    encode_header,
    encrypt,
    lz4_compress,
    to_lz4inv,
)
from vfsunwrap import (
    CorruptBlock,
    InvalidContainer,
    InvalidDataFormat,
    NoValidNode,
    UnsupportedLayout,
    decode_container,
    decode_nodes,
)
from vfsunwrap.container import choose_primary_node, signature_preview
from vfsunwrap.directory import NodeDescriptor

STREAM = PRIMARY_PAYLOAD + RESOURCE_PAYLOAD + STORED_PAYLOAD


def test_decode_primary_payload(sample_container):
    decoded = decode_container(sample_container)
    assert decoded.data == STREAM
    assert decoded.payload == PRIMARY_PAYLOAD
    assert len(decoded.payload) == len(PRIMARY_PAYLOAD)
    assert decoded.payload[:8] == b"UnityFS\x00"
    assert decoded.signature == "UnityFS."
    assert decoded.is_unityfs
    assert decoded.primary.path == "CAB-5f1c2e9a"
    assert decoded.primary_index == 1
    assert decoded.header.size == len(sample_container)
    assert [b.compression_type for b in decoded.blocks] == [5, 5, 0]
    assert [b.uncompressed_size for b in decoded.blocks] == [
        len(PRIMARY_PAYLOAD),
        len(RESOURCE_PAYLOAD),
        len(STORED_PAYLOAD),
    ]


def test_every_node_extractable(sample_container):
    decoded = decode_container(sample_container)
    payloads = list(decoded.iter_node_payloads())
    assert payloads[0][2] is None
    assert payloads[1][2] == PRIMARY_PAYLOAD
    assert payloads[2][2] == RESOURCE_PAYLOAD + STORED_PAYLOAD
    with pytest.raises(InvalidDataFormat):
        decoded.node_bytes(decoded.nodes[0])
    assert decoded.node_bytes(decoded.nodes[2]) == RESOURCE_PAYLOAD + STORED_PAYLOAD


def test_decode_nodes_skips_invalid(sample_container):
    nodes = decode_nodes(sample_container)
    assert [node.path for node, _ in nodes] == ["CAB-5f1c2e9a", "CAB-5f1c2e9a.resS"]


@pytest.mark.parametrize(
    "options",
    [
        {"enc_flags": 3},
        {"compress_blocks_info": False},
        {"pad_blocks_info": True},
        {"enc_flags": 0, "compress_blocks_info": False, "pad_blocks_info": True},
    ],
)
def test_layout_variants(options):
    nodes = [Node(0, len(PRIMARY_PAYLOAD), 0, "CAB-0")]
    data = build_container([(PRIMARY_PAYLOAD, 5)], nodes, **options)
    assert decode_container(data).payload == PRIMARY_PAYLOAD


def test_small_block_uses_full_cipher():
    payload = b"UnityFS\x00tiny"
    data = build_container([(payload, 5)], [Node(0, len(payload), 0, "CAB-tiny")])
    assert decode_container(data).payload == payload


def test_deterministic(sample_container):
    first = decode_container(sample_container)
    second = decode_container(sample_container)
    assert first == second


def test_concurrent_decodes_match(sample_container):
    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(decode_container, [sample_container] * 8))
    assert all(result.data == results[0].data for result in results)
    assert all(result.nodes == results[0].nodes for result in results)


def test_not_a_container():
    with pytest.raises(InvalidContainer):
        decode_container(b"UnityFS\x00" + bytes(100))


def test_blocks_info_at_end_rejected():
    data = build_container(
        [(PRIMARY_PAYLOAD, 5)], [Node(0, len(PRIMARY_PAYLOAD), 0, "CAB-0")], extra_flags=0x80
    )
    with pytest.raises(UnsupportedLayout):
        decode_container(data)


def test_truncated_payload(sample_container):
    with pytest.raises(CorruptBlock):
        decode_container(sample_container[:-10])


def test_truncated_blocks_info(sample_container):
    with pytest.raises(CorruptBlock):
        decode_container(sample_container[:60])


def test_block_size_mismatch():
    packed = encrypt(to_lz4inv(lz4_compress(PRIMARY_PAYLOAD)))
    directory = encode_directory(
        [Block(len(packed), len(PRIMARY_PAYLOAD) + 1, 0x0045)],
        [Node(0, len(PRIMARY_PAYLOAD), 0, "CAB-0")],
    )
    header = encode_header(0, 0, 7, len(directory), len(directory))
    with pytest.raises(CorruptBlock, match="size mismatch"):
        decode_container(header + directory + packed)


def test_unsupported_block_type():
    data = build_container([(b"x" * 40, 2)], [Node(0, 40, 0, "CAB-0")])
    with pytest.raises(InvalidDataFormat, match="compression type"):
        decode_container(data)


def test_no_valid_node():
    data = build_container([(STORED_PAYLOAD, 0)], [Node(0, len(STORED_PAYLOAD) + 1, 0, "CAB-0")])
    with pytest.raises(NoValidNode):
        decode_container(data)


def test_negative_blocks_info_size():
    nodes = [Node(0, len(STORED_PAYLOAD), 0, "CAB-0")]
    data = bytearray(build_container([(STORED_PAYLOAD, 0)], nodes))
    struct.pack_into(">H", data, 8, 0)
    struct.pack_into(">H", data, 38, 0xA121)
    with pytest.raises(InvalidDataFormat):
        decode_container(bytes(data))


def test_choose_primary_skips_empty_and_out_of_range():
    nodes = [
        NodeDescriptor(0, 0, 0, "empty"),
        NodeDescriptor(-4, 8, 0, "negative"),
        NodeDescriptor(90, 20, 0, "past-end"),
        NodeDescriptor(10, 20, 0, "good"),
        NodeDescriptor(0, 100, 0, "later"),
    ]
    assert choose_primary_node(nodes, 100).path == "good"
    assert choose_primary_node(nodes[:3], 100) is None
    assert choose_primary_node([], 100) is None


def test_signature_preview_masks_unprintable():
    assert signature_preview(b"Unity\x00\x7f\x1fextra") == "Unity..."
    assert signature_preview(b"ab") == "ab"
