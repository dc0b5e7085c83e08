"""Decoder for VFS-wrapped Unity asset bundles."""
from __future__ import annotations

from .container import DecodedContainer, decode_container, decode_nodes
from .directory import BlockDescriptor, NodeDescriptor
from .errors import (
    CorruptBlock,
    DecodeError,
    InvalidContainer,
    InvalidDataFormat,
    NoValidNode,
    UnsupportedLayout,
)
from .header import ContainerHeader

__all__ = [
    "BlockDescriptor",
    "ContainerHeader",
    "CorruptBlock",
    "DecodeError",
    "DecodedContainer",
    "InvalidContainer",
    "InvalidDataFormat",
    "NoValidNode",
    "NodeDescriptor",
    "UnsupportedLayout",
    "decode_container",
    "decode_nodes",
]
