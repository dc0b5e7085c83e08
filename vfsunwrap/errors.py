"""Exceptions raised while unwrapping a VFS container."""
from __future__ import annotations


class DecodeError(RuntimeError):
    """Raised when the decoder cannot produce a valid payload."""


class InvalidContainer(DecodeError):
    """The header checksum does not match; the input is not a VFS container."""


class UnsupportedLayout(DecodeError):
    """The header is valid but requests a layout this decoder does not handle."""


class InvalidDataFormat(DecodeError):
    """A table count, size or offset failed a bounds or consistency check."""


class CorruptBlock(DecodeError):
    """A payload block is truncated or does not decompress to its declared size."""


class NoValidNode(DecodeError):
    """The directory parsed, but no node lies inside the assembled block stream."""
