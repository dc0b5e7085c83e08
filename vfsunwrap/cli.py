#!/usr/bin/env python3
"""Decode VFS-wrapped asset bundles into plain UnityFS bytes and their nodes."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .container import DecodedContainer, decode_container, signature_preview
from .errors import DecodeError
from .export import (
    BLOCKS_FILENAME,
    NodeExtractSummary,
    extract_all_nodes,
    resolve_output_root,
    resolve_primary_output_path,
)

LOGGER = logging.getLogger("vfsunwrap")

DEBUG_DIR = Path("debug")
UNITS = ("B", "KB", "MB", "GB", "TB")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("input", type=Path, help="Path to a VFS-wrapped .ab file")
    parser.add_argument(
        "--out",
        default=None,
        help="Output .unityfs path, or a directory (trailing separator or no extension)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Decode and report without writing any files",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Write intermediate buffers to ./debug/ for manual inspection",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser.parse_args(argv)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s:%(name)s:%(message)s",
    )


def write_debug(name: str, data: bytes, enabled: bool, dry_run: bool) -> None:
    if not enabled:
        return
    if dry_run:
        LOGGER.info("[dry-run] Skipping debug dump %s", name)
        return
    DEBUG_DIR.mkdir(exist_ok=True)
    target = DEBUG_DIR / name
    LOGGER.debug("Writing debug buffer %s (%d bytes)", target, len(data))
    target.write_bytes(data)


def format_bytes(count: int) -> str:
    value = float(count)
    unit = 0
    while value >= 1024 and unit < len(UNITS) - 1:
        value /= 1024
        unit += 1
    return f"{value:.2f}".rstrip("0").rstrip(".") + f" {UNITS[unit]}"


def describe(decoded: DecodedContainer) -> None:
    header = decoded.header
    LOGGER.info("Header.Size=%d", header.size)
    LOGGER.info("Header.Flags=0x%08X", header.flags)
    LOGGER.info("Header.EncFlags=0x%08X", header.enc_flags)
    LOGGER.info("Header.CompressedBlocksInfoSize=%d", header.compressed_blocks_info_size)
    LOGGER.info("Header.UncompressedBlocksInfoSize=%d", header.uncompressed_blocks_info_size)
    LOGGER.info("Blocks.UncompressedStreamSize=%d", len(decoded.data))
    LOGGER.info("Blocks.Count=%d", len(decoded.blocks))

    total_compressed = 0
    total_uncompressed = 0
    for index, block in enumerate(decoded.blocks):
        total_compressed += block.compressed_size
        total_uncompressed += block.uncompressed_size
        LOGGER.debug(
            "[BLOCK] index=%d compressed=%d uncompressed=%d flags=0x%04X compType=%d",
            index,
            block.compressed_size,
            block.uncompressed_size,
            block.flags,
            block.compression_type,
        )
    LOGGER.info("Blocks.TotalCompressed=%d (%s)", total_compressed, format_bytes(total_compressed))
    LOGGER.info("Blocks.TotalUncompressed=%d (%s)", total_uncompressed, format_bytes(total_uncompressed))

    LOGGER.info("Nodes.Count=%d", len(decoded.nodes))
    for index, node in enumerate(decoded.nodes):
        LOGGER.info(
            "[NODE] index=%d path=%s offset=%d size=%d flags=0x%08X valid=%s",
            index,
            node.path,
            node.offset,
            node.size,
            node.flags,
            node.fits(len(decoded.data)),
        )
    LOGGER.info("SelectedNode.Index=%d", decoded.primary_index)
    LOGGER.info("SelectedNode.Path=%s", decoded.primary.path)
    LOGGER.info("UnityFS.Detected=%s", decoded.is_unityfs)
    LOGGER.info("UnityFS.SignaturePreview=%s", decoded.signature)
    LOGGER.info("UnityFS.Size=%d", len(decoded.payload))


def decode_file(
    path: Path, output: Optional[str], dry_run: bool, debug: bool
) -> NodeExtractSummary:
    if not path.is_file():
        raise DecodeError(f"Input file {path} does not exist")
    path = path.resolve()
    raw = path.read_bytes()
    LOGGER.info("Loaded %s (%d bytes, signature %s)", path, len(raw), signature_preview(raw))

    decoded = decode_container(raw)
    describe(decoded)
    write_debug("blocks_info.bin", decoded.blocks_info, debug, dry_run)
    write_debug(BLOCKS_FILENAME, decoded.data, debug, dry_run)

    primary_output = resolve_primary_output_path(output, path)
    output_root = resolve_output_root(output, path, primary_output)
    if dry_run:
        LOGGER.info("[dry-run] Would write %s and %d node(s) under %s", primary_output, len(decoded.nodes), output_root)
        return NodeExtractSummary()

    output_root.mkdir(parents=True, exist_ok=True)
    primary_output.parent.mkdir(parents=True, exist_ok=True)
    primary_output.write_bytes(decoded.payload)
    LOGGER.info("UnityFS written: %s", primary_output)

    blocks_output = output_root / BLOCKS_FILENAME
    blocks_output.write_bytes(decoded.data)
    LOGGER.info("Decrypted blocks stream written: %s", blocks_output)

    summary = extract_all_nodes(decoded, output_root)
    LOGGER.info(
        "NodeExtract.Success=%d NodeExtract.Skipped=%d NodeExtract.Failed=%d",
        summary.success,
        summary.skipped,
        summary.failed,
    )
    LOGGER.info("OutputRoot=%s", output_root)
    return summary


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)
    try:
        summary = decode_file(args.input, args.out, args.dry_run, args.debug)
    except DecodeError as exc:
        LOGGER.error("%s", exc)
        return 2
    except Exception as exc:  # pragma: no cover - safety net
        LOGGER.exception("Unexpected failure: %s", exc)
        return 1
    return 0 if summary.failed == 0 else 1


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
