"""Writing decoded payloads and nodes to disk under sanitised paths."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional, Set

from .container import DecodedContainer

LOGGER = logging.getLogger(__name__)

INVALID_FILENAME_CHARS = frozenset('<>:"/\\|?*' + "".join(chr(i) for i in range(32)))
PRIMARY_SUFFIX = ".unityfs"
BLOCKS_FILENAME = "blocks_uncompressed.bin"
NODES_DIRNAME = "nodes"


@dataclass
class NodeExtractSummary:
    success: int = 0
    skipped: int = 0
    failed: int = 0


def _clean_part(part: str) -> str:
    return "".join("_" if ch in INVALID_FILENAME_CHARS else ch for ch in part).strip()


def build_safe_relative_path(virtual_path: str) -> str:
    """Turn a node path into a relative POSIX path that cannot escape its root."""
    if not virtual_path or not virtual_path.strip():
        return ""
    parts = []
    for part in virtual_path.replace("\\", "/").split("/"):
        cleaned = _clean_part(part)
        if cleaned in ("", ".", ".."):
            continue
        parts.append(cleaned)
    return "/".join(parts)


def _has_output_dir_form(output: str) -> bool:
    return output.endswith(("/", "\\")) or not Path(output).suffix


def resolve_primary_output_path(output: Optional[str], input_path: Path) -> Path:
    if not output or not output.strip():
        return input_path.with_suffix(PRIMARY_SUFFIX)
    if _has_output_dir_form(output):
        return Path(output) / (input_path.stem + PRIMARY_SUFFIX)
    return Path(output)


def resolve_output_root(output: Optional[str], input_path: Path, primary_output: Path) -> Path:
    if not output or not output.strip():
        return input_path.parent / f"{input_path.stem}_decoded"
    if _has_output_dir_form(output):
        return Path(output)
    return primary_output.parent / f"{primary_output.stem}_decoded"


def resolve_node_output_path(nodes_root: Path, node_path: str, index: int, used: Set[str]) -> Path:
    relative = build_safe_relative_path(node_path) or f"node_{index:04d}.bin"
    if not PurePosixPath(relative).suffix:
        relative += ".bin"

    suffix = PurePosixPath(relative).suffix
    stem = relative[: -len(suffix)] if suffix else relative
    candidate = relative
    dedupe = 0
    while candidate.lower() in used:
        dedupe += 1
        candidate = f"{stem}__{index:04d}_{dedupe:02d}{suffix}"
    used.add(candidate.lower())
    return nodes_root.joinpath(*candidate.split("/"))


def extract_all_nodes(decoded: DecodedContainer, output_root: Path) -> NodeExtractSummary:
    summary = NodeExtractSummary()
    nodes_root = output_root / NODES_DIRNAME
    nodes_root.mkdir(parents=True, exist_ok=True)
    used: Set[str] = set()

    for index, node, payload in decoded.iter_node_payloads():
        if payload is None:
            summary.skipped += 1
            LOGGER.info("[NODE-SKIP] index=%d path=%s reason=InvalidRange", index, node.path)
            continue
        target = resolve_node_output_path(nodes_root, node.path, index, used)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(payload)
        except OSError as exc:
            summary.failed += 1
            LOGGER.error("[NODE-FAIL] index=%d path=%s reason=%s", index, node.path, exc)
            continue
        summary.success += 1
        LOGGER.info("[NODE-OK] index=%d size=%d path=%s output=%s", index, node.size, node.path, target)
    return summary
