from __future__ import annotations

from pathlib import Path

import pytest

from containerbuilder import PRIMARY_PAYLOAD, RESOURCE_PAYLOAD, STORED_PAYLOAD, Node, build_container
from vfsunwrap import decode_container
from vfsunwrap.export import (
    build_safe_relative_path,
    extract_all_nodes,
    resolve_node_output_path,
    resolve_output_root,
    resolve_primary_output_path,
)


@pytest.mark.parametrize(
    "virtual, expected",
    [
        ("assets/ui/atlas.png", "assets/ui/atlas.png"),
        ("..\\..\\etc/passwd", "etc/passwd"),
        ("/abs//./path/", "abs/path"),
        ("a:b/c?d*e", "a_b/c_d_e"),
        ("  spaced  /name ", "spaced/name"),
        ("tab\there", "tab_here"),
        ("", ""),
        ("   ", ""),
        ("../..", ""),
        (" ../ ../escaped", "escaped"),
        (".. /x/ . /y", "x/y"),
        (" .. ", ""),
    ],
)
def test_build_safe_relative_path(virtual, expected):
    assert build_safe_relative_path(virtual) == expected


def test_node_output_paths_are_unique(tmp_path):
    used = set()
    first = resolve_node_output_path(tmp_path, "CAB-1", 0, used)
    second = resolve_node_output_path(tmp_path, "cab-1", 1, used)
    third = resolve_node_output_path(tmp_path, "CAB-1.bin", 2, used)
    fourth = resolve_node_output_path(tmp_path, "..", 3, used)
    nested = resolve_node_output_path(tmp_path, "dir/file.resS", 4, used)
    assert first == tmp_path / "CAB-1.bin"
    assert second == tmp_path / "cab-1__0001_01.bin"
    assert third == tmp_path / "CAB-1__0002_01.bin"
    assert fourth == tmp_path / "node_0003.bin"
    assert nested == tmp_path / "dir" / "file.resS"


def test_primary_output_defaults(tmp_path):
    source = tmp_path / "bundles" / "ui.ab"
    primary = resolve_primary_output_path(None, source)
    assert primary == tmp_path / "bundles" / "ui.unityfs"
    assert resolve_output_root(None, source, primary) == tmp_path / "bundles" / "ui_decoded"


def test_output_directory_argument(tmp_path):
    source = tmp_path / "ui.ab"
    out = str(tmp_path / "out")
    primary = resolve_primary_output_path(out, source)
    assert primary == tmp_path / "out" / "ui.unityfs"
    assert resolve_output_root(out, source, primary) == tmp_path / "out"


def test_output_file_argument(tmp_path):
    source = tmp_path / "ui.ab"
    out = str(tmp_path / "x" / "bundle.bin")
    primary = resolve_primary_output_path(out, source)
    assert primary == tmp_path / "x" / "bundle.bin"
    assert resolve_output_root(out, source, primary) == tmp_path / "x" / "bundle_decoded"


def test_extract_all_nodes(tmp_path, sample_container):
    decoded = decode_container(sample_container)
    summary = extract_all_nodes(decoded, tmp_path)
    assert (summary.success, summary.skipped, summary.failed) == (2, 1, 0)
    nodes_root = tmp_path / "nodes"
    assert (nodes_root / "CAB-5f1c2e9a.bin").read_bytes() == PRIMARY_PAYLOAD
    assert (nodes_root / "CAB-5f1c2e9a.resS").read_bytes() == RESOURCE_PAYLOAD + STORED_PAYLOAD
    assert not (nodes_root / "bogus").exists()


def test_extract_counts_write_failures(tmp_path):
    nodes = [Node(0, 8, 0, "blocked/file"), Node(8, 8, 0, "ok")]
    decoded = decode_container(build_container([(STORED_PAYLOAD, 0)], nodes))
    (tmp_path / "nodes").mkdir()
    (tmp_path / "nodes" / "blocked").write_bytes(b"not a directory")
    summary = extract_all_nodes(decoded, tmp_path)
    assert (summary.success, summary.skipped, summary.failed) == (1, 0, 1)
    assert Path(tmp_path / "nodes" / "ok.bin").read_bytes() == STORED_PAYLOAD[8:16]


def test_extract_stays_under_output_root(tmp_path):
    nodes = [
        Node(0, 8, 0, " ../ ../escaped.txt"),
        Node(8, 8, 0, "..\\ ..\\deeper/ .. /name"),
    ]
    decoded = decode_container(build_container([(STORED_PAYLOAD, 0)], nodes))
    root = tmp_path / "out"
    summary = extract_all_nodes(decoded, root)
    assert (summary.success, summary.skipped, summary.failed) == (2, 0, 0)

    written = [p for p in tmp_path.rglob("*") if p.is_file()]
    assert sorted(p.relative_to(root).as_posix() for p in written) == [
        "nodes/deeper/name.bin",
        "nodes/escaped.txt",
    ]
