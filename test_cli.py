"""Smoke tests for the command-line entry point."""
from __future__ import annotations

from containerbuilder import PRIMARY_PAYLOAD, RESOURCE_PAYLOAD, STORED_PAYLOAD
from vfsunwrap import cli


def test_decode_writes_outputs(tmp_path, sample_container):
    source = tmp_path / "ui_common.ab"
    source.write_bytes(sample_container)

    assert cli.main([str(source)]) == 0

    assert (tmp_path / "ui_common.unityfs").read_bytes() == PRIMARY_PAYLOAD
    root = tmp_path / "ui_common_decoded"
    assert (root / "blocks_uncompressed.bin").read_bytes() == (
        PRIMARY_PAYLOAD + RESOURCE_PAYLOAD + STORED_PAYLOAD
    )
    assert (root / "nodes" / "CAB-5f1c2e9a.bin").exists()
    assert (root / "nodes" / "CAB-5f1c2e9a.resS").exists()


def test_output_directory(tmp_path, sample_container):
    source = tmp_path / "ui_common.ab"
    source.write_bytes(sample_container)
    out = tmp_path / "out"

    assert cli.main([str(source), "--out", str(out)]) == 0
    assert (out / "ui_common.unityfs").read_bytes() == PRIMARY_PAYLOAD
    assert (out / "nodes" / "CAB-5f1c2e9a.resS").exists()


def test_dry_run_writes_nothing(tmp_path, sample_container, monkeypatch):
    monkeypatch.chdir(tmp_path)
    source = tmp_path / "bundle.ab"
    source.write_bytes(sample_container)

    assert cli.main([str(source), "--dry-run", "--debug"]) == 0
    assert sorted(p.name for p in tmp_path.iterdir()) == ["bundle.ab"]


def test_debug_dumps(tmp_path, sample_container, monkeypatch):
    monkeypatch.chdir(tmp_path)
    source = tmp_path / "bundle.ab"
    source.write_bytes(sample_container)

    assert cli.main([str(source), "--debug", "--verbose"]) == 0
    assert (tmp_path / "debug" / "blocks_info.bin").exists()
    assert (tmp_path / "debug" / "blocks_uncompressed.bin").stat().st_size == (
        len(PRIMARY_PAYLOAD) + len(RESOURCE_PAYLOAD) + len(STORED_PAYLOAD)
    )


def test_missing_input(tmp_path):
    assert cli.main([str(tmp_path / "absent.ab")]) == 2


def test_invalid_input(tmp_path):
    source = tmp_path / "plain.ab"
    source.write_bytes(b"UnityFS\x00" + bytes(64))
    assert cli.main([str(source)]) == 2
    assert not (tmp_path / "plain.unityfs").exists()


def test_format_bytes():
    assert cli.format_bytes(0) == "0 B"
    assert cli.format_bytes(1536) == "1.5 KB"
    assert cli.format_bytes(3 * 1024 * 1024) == "3 MB"
