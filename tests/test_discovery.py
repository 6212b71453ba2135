import os
import subprocess

from limineguard import discovery
from limineguard.discovery import (
    EntryKind,
    extract_token,
    find_boot_entries,
    get_machine_id,
    is_boot_executable,
    select_current_uki,
    snapshot_index,
)

from conftest import MACHINE_ID, BootTree, sha


def names(entries):
    return sorted(e.filename for e in entries)


def test_empty_boot_dir(tree):
    assert find_boot_entries(str(tree.boot)) == []


def test_missing_boot_dir(tmp_path):
    assert find_boot_entries(str(tmp_path / "nope")) == []


def test_microsoft_paths_are_excluded(tree):
    tree.uki()
    tree.write("EFI/Microsoft/Boot/bootmgfw.efi", b"win")
    tree.write("EFI/Microsoft/Boot/memtest.efi", b"win")
    entries = find_boot_entries(str(tree.boot))
    assert names(entries) == [tree.uki_name]


def test_directories_and_symlinks_are_skipped(tree):
    uki = tree.uki()
    (tree.boot / "EFI" / "Linux" / "fake.efi").mkdir()
    os.symlink(uki, tree.boot / "EFI" / "link.efi")
    entries = find_boot_entries(str(tree.boot))
    assert [e.path for e in entries] == [str(uki)]


def test_suffix_is_case_insensitive(tree):
    tree.write("EFI/limine/BOOTX64.EFI", b"limine")
    tree.write("EFI/Linux/readme.txt", b"nope")
    assert names(find_boot_entries(str(tree.boot))) == ["BOOTX64.EFI"]


def test_snapshot_classification(tree):
    tree.uki()
    tree.snapshot(b"snap one")
    tree.history.mkdir(parents=True, exist_ok=True)
    (tree.history / "untagged.efi").write_bytes(b"x")
    entries = find_boot_entries(str(tree.boot))
    by_name = {e.filename: e for e in entries}

    assert by_name[tree.uki_name].kind is EntryKind.CURRENT
    snap = by_name[f"{tree.uki_name}_sha256_{sha(b'snap one')}"]
    assert snap.kind is EntryKind.SNAPSHOT
    assert snap.snapshot_token.hexdigest == sha(b"snap one")
    assert snap.reconcilable

    untagged = by_name["untagged.efi"]
    assert untagged.kind is EntryKind.SNAPSHOT
    assert untagged.snapshot_token is None
    assert not untagged.reconcilable
    assert list(snapshot_index(entries)) == [snap.snapshot_token]


def test_is_boot_executable():
    token = "c" * 64
    assert is_boot_executable("linux.efi")
    assert is_boot_executable(f"linux.efi_sha256_{token}")
    assert not is_boot_executable(f"linux.img_sha256_{token}")
    assert not is_boot_executable("linux.efi.bak")


def test_extract_token():
    assert extract_token("foo.efi") is None
    assert extract_token(f"foo.efi_sha256_{'D' * 64}").hexdigest == "d" * 64


def test_select_current_uki_prefers_machine_id(tree):
    tree.write("EFI/Linux/other_linux.efi", b"other")
    tree.uki()
    tree.write("EFI/limine/BOOTX64.EFI", b"limine")
    entries = find_boot_entries(str(tree.boot))
    assert select_current_uki(entries, MACHINE_ID).filename == tree.uki_name
    assert select_current_uki(entries, "").filename.endswith("_linux.efi")
    assert select_current_uki([], MACHINE_ID) is None


def test_machine_id(tree, tmp_path, monkeypatch):
    monkeypatch.setattr(discovery.shutil, "which", lambda name: None)
    assert get_machine_id(str(tree.machine_id_file)) == MACHINE_ID
    assert get_machine_id(str(tmp_path / "missing")) == ""


def test_machine_id_falls_back_to_systemd_then_hostid(tmp_path, monkeypatch):
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append((cmd[0], kwargs.get("timeout")))
        out = "" if cmd[0] == "systemd-machine-id-setup" else "007f0101\n"
        return subprocess.CompletedProcess(cmd, 0, out)

    monkeypatch.setattr(discovery.shutil, "which", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr(discovery.subprocess, "run", fake_run)
    empty = tmp_path / "machine-id"
    empty.write_text("\n")
    assert get_machine_id(str(empty)) == "007f0101"
    assert [name for name, _ in calls] == ["systemd-machine-id-setup", "hostid"]
    assert all(timeout for _, timeout in calls)


def test_boot_root_under_windows_named_parent(tmp_path):
    host = tmp_path / "windows_host"
    host.mkdir()
    tree = BootTree(host)
    tree.uki()
    snap = tree.snapshot(b"one")
    tree.write("EFI/Microsoft/Boot/bootmgfw.efi", b"win")
    entries = find_boot_entries(str(tree.boot))
    assert names(entries) == sorted([tree.uki_name, os.path.basename(snap)])
    assert [e.kind for e in entries if e.filename == tree.uki_name] == [EntryKind.CURRENT]
