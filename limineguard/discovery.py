"""Discovery of the signed boot executables under ``/boot``."""
import enum
import os
import re
import shutil
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from .config import BOOT_DIR, EFI_SUFFIX, FOREIGN_MARKERS, HISTORY_MARKER, MACHINE_ID_FILE, QUERY_TIMEOUT
from .digests import IdentityDigest

TOKEN_RE = re.compile(r'_sha256_([0-9a-fA-F]{64})')


class EntryKind(enum.Enum):
    CURRENT = "current"
    SNAPSHOT = "snapshot"


@dataclass(frozen=True)
class BootEntry:
    path: str
    kind: EntryKind
    snapshot_token: Optional[IdentityDigest] = None

    @property
    def filename(self) -> str:
        return os.path.basename(self.path)

    @property
    def reconcilable(self) -> bool:
        return self.kind is EntryKind.CURRENT or self.snapshot_token is not None


def extract_token(name: str) -> Optional[IdentityDigest]:
    m = TOKEN_RE.search(name)
    if not m:
        return None
    return IdentityDigest(m.group(1).lower())


def is_boot_executable(name: str, suffix: str = EFI_SUFFIX) -> bool:
    lowered = name.lower()
    if lowered.endswith(suffix):
        return True
    # snapshot copies are stored as <name>.efi_sha256_<hex>
    m = TOKEN_RE.search(name)
    return bool(m) and m.end() == len(name) and lowered[:m.start()].endswith(suffix)


def is_foreign(path: str) -> bool:
    lowered = path.lower()
    return any(marker in lowered for marker in FOREIGN_MARKERS)


def classify(path: str, history_marker: str = HISTORY_MARKER, root: str = '') -> BootEntry:
    rel = os.path.relpath(path, root) if root else path
    if history_marker in rel:
        return BootEntry(path, EntryKind.SNAPSHOT, extract_token(os.path.basename(path)))
    return BootEntry(path, EntryKind.CURRENT)


def find_boot_entries(root: str = BOOT_DIR, history_marker: str = HISTORY_MARKER) -> List[BootEntry]:
    """Return every Linux boot executable below ``root``.

    Only regular files are returned. Directories and symlinks that happen to
    carry an ``.efi`` name are skipped, as is anything whose path names a
    foreign OS.
    """
    entries = []
    for dirpath, dirnames, files in os.walk(root):
        dirnames.sort()
        for name in sorted(files):
            if not is_boot_executable(name):
                continue
            fpath = os.path.join(dirpath, name)
            # only the part below root; its parents may be named anything
            if is_foreign(os.path.relpath(fpath, root)):
                continue
            if os.path.islink(fpath) or not os.path.isfile(fpath):
                continue
            entries.append(classify(fpath, history_marker, root))
    return entries


def snapshot_index(entries: List[BootEntry]) -> dict:
    """Map identity digest to entry for every tokenised snapshot."""
    return {
        e.snapshot_token: e
        for e in entries
        if e.kind is EntryKind.SNAPSHOT and e.snapshot_token is not None
    }


def _command_output(cmd: List[str]) -> str:
    if shutil.which(cmd[0]) is None:
        return ''
    try:
        out = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
            timeout=QUERY_TIMEOUT,
            check=False,
        ).stdout
    except (subprocess.TimeoutExpired, OSError):
        return ''
    return (out or '').strip()


def get_machine_id(path: str = MACHINE_ID_FILE) -> str:
    """Machine ID from ``path``, then systemd, then the host ID."""
    try:
        with open(path) as f:
            value = f.read().strip()
        if value:
            return value
    except OSError:
        pass
    return _command_output(['systemd-machine-id-setup', '--print']) or _command_output(['hostid'])


def select_current_uki(entries: List[BootEntry], machine_id: str = '') -> Optional[BootEntry]:
    """Pick the live kernel image: ``<machine-id>_linux.efi`` first, then any ``*_linux.efi``."""
    current = [e for e in entries if e.kind is EntryKind.CURRENT]
    if machine_id:
        for e in current:
            if e.filename == f"{machine_id}_linux.efi":
                return e
    for e in current:
        if e.filename.endswith("_linux.efi"):
            return e
    return None
