"""Detection of a Windows Boot Manager for dual-boot menus."""
import json
import os
import shutil
import subprocess
from typing import List, Optional

import psutil

from .config import QUERY_TIMEOUT
from .limine import LimineConfig
from .session import Session

SEARCH_PATHS = ['/boot', '/boot/efi', '/efi', '/mnt/c', '/mnt/windows']
WINDOWS_FSTYPES = {'vfat', 'ntfs', 'ntfs3'}
BOOTMGR_SUFFIX = ('microsoft', 'boot', 'bootmgfw.efi')

ENTRY_TEMPLATE = """
# Windows Boot Manager
/Windows
    comment: Microsoft Windows
    comment: order-priority=20
    protocol: efi_chainload
    image_path: boot():/{efi_path}
"""


def windows_mount_points() -> List[str]:
    mounts = []
    try:
        for part in psutil.disk_partitions(all=False):
            if part.fstype.lower() in WINDOWS_FSTYPES:
                mounts.append(part.mountpoint)
    except (OSError, RuntimeError):
        pass
    return mounts


def _is_bootmgr(path: str) -> bool:
    parts = [p.lower() for p in path.split(os.sep)]
    return tuple(parts[-3:]) == BOOTMGR_SUFFIX


def find_windows_bootmgr(search_paths: Optional[List[str]] = None) -> str:
    if search_paths is None:
        search_paths = list(SEARCH_PATHS)
        for mount in windows_mount_points():
            if mount not in search_paths:
                search_paths.append(mount)
    for root in search_paths:
        if not os.path.isdir(root):
            continue
        for dirpath, _, files in os.walk(root):
            for name in files:
                fpath = os.path.join(dirpath, name)
                if _is_bootmgr(fpath) and os.path.isfile(fpath):
                    return fpath
    return ''


def _walk_block_devices(devices):
    for dev in devices or []:
        yield dev
        yield from _walk_block_devices(dev.get('children'))


def unmounted_windows_partitions() -> List[str]:
    """NTFS or FAT partitions that ``lsblk`` sees but nothing has mounted."""
    if shutil.which('lsblk') is None:
        return []
    try:
        out = subprocess.run(
            ['lsblk', '-J', '-o', 'NAME,FSTYPE,MOUNTPOINT'],
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
            timeout=QUERY_TIMEOUT,
            check=False,
        ).stdout
        devices = json.loads(out or '{}').get('blockdevices')
    except (subprocess.TimeoutExpired, OSError, ValueError):
        return []
    return [
        dev['name']
        for dev in _walk_block_devices(devices)
        if (dev.get('fstype') or '').lower() in WINDOWS_FSTYPES and not dev.get('mountpoint')
    ]


def report_unmounted_windows(session: Session) -> None:
    parts = unmounted_windows_partitions()
    if parts:
        session.report.add(
            "Unmounted Windows partition(s)",
            f"{', '.join(parts)}; mount them to detect Windows",
            level="notice",
        )


def efi_relative_path(path: str) -> str:
    for prefix in ('/boot/efi/', '/boot/', '/efi/'):
        if path.startswith(prefix):
            return path[len(prefix):]
    return path.lstrip('/')


def ensure_windows_entry(session: Session, bootmgr: Optional[str] = None) -> bool:
    """Append a chainload entry for Windows. Returns True if limine.conf changed."""
    report = session.report
    conf = session.settings.limine_conf
    try:
        config = LimineConfig.read(conf)
    except OSError as e:
        report.add("limine.conf unreadable", f"{conf}: {e}", level="err")
        return False
    if config.mentions('windows', 'bootmgfw'):
        report.add("Windows entry already exists", conf)
        return False

    if bootmgr is None:
        bootmgr = find_windows_bootmgr()
    if not bootmgr:
        report.add("No Windows installation detected")
        report_unmounted_windows(session)
        return False
    report.add("Found Windows Boot Manager", bootmgr)

    entry = ENTRY_TEMPLATE.format(efi_path=efi_relative_path(bootmgr))
    print(f"The following entry will be added to {conf}:{entry}")
    if not session.confirm("Add Windows entry to boot menu?"):
        report.add("Skipped adding Windows entry")
        return False

    session.backups.backup()
    with session.backups.mutation("Windows entry"):
        config.append(entry)
        config.write(conf)
    report.add("Windows entry added", conf, level="notice")
    return True
