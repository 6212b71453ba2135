"""Wrappers around ``sbctl`` and ``pacman``.

All text scraping of tool output happens here; the rest of the package only
sees booleans and :class:`SecureBootStatus`.
"""
import os
import re
import shutil
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from .config import (
    KEY_DIRS,
    KEY_PATHS,
    KEYS_TIMEOUT,
    PACKAGE_TIMEOUT,
    QUERY_TIMEOUT,
    SB_PACKAGES,
    SIGN_TIMEOUT,
    STATUS_TIMEOUT,
    VERIFY_TIMEOUT,
)
from .errors import ToolMissing, ToolTimeout

_SETUP_MODE_RE = re.compile(r'Setup Mode:?\s*(?:\S\s+)?(Enabled|Disabled)', re.IGNORECASE)
_SECURE_BOOT_RE = re.compile(r'Secure Boot:?\s*(?:\S\s+)?(Enabled|Disabled)', re.IGNORECASE)
_INSTALLED_RE = re.compile(r'Installed:\s*(?:\S\s+)?(.*)')


def _flag(pattern, text: str) -> Optional[bool]:
    m = pattern.search(text)
    if not m:
        return None
    return m.group(1).lower() == 'enabled'


@dataclass
class SecureBootStatus:
    installed: bool
    setup_mode: Optional[bool]
    secure_boot: Optional[bool]
    raw: str = ''

    @classmethod
    def parse(cls, text: str) -> 'SecureBootStatus':
        m = _INSTALLED_RE.search(text)
        installed = bool(m) and 'not installed' not in m.group(1).lower()
        return cls(
            installed=installed,
            setup_mode=_flag(_SETUP_MODE_RE, text),
            secure_boot=_flag(_SECURE_BOOT_RE, text),
            raw=text,
        )


class Sbctl:
    def __init__(self, exe: str = 'sbctl'):
        self.exe = exe

    def available(self) -> bool:
        return shutil.which(self.exe) is not None

    def require(self) -> None:
        if not self.available():
            raise ToolMissing(self.exe, 'sbctl')

    def _run(self, args: List[str], timeout: float) -> subprocess.CompletedProcess:
        return subprocess.run(
            [self.exe] + args,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=timeout,
            check=False,
        )

    def verify(self, path: str) -> bool:
        try:
            return self._run(['verify', path], VERIFY_TIMEOUT).returncode == 0
        except (subprocess.TimeoutExpired, OSError):
            return False

    def sign(self, path: str) -> bool:
        try:
            return self._run(['sign', '-s', path], SIGN_TIMEOUT).returncode == 0
        except (subprocess.TimeoutExpired, OSError):
            return False

    def status(self) -> SecureBootStatus:
        self.require()
        try:
            out = self._run(['status'], STATUS_TIMEOUT).stdout
        except subprocess.TimeoutExpired:
            raise ToolTimeout(f"{self.exe} status", STATUS_TIMEOUT)
        return SecureBootStatus.parse(out or '')

    def create_keys(self) -> bool:
        self.require()
        try:
            return self._run(['create-keys'], KEYS_TIMEOUT).returncode == 0
        except (subprocess.TimeoutExpired, OSError):
            return False

    def enroll_keys(self) -> bool:
        self.require()
        # -m keeps the Microsoft keys so option ROMs and Windows still boot
        try:
            return self._run(['enroll-keys', '-m', '-f'], KEYS_TIMEOUT).returncode == 0
        except (subprocess.TimeoutExpired, OSError):
            return False


def keys_exist(tool: Sbctl, paths: List[str] = KEY_PATHS) -> bool:
    if any(os.path.exists(p) for p in paths):
        return True
    if not tool.available():
        return False
    try:
        return tool.status().installed
    except ToolTimeout:
        return False


def missing_packages(packages: List[str] = SB_PACKAGES) -> List[str]:
    if shutil.which('pacman') is None:
        raise ToolMissing('pacman', 'pacman')
    missing = []
    for package in packages:
        try:
            rc = subprocess.run(
                ['pacman', '-Qi', package],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=QUERY_TIMEOUT,
                check=False,
            ).returncode
        except subprocess.TimeoutExpired:
            rc = 1
        if rc != 0:
            missing.append(package)
    return missing


def install_packages(packages: List[str]) -> bool:
    if not packages:
        return True
    if shutil.which('pacman') is None:
        raise ToolMissing('pacman', 'pacman')
    try:
        return subprocess.run(
            ['pacman', '-S', '--needed', '--noconfirm'] + packages,
            timeout=PACKAGE_TIMEOUT,
            check=False,
        ).returncode == 0
    except subprocess.TimeoutExpired:
        return False


def remove_keys(dirs: List[str] = KEY_DIRS) -> List[str]:
    """Delete existing key directories before regenerating. Returns the ones removed."""
    removed = []
    for d in dirs:
        if os.path.isdir(d):
            shutil.rmtree(d)
            removed.append(d)
    return removed
