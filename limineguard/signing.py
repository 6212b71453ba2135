import os
from dataclasses import dataclass
from typing import List, Optional, Tuple

import lief

from .discovery import BootEntry, find_boot_entries
from .session import Session
from .tools import Sbctl

lief.logging.disable()


@dataclass
class VerifyResult:
    entry: BootEntry
    label: str
    verified: bool


def inspect_signature(path: str) -> Optional[int]:
    """Number of Authenticode signatures embedded in a PE file, or None if it is not one."""
    try:
        binary = lief.PE.parse(path)
    except Exception:
        return None
    if binary is None:
        return None
    return len(list(binary.signatures))


def display_name(path: str) -> str:
    name = os.path.basename(path)
    # Limine and the fallback loader both ship a BOOTX64.EFI
    if name.upper() == "BOOTX64.EFI":
        parts = path.split(os.sep)
        if "limine" in parts:
            return f"{name} (limine)"
        if "BOOT" in parts:
            return f"{name} (BOOT)"
    return name


class SigningOrchestrator:
    def __init__(self, session: Session, tool: Optional[Sbctl] = None):
        self.session = session
        self.report = session.report
        self.tool = tool or Sbctl()

    def entries(self) -> List[BootEntry]:
        settings = self.session.settings
        return find_boot_entries(settings.boot_dir, settings.history_marker)

    def sign_all(self) -> bool:
        """Sign every unverified boot entry. Returns True if anything was (re)signed."""
        self.tool.require()
        entries = self.entries()
        if not entries:
            self.report.add("No Linux EFI files found to sign", self.session.settings.boot_dir, level="warn")
            return False
        self.report.add("EFI files found", str(len(entries)))

        signed = False
        for entry in entries:
            if self.tool.verify(entry.path):
                self.report.add("Already signed", entry.filename, level="debug")
                continue
            if not self.tool.sign(entry.path):
                self.report.add("Signing failed", entry.path, level="err")
                continue
            self.session.cache.invalidate(entry.path)
            self.report.add("Signed", entry.path, level="notice")
            signed = True
        return signed

    def verify_all(self) -> Tuple[bool, List[VerifyResult]]:
        self.tool.require()
        results = []
        for entry in self.entries():
            ok = self.tool.verify(entry.path)
            results.append(VerifyResult(entry, display_name(entry.path), ok))
            if not ok:
                count = inspect_signature(entry.path)
                if count is None:
                    detail = "not a PE image"
                elif count == 0:
                    detail = "no signature"
                else:
                    detail = "signature not trusted"
                self.report.add("Verification failed", f"{display_name(entry.path)}: {detail}", level="warn")
        return all(r.verified for r in results), results
