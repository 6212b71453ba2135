import shutil
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import List, Optional

from .config import BACKUP_MARKER
from .errors import BackupError, MutationError
from .report import Report


def backup_path(conf_path: str, marker: str = BACKUP_MARKER, now: Optional[float] = None) -> str:
    # Second resolution; two backups in the same second share a name.
    stamp = time.strftime('%Y%m%d_%H%M%S', time.localtime(now))
    return f"{conf_path}.{marker}.{stamp}"


@dataclass
class BackupController:
    conf_path: str
    report: Report
    marker: str = BACKUP_MARKER
    backups: List[str] = field(default_factory=list)
    in_flight: bool = False

    def backup(self) -> str:
        target = backup_path(self.conf_path, self.marker)
        try:
            shutil.copy2(self.conf_path, target)
        except OSError as e:
            raise BackupError(f"could not back up {self.conf_path}: {e}") from e
        self.backups.append(target)
        self.report.add("Backup created", target, level="notice")
        return target

    def latest(self) -> Optional[str]:
        return self.backups[-1] if self.backups else None

    def restore_latest(self) -> bool:
        latest = self.latest()
        if latest is None:
            return False
        try:
            shutil.copy2(latest, self.conf_path)
        except OSError as e:
            self.report.add("Restore failed", f"{latest}: {e}", level="crit")
            return False
        self.report.add("Restored backup", latest, level="warn")
        return True

    @contextmanager
    def mutation(self, description: str):
        """Run a multi-step write as one recovery unit.

        If the body raises, the most recent backup is copied back over the
        configuration before the failure is re-raised as ``MutationError``.
        """
        self.in_flight = True
        try:
            yield self
        except Exception as e:
            restored = False
            if self.in_flight:
                restored = self.restore_latest()
            self.in_flight = False
            self.report.add("Mutation failed", f"{description}: {e}", level="err")
            raise MutationError(f"{description} failed: {e}", restored=restored) from e
        self.in_flight = False
