import sys
from dataclasses import dataclass, field
from typing import Callable, Optional

from .backup import BackupController
from .cache import HashCache
from .config import Settings
from .report import Report


def ask_yes_no(prompt: str) -> bool:
    if not sys.stdin or not sys.stdin.isatty():
        return False
    try:
        answer = input(f"{prompt} (y/N): ")
    except EOFError:
        return False
    return answer.strip().lower() in {'y', 'yes'}


@dataclass
class Session:
    """State owned by a single command invocation."""

    settings: Settings = field(default_factory=Settings)
    report: Optional[Report] = None
    cache: HashCache = field(default_factory=HashCache)
    backups: Optional[BackupController] = None
    prompt: Callable[[str], bool] = ask_yes_no

    def __post_init__(self):
        if self.report is None:
            self.report = Report(syslog=self.settings.syslog)
        if self.backups is None:
            self.backups = BackupController(
                self.settings.limine_conf,
                self.report,
                marker=self.settings.backup_marker,
            )

    def confirm(self, prompt: str) -> bool:
        if self.settings.assume_yes:
            return True
        return self.prompt(prompt)
