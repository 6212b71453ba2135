import subprocess
from dataclasses import dataclass, field
from typing import List

from .config import LOG_TAG

LEVELS = {
    "emerg",
    "alert",
    "crit",
    "err",
    "warn",
    "notice",
    "info",
    "debug",
}


@dataclass
class Finding:
    issue: str
    details: str
    level: str = "info"


@dataclass
class Report:
    """Findings for one command run, mirrored to syslog as they arrive."""

    results: List[Finding] = field(default_factory=list)
    syslog: bool = True
    tag: str = LOG_TAG

    def add(self, issue: str, details: str = "", level: str = "info"):
        level = level if level in LEVELS else "info"
        self.results.append(Finding(issue, details, level))
        if not self.syslog:
            return
        message = f"{issue}: {details}" if details else issue
        try:
            subprocess.run([
                "logger",
                "-p",
                f"user.{level}",
                "-t",
                self.tag,
                "--",
                message,
            ], check=False)
        except OSError:
            pass

    def by_issue(self, issue: str) -> List[Finding]:
        return [r for r in self.results if r.issue == issue]

    def summary(self) -> str:
        lines = []
        for r in self.results:
            if r.level == "debug":
                continue
            prefix = f"[{r.level}] " if r.level != "info" else ""
            lines.append(f"{prefix}{r.issue}: {r.details}" if r.details else f"{prefix}{r.issue}")
        return "\n".join(lines)
