"""Compare the blake2b suffixes in ``limine.conf`` with the files on disk."""
from typing import List, Optional, Tuple

from .discovery import (
    BootEntry,
    find_boot_entries,
    get_machine_id,
    select_current_uki,
    snapshot_index,
)
from .digests import VerificationDigest
from .errors import HashUnavailable
from .limine import DirectiveLine, LimineConfig
from .session import Session


def _short(digest: Optional[VerificationDigest]) -> str:
    return digest.short() if digest is not None else "(none)"


class Reconciler:
    def __init__(self, session: Session):
        self.session = session
        self.settings = session.settings
        self.report = session.report

    def _load(self) -> Optional[LimineConfig]:
        try:
            return LimineConfig.read(self.settings.limine_conf)
        except FileNotFoundError:
            self.report.add("limine.conf not found", self.settings.limine_conf, level="notice")
        except OSError as e:
            self.report.add("limine.conf unreadable", f"{self.settings.limine_conf}: {e}", level="err")
        return None

    def _entries(self) -> List[BootEntry]:
        return find_boot_entries(self.settings.boot_dir, self.settings.history_marker)

    def _current(self, entries: List[BootEntry]) -> Optional[BootEntry]:
        return select_current_uki(entries, get_machine_id(self.settings.machine_id_file))

    def _hash(self, entry: BootEntry) -> Optional[VerificationDigest]:
        try:
            return self.session.cache.get_hash(entry.path)
        except HashUnavailable as e:
            self.report.add("Hash failed", str(e), level="warn")
            return None

    def _report_mismatch(self, name: str, line: DirectiveLine, live: VerificationDigest) -> None:
        self.report.add(
            "Hash mismatch",
            f"{name} (line {line.line_number}): declared {_short(line.declared_digest)} "
            f"actual {live.short()}",
            level="warn",
        )

    def check_mismatches(self) -> Tuple[int, int]:
        """Return ``(mismatch_count, total_checked)`` without touching the file.

        Counts are per boot image, not per config line: an image named by
        several lines is checked once and is one mismatch if any line is stale.
        """
        config = self._load()
        if config is None:
            return 0, 0
        entries = self._entries()
        mismatches = checked = 0

        current = self._current(entries)
        if current is not None:
            lines = config.current_lines(current.filename, self.settings.history_marker)
            live = self._hash(current) if lines else None
            if live is not None:
                checked += 1
                stale = [l for l in lines if l.declared_digest != live]
                for line in stale:
                    self._report_mismatch(current.filename, line, live)
                if stale:
                    mismatches += 1

        snapshot_lines = config.snapshot_lines(self.settings.history_marker)
        index = snapshot_index(entries)
        for token, entry in index.items():
            lines = [d for d, t in snapshot_lines if t == token]
            if not lines:
                continue
            live = self._hash(entry)
            if live is None:
                continue
            checked += 1
            stale = [l for l in lines if l.declared_digest != live]
            for line in stale:
                self._report_mismatch(entry.filename, line, live)
            if stale:
                mismatches += 1

        for line, token in snapshot_lines:
            if token is not None and token not in index:
                self.report.add("Snapshot file not found", line.declared_path, level="warn")
        return mismatches, checked

    def reconcile_current(self) -> bool:
        """Bring the live kernel's hash suffix up to date. Returns True if the file changed."""
        config = self._load()
        if config is None:
            return False
        current = self._current(self._entries())
        if current is None:
            self.report.add("No kernel image found", self.settings.boot_dir, level="notice")
            return False
        lines = config.current_lines(current.filename, self.settings.history_marker)
        if not lines:
            self.report.add("No limine.conf entry", current.filename, level="notice")
            return False
        live = self._hash(current)
        if live is None:
            return False
        stale = [l for l in lines if l.declared_digest != live]
        if not stale:
            return False

        backups = self.session.backups
        backups.backup()
        # Every matching line gets the same suffix, each targeted by line number.
        with backups.mutation(f"hash update for {current.filename}"):
            for line in stale:
                config.set_hash(line.line_number, line.declared_path, live)
                config.write(self.settings.limine_conf)
        self.report.add("Hash updated", f"{current.filename}: {live.short()}", level="notice")
        return True

    def reconcile_snapshots(self) -> Tuple[int, int]:
        """Return ``(updated_count, checked_count)`` for the snapshot entries.

        Both counts are per snapshot image, as in :meth:`check_mismatches`:
        several lines naming the same image count once.
        """
        config = self._load()
        if config is None:
            return 0, 0
        index = snapshot_index(self._entries())
        pending = []
        checked = set()
        live_by_token = {}
        for line, token in config.snapshot_lines(self.settings.history_marker):
            if token is None:
                self.report.add("Snapshot entry without digest", line.declared_path, level="warn")
                continue
            entry = index.get(token)
            if entry is None:
                self.report.add("Snapshot file not found", line.declared_path, level="warn")
                continue
            if token not in live_by_token:
                live_by_token[token] = self._hash(entry)
            live = live_by_token[token]
            if live is None:
                continue
            checked.add(token)
            if line.declared_digest != live:
                self._report_mismatch(entry.filename, line, live)
                pending.append((line, token, live))

        if not pending:
            return 0, len(checked)
        stale = {token for _, token, _ in pending}
        if not self.session.confirm(
            f"Update {len(stale)} snapshot hash(es) in {self.settings.limine_conf}?"
        ):
            self.report.add("Snapshot update declined", f"{len(stale)} left unchanged")
            return 0, len(checked)

        backups = self.session.backups
        backups.backup()
        updated = set()
        with backups.mutation(f"update of {len(stale)} snapshot hash(es)"):
            for line, token, live in pending:
                if config.set_hash(line.line_number, line.declared_path, live):
                    config.write(self.settings.limine_conf)
                    updated.add(token)
        self.report.add("Snapshot hashes updated", f"{len(updated)} of {len(checked)}", level="notice")
        return len(updated), len(checked)
