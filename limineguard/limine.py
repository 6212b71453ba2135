"""Line model for ``limine.conf``.

The file is never parsed into a tree and re-rendered. Each line is kept
verbatim and classified as either an ``image_path:`` directive or anything
else; patching swaps one directive's hash suffix and leaves every other
byte alone.
"""
import os
import re
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple, Union

from .digests import IdentityDigest, VerificationDigest
from .discovery import extract_token

DIRECTIVE_RE = re.compile(
    r'^(?P<head>[ \t]*image_path:[ \t]*)'
    r'(?P<path>[^#\r\n]*)'
    r'(?:#(?P<hash>[^\r\n]*))?'
    r'(?P<eol>\r\n|\n|\r)?$',
    re.IGNORECASE,
)


@dataclass(frozen=True)
class OtherLine:
    line_number: int
    raw: str


@dataclass(frozen=True)
class DirectiveLine:
    line_number: int
    raw: str
    head: str
    declared_path: str
    declared_hash: str
    eol: str

    @property
    def declared_digest(self) -> Optional[VerificationDigest]:
        return VerificationDigest.parse(self.declared_hash)

    @property
    def filename(self) -> str:
        return re.split(r'[/\\:]', self.declared_path)[-1]

    @property
    def snapshot_token(self) -> Optional[IdentityDigest]:
        return extract_token(self.filename)

    def with_hash(self, digest: VerificationDigest) -> 'DirectiveLine':
        raw = f"{self.head}{self.declared_path}#{digest.hexdigest}{self.eol}"
        return replace(self, raw=raw, declared_hash=digest.hexdigest)


Line = Union[DirectiveLine, OtherLine]


def classify_line(line_number: int, raw: str) -> Line:
    m = DIRECTIVE_RE.match(raw)
    if not m:
        return OtherLine(line_number, raw)
    return DirectiveLine(
        line_number=line_number,
        raw=raw,
        head=m.group('head'),
        declared_path=m.group('path').rstrip(),
        declared_hash=(m.group('hash') or '').strip(),
        eol=m.group('eol') or '',
    )


class LimineConfig:
    def __init__(self, lines: List[Line]):
        self.lines = lines

    @classmethod
    def parse(cls, text: str) -> 'LimineConfig':
        return cls([classify_line(i, raw) for i, raw in enumerate(text.splitlines(keepends=True), start=1)])

    @classmethod
    def read(cls, path: str) -> 'LimineConfig':
        with open(path, 'r', encoding='utf-8', errors='surrogateescape', newline='') as f:
            return cls.parse(f.read())

    def text(self) -> str:
        return ''.join(line.raw for line in self.lines)

    def write(self, path: str) -> None:
        with open(path, 'w', encoding='utf-8', errors='surrogateescape', newline='') as f:
            f.write(self.text())
            f.flush()
            os.fsync(f.fileno())

    def __len__(self) -> int:
        return len(self.lines)

    def line(self, line_number: int) -> Line:
        return self.lines[line_number - 1]

    def directives(self) -> List[DirectiveLine]:
        return [line for line in self.lines if isinstance(line, DirectiveLine)]

    def current_lines(self, filename: str, history_marker: str) -> List[DirectiveLine]:
        """Directives naming ``filename`` exactly, outside the snapshot history."""
        return [
            d for d in self.directives()
            if d.filename == filename and history_marker not in d.declared_path
        ]

    def snapshot_lines(self, history_marker: str) -> List[Tuple[DirectiveLine, Optional[IdentityDigest]]]:
        return [
            (d, d.snapshot_token)
            for d in self.directives()
            if history_marker in d.declared_path
        ]

    def set_hash(self, line_number: int, expected_path: str, digest: VerificationDigest) -> bool:
        """Rewrite the hash suffix of one directive. Returns False if it was already current.

        ``expected_path`` is compared literally against the target line so a
        stale line number can never patch a different entry.
        """
        target = self.line(line_number)
        if not isinstance(target, DirectiveLine):
            raise ValueError(f"line {line_number} is not an image_path directive")
        if target.declared_path != expected_path:
            raise ValueError(
                f"line {line_number} declares {target.declared_path!r}, expected {expected_path!r}"
            )
        if target.declared_digest == digest:
            return False
        self.lines[line_number - 1] = target.with_hash(digest)
        return True

    def mentions(self, *needles: str) -> bool:
        lowered = self.text().lower()
        return any(n.lower() in lowered for n in needles)

    def append(self, text: str) -> None:
        if self.lines and not self.lines[-1].raw.endswith(('\n', '\r')):
            last = self.lines[-1]
            self.lines[-1] = classify_line(last.line_number, last.raw + '\n')
        start = len(self.lines) + 1
        for i, raw in enumerate(text.splitlines(keepends=True), start=start):
            self.lines.append(classify_line(i, raw))
