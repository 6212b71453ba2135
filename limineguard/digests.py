"""Digest value types.

Two hash namespaces live side by side in a Limine setup: the sha256 that
limine-snapper-sync embeds in snapshot file names, and the blake2b suffix
Limine checks at boot. They are kept as separate types so one can never be
compared against, or written in place of, the other.
"""
import hashlib
import re
from dataclasses import dataclass

CHUNK_SIZE = 65536

_HEX64 = re.compile(r'^[0-9a-f]{64}$')
_HEX128 = re.compile(r'^[0-9a-f]{128}$')


@dataclass(frozen=True)
class IdentityDigest:
    hexdigest: str

    def __post_init__(self):
        if not _HEX64.match(self.hexdigest):
            raise ValueError(f"not a sha256 hex digest: {self.hexdigest!r}")

    def short(self, n: int = 16) -> str:
        return self.hexdigest[:n] + "..."

    def __str__(self) -> str:
        return self.hexdigest


@dataclass(frozen=True)
class VerificationDigest:
    hexdigest: str

    def __post_init__(self):
        if not _HEX128.match(self.hexdigest):
            raise ValueError(f"not a blake2b hex digest: {self.hexdigest!r}")

    @classmethod
    def parse(cls, text: str):
        """Return a digest for ``text`` or None if it is not a valid one."""
        text = (text or '').strip().lower()
        if not _HEX128.match(text):
            return None
        return cls(text)

    def short(self, n: int = 16) -> str:
        return self.hexdigest[:n] + "..."

    def __str__(self) -> str:
        return self.hexdigest


def blake2b_file(path: str) -> VerificationDigest:
    h = hashlib.blake2b()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b''):
            h.update(chunk)
    return VerificationDigest(h.hexdigest())
