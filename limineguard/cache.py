import os
from dataclasses import dataclass
from typing import Dict

from . import digests
from .digests import VerificationDigest
from .errors import HashUnavailable


@dataclass(frozen=True)
class HashCacheEntry:
    path: str
    hash: VerificationDigest
    mtime: int


class HashCache:
    """In-memory blake2b cache keyed by path, invalidated on mtime change.

    Every lookup costs one ``stat``; the file is only re-read when its
    modification time differs from the one recorded with the hash.
    """

    def __init__(self):
        self._entries: Dict[str, HashCacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: str) -> bool:
        return path in self._entries

    def get_hash(self, path: str) -> VerificationDigest:
        try:
            st = os.stat(path)
        except FileNotFoundError:
            self._entries.pop(path, None)
            raise HashUnavailable(path, "file not found")
        except OSError as e:
            raise HashUnavailable(path, e.strerror or str(e))

        entry = self._entries.get(path)
        if entry is not None and entry.mtime == st.st_mtime_ns:
            return entry.hash

        try:
            value = digests.blake2b_file(path)
        except OSError as e:
            raise HashUnavailable(path, e.strerror or str(e))
        self._entries[path] = HashCacheEntry(path, value, st.st_mtime_ns)
        return value

    def invalidate(self, path: str) -> None:
        self._entries.pop(path, None)

    def clear(self) -> None:
        self._entries.clear()
