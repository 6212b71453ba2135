import hashlib
import os

import pytest

from limineguard.config import Settings
from limineguard.session import Session

MACHINE_ID = "0123456789abcdef0123456789abcdef"


def b2(data: bytes) -> str:
    return hashlib.blake2b(data).hexdigest()


def sha(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class BootTree:
    """A throwaway /boot with a UKI, the Limine loader and snapshot images."""

    def __init__(self, root):
        self.root = root
        self.boot = root / "boot"
        self.boot.mkdir()
        self.conf = self.boot / "limine.conf"
        self.machine_id_file = root / "machine-id"
        self.machine_id_file.write_text(MACHINE_ID + "\n")
        self.history = self.boot / MACHINE_ID / "limine_history"

    @property
    def uki_name(self) -> str:
        return f"{MACHINE_ID}_linux.efi"

    def write(self, relpath: str, data: bytes):
        path = self.boot / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path

    def uki(self, data: bytes = b"kernel image"):
        return self.write(f"EFI/Linux/{self.uki_name}", data)

    def snapshot(self, data: bytes, physical: bool = True) -> str:
        """Create a snapshot image and return its limine image_path value."""
        name = f"{self.uki_name}_sha256_{sha(data)}"
        if physical:
            self.history.mkdir(parents=True, exist_ok=True)
            (self.history / name).write_bytes(data)
        return f"boot():/{MACHINE_ID}/limine_history/{name}"

    def uki_path(self) -> str:
        return f"boot():/EFI/Linux/{self.uki_name}"

    def write_conf(self, text: str):
        self.conf.write_bytes(text.encode())

    def conf_bytes(self) -> bytes:
        return self.conf.read_bytes()

    def backups(self):
        return sorted(p for p in os.listdir(self.boot) if p.startswith("limine.conf.backup."))

    def settings(self, **overrides) -> Settings:
        values = dict(
            limine_conf=str(self.conf),
            boot_dir=str(self.boot),
            machine_id_file=str(self.machine_id_file),
            hook_path=str(self.root / "hooks" / "99-limineguard.hook"),
            syslog=False,
        )
        values.update(overrides)
        return Settings(**values)


@pytest.fixture
def tree(tmp_path):
    return BootTree(tmp_path)


@pytest.fixture
def answers():
    """Records confirmation prompts; answer with ``answers.reply``."""

    class Answers:
        reply = True
        prompts = []

        def __call__(self, prompt):
            self.prompts.append(prompt)
            return self.reply

    a = Answers()
    a.prompts = []
    return a


@pytest.fixture
def session(tree, answers):
    return Session(tree.settings(), prompt=answers)
