import re

import pytest

from limineguard.backup import BackupController, backup_path
from limineguard.errors import BackupError, MutationError
from limineguard.report import Report


@pytest.fixture
def conf(tmp_path):
    path = tmp_path / "limine.conf"
    path.write_bytes(b"timeout: 3\nimage_path: boot():/x.efi\n")
    return path


@pytest.fixture
def controller(conf):
    return BackupController(str(conf), Report(syslog=False))


def test_backup_path_format():
    assert re.fullmatch(r"/boot/limine\.conf\.backup\.\d{8}_\d{6}", backup_path("/boot/limine.conf"))


def test_backup_copies_bytes(controller, conf):
    target = controller.backup()
    assert controller.backups == [target]
    with open(target, "rb") as f:
        assert f.read() == conf.read_bytes()


def test_backup_of_missing_file(tmp_path):
    controller = BackupController(str(tmp_path / "missing.conf"), Report(syslog=False))
    with pytest.raises(BackupError):
        controller.backup()
    assert controller.backups == []


def test_restore_without_backup(controller):
    assert controller.restore_latest() is False


def test_restore_uses_most_recent(controller, conf, tmp_path):
    older = tmp_path / "older"
    older.write_bytes(b"older")
    controller.backups.append(str(older))
    latest = controller.backup()
    conf.write_bytes(b"garbage")
    assert controller.restore_latest()
    with open(latest, "rb") as f:
        assert conf.read_bytes() == f.read()


def test_failed_mutation_restores_latest_backup(controller, conf):
    original = conf.read_bytes()
    controller.backup()
    with pytest.raises(MutationError) as exc:
        with controller.mutation("test write"):
            conf.write_bytes(b"half written")
            raise OSError("disk full")
    assert exc.value.restored
    assert conf.read_bytes() == original
    assert controller.in_flight is False


def test_failed_mutation_without_backup(controller, conf):
    with pytest.raises(MutationError) as exc:
        with controller.mutation("test write"):
            conf.write_bytes(b"half written")
            raise OSError("disk full")
    assert not exc.value.restored
    assert conf.read_bytes() == b"half written"


def test_successful_mutation_clears_flag(controller, conf):
    controller.backup()
    with controller.mutation("test write"):
        assert controller.in_flight
        conf.write_bytes(b"new")
    assert controller.in_flight is False
    assert conf.read_bytes() == b"new"
