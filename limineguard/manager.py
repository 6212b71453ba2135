#!/usr/bin/env python3
"""Secure boot maintenance for Limine + UKI systems.

Signs the Linux EFI executables under ``/boot`` with ``sbctl`` and keeps
the blake2b hashes in ``limine.conf`` in step with the signed files. The
``update`` command is what the pacman hook runs after every transaction.
"""
import argparse
import os
import sys
from dataclasses import dataclass

from .config import KEY_DIRS, KEY_PATHS, SB_PACKAGES, Settings
from .discovery import EntryKind, find_boot_entries, get_machine_id
from .errors import LimineGuardError, PreconditionError
from .limine import LimineConfig
from .reconcile import Reconciler
from .session import Session
from .signing import SigningOrchestrator
from .tools import Sbctl, install_packages, keys_exist, missing_packages, remove_keys
from .windows import ensure_windows_entry, find_windows_bootmgr, report_unmounted_windows

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NOTHING_TO_CHECK = 3

HOOK_TEMPLATE = """# limineguard secure boot hook
# Re-signs EFI files and refreshes limine.conf hashes after package updates

[Trigger]
Operation = Install
Operation = Upgrade
Type = Package
Target = *

[Action]
Description = Secure boot maintenance (limineguard)
When = PostTransaction
Exec = {exe} update --yes
Depends = sbctl
"""

ENROLLMENT_STEPS = [
    "Reboot your system",
    "Enter the BIOS/UEFI setup (usually F2, F12 or Del during boot)",
    "Navigate to the Secure Boot settings",
    "Clear all existing keys to enter Setup Mode",
    "Save changes and reboot back to Linux",
    "Run: limineguard enroll",
]

FINAL_STEPS = [
    "Reboot your system",
    "Enter the BIOS/UEFI setup",
    "Enable Secure Boot",
    "Save and reboot",
]


@dataclass
class HashUpdate:
    current_changed: bool
    snapshots_updated: int
    snapshots_checked: int

    @property
    def changed(self) -> bool:
        return self.current_changed or self.snapshots_updated > 0


def require_root() -> None:
    if os.geteuid() != 0:
        err = PreconditionError("this command modifies /boot and must run as root")
        err.remedy = "Re-run it with sudo."
        raise err


def install_hook(session: Session, exe: str = '/usr/bin/limineguard') -> None:
    path = session.settings.hook_path
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        f.write(HOOK_TEMPLATE.format(exe=exe))
    session.report.add("Pacman hook installed", path, level="notice")


def add_steps(session: Session, title: str, steps) -> None:
    for number, step in enumerate(steps, start=1):
        session.report.add(title, f"{number}. {step}", level="notice")


def create_keys(session: Session, tool: Sbctl, key_paths=KEY_PATHS, key_dirs=KEY_DIRS) -> bool:
    """Generate signing keys. Returns True if a new key set now exists.

    Existing keys are only replaced after an explicit answer at the prompt;
    ``--yes`` does not imply it, since every signed file goes stale.
    """
    if keys_exist(tool, key_paths):
        session.report.add("Secure boot keys already exist", level="warn")
        if not session.prompt("Recreate keys? This will invalidate existing signatures"):
            session.report.add("Keeping existing keys")
            return False
        removed = remove_keys(key_dirs)
        session.report.add("Removed existing keys", " ".join(removed) or "nothing on disk", level="notice")
    if tool.create_keys():
        session.report.add("Keys created", level="notice")
        return True
    session.report.add("Failed to create keys", "run: sbctl create-keys", level="err")
    return False


def update_hashes(session: Session) -> HashUpdate:
    reconciler = Reconciler(session)
    current = reconciler.reconcile_current()
    updated, checked = reconciler.reconcile_snapshots()
    return HashUpdate(current, updated, checked)


def report_mismatches(session: Session) -> int:
    mismatches, checked = Reconciler(session).check_mismatches()
    if checked == 0:
        session.report.add("Hash check", "no entries found to check", level="notice")
        return EXIT_NOTHING_TO_CHECK
    if mismatches:
        session.report.add("Hash check", f"{mismatches} mismatches out of {checked} checked", level="warn")
        return EXIT_FAILED
    session.report.add("Hash check", f"all {checked} entries in sync")
    return EXIT_OK


def cmd_update(session: Session, tool: Sbctl) -> int:
    require_root()
    if not get_machine_id(session.settings.machine_id_file):
        err = PreconditionError("could not determine the machine ID")
        err.remedy = f"Create {session.settings.machine_id_file} with: systemd-machine-id-setup"
        raise err
    session.cache.clear()
    signer = SigningOrchestrator(session, tool)
    signed = signer.sign_all()
    result = update_hashes(session)
    verified, _ = signer.verify_all()

    if signed or result.changed:
        if verified:
            session.report.add("Maintenance complete", "all signatures verified")
        else:
            session.report.add("Maintenance complete", "some verification issues remain", level="warn")
    elif verified:
        session.report.add("No changes needed", "everything up to date")
    else:
        session.report.add("No changes made", "verification issues detected", level="warn")
    return EXIT_OK if verified else EXIT_FAILED


def cmd_sign(session: Session, tool: Sbctl) -> int:
    require_root()
    session.cache.clear()
    signer = SigningOrchestrator(session, tool)
    signer.sign_all()
    update_hashes(session)
    verified, _ = signer.verify_all()
    session.report.add("Manual signing complete")
    return EXIT_OK if verified else EXIT_FAILED


def cmd_status(session: Session, tool: Sbctl) -> int:
    try:
        missing = missing_packages()
    except PreconditionError as e:
        session.report.add("Package check skipped", str(e), level="warn")
    else:
        if missing:
            session.report.add("Missing packages", " ".join(missing), level="warn")
        else:
            session.report.add("Required packages installed", " ".join(SB_PACKAGES))

    if keys_exist(tool):
        session.report.add("Secure boot keys exist")
    else:
        session.report.add("No secure boot keys found", level="warn")

    if os.path.isfile(session.settings.hook_path):
        session.report.add("Automation installed", session.settings.hook_path)
    else:
        session.report.add("Automation not installed", f"missing {session.settings.hook_path}", level="warn")

    if not _has_windows_entry(session):
        if find_windows_bootmgr():
            session.report.add("Windows detected but not in boot menu", "run add-windows", level="warn")
        else:
            report_unmounted_windows(session)

    settings = session.settings
    for entry in find_boot_entries(settings.boot_dir, settings.history_marker):
        kind = "snapshot" if entry.kind is EntryKind.SNAPSHOT else "current"
        session.report.add("EFI file", f"{entry.filename} ({os.path.dirname(entry.path)}) [{kind}]")

    code = report_mismatches(session)
    if tool.available():
        status = tool.status()
        session.report.add(
            "Firmware",
            f"setup mode {_state(status.setup_mode)}, secure boot {_state(status.secure_boot)}",
        )
        verified, _ = SigningOrchestrator(session, tool).verify_all()
        if verified:
            session.report.add("All signatures verified")
        elif code == EXIT_OK:
            code = EXIT_FAILED
    else:
        session.report.add("sbctl not found", "install packages first", level="warn")
    return code


def cmd_setup(session: Session, tool: Sbctl) -> int:
    require_root()
    missing = missing_packages()
    if missing:
        session.report.add("Installing packages", " ".join(missing))
        if not install_packages(missing) or missing_packages():
            err = PreconditionError("failed to install " + " ".join(missing))
            err.remedy = "Install them manually: pacman -S " + " ".join(missing)
            raise err
    install_hook(session)

    create_keys(session, tool)

    session.cache.clear()
    signer = SigningOrchestrator(session, tool)
    if signer.sign_all():
        update_hashes(session)
    signer.verify_all()
    ensure_windows_entry(session)

    if not keys_exist(tool):
        session.report.add("No secure boot keys found", "create them with sbctl create-keys, then run enroll", level="warn")
        return EXIT_OK
    status = tool.status()
    if status.setup_mode:
        session.report.add("Key enrollment required", "firmware is in Setup Mode; run: limineguard enroll", level="notice")
    elif status.secure_boot:
        session.report.add("Secure boot fully operational", "keys are enrolled")
    else:
        session.report.add("Key enrollment required", "keys are not enrolled in the firmware yet", level="notice")
        add_steps(session, "Enrollment step", ENROLLMENT_STEPS)
    return EXIT_OK


def cmd_enroll(session: Session, tool: Sbctl) -> int:
    require_root()
    if not keys_exist(tool):
        err = PreconditionError("no secure boot keys found")
        err.remedy = "Create keys first: limineguard setup (or sbctl create-keys)"
        raise err
    status = tool.status()
    if status.setup_mode is True:
        session.report.add("System is in Setup Mode", "ready for enrollment")
    else:
        reason = "Setup Mode is disabled" if status.setup_mode is False else "Setup Mode state unknown"
        session.report.add("Enrollment may fail", reason, level="warn")
        if not session.confirm("Continue with key enrollment anyway?"):
            session.report.add("Key enrollment cancelled")
            return EXIT_OK
    if not tool.enroll_keys():
        session.report.add("Key enrollment failed", "system not in Setup Mode or EFI variables not writable", level="err")
        return EXIT_FAILED
    session.report.add("Keys enrolled", level="notice")
    add_steps(session, "Final step", FINAL_STEPS)
    return EXIT_OK


def cmd_add_windows(session: Session, tool: Sbctl) -> int:
    require_root()
    ensure_windows_entry(session)
    return EXIT_OK


def _has_windows_entry(session: Session) -> bool:
    try:
        return LimineConfig.read(session.settings.limine_conf).mentions('windows', 'bootmgfw')
    except OSError:
        return False


def _state(flag) -> str:
    if flag is None:
        return "unknown"
    return "enabled" if flag else "disabled"


COMMANDS = {
    'setup': cmd_setup,
    'enroll': cmd_enroll,
    'update': cmd_update,
    'sign': cmd_sign,
    'status': cmd_status,
    'add-windows': cmd_add_windows,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Secure boot signing and limine.conf hash maintenance"
    )
    parser.add_argument('command', choices=sorted(COMMANDS))
    parser.add_argument('--config', default=Settings.limine_conf, help='Path to limine.conf')
    parser.add_argument('--boot-dir', default=Settings.boot_dir, help='Boot partition mount point')
    parser.add_argument('--machine-id-file', default=Settings.machine_id_file)
    parser.add_argument('-y', '--yes', action='store_true', help='Do not ask for confirmation')
    parser.add_argument('--no-syslog', action='store_true', help='Do not mirror findings to syslog')
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env(
        limine_conf=args.config,
        boot_dir=args.boot_dir,
        machine_id_file=args.machine_id_file,
        syslog=not args.no_syslog,
    )
    if args.yes:
        settings.assume_yes = True
    session = Session(settings)
    try:
        code = COMMANDS[args.command](session, Sbctl())
    except LimineGuardError as e:
        session.report.add("Error", str(e), level="err")
        print(session.report.summary())
        print(f"ERROR: {e}", file=sys.stderr)
        if e.remedy:
            print(e.remedy, file=sys.stderr)
        return EXIT_FAILED
    print(session.report.summary())
    return code


if __name__ == '__main__':
    sys.exit(main())
