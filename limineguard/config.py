import os
from dataclasses import dataclass

LIMINE_CONF = '/boot/limine.conf'
BOOT_DIR = '/boot'
MACHINE_ID_FILE = '/etc/machine-id'
HOOK_PATH = '/etc/pacman.d/hooks/99-limineguard.hook'

LOG_TAG = 'limineguard'

# Directory limine-snapper-sync keeps snapshot UKIs in
HISTORY_MARKER = 'limine_history'
BACKUP_MARKER = 'backup'

EFI_SUFFIX = '.efi'
FOREIGN_MARKERS = ('microsoft', 'windows', 'bootmgfw')

SB_PACKAGES = ['sbctl', 'efitools', 'sbsigntools']
KEY_PATHS = [
    '/usr/share/secureboot/keys/db/db.key',
    '/var/lib/sbctl/keys/db/db.key',
    '/var/lib/sbctl/keys',
]
# Removed when keys are recreated
KEY_DIRS = [
    '/usr/share/secureboot/keys',
    '/var/lib/sbctl/keys',
]

# Seconds
VERIFY_TIMEOUT = 5
SIGN_TIMEOUT = 60
STATUS_TIMEOUT = 10
KEYS_TIMEOUT = 120
QUERY_TIMEOUT = 5
PACKAGE_TIMEOUT = 600

ASSUME_YES_ENV = 'LIMINEGUARD_ASSUME_YES'


@dataclass
class Settings:
    limine_conf: str = LIMINE_CONF
    boot_dir: str = BOOT_DIR
    machine_id_file: str = MACHINE_ID_FILE
    hook_path: str = HOOK_PATH
    history_marker: str = HISTORY_MARKER
    backup_marker: str = BACKUP_MARKER
    assume_yes: bool = False
    syslog: bool = True

    @classmethod
    def from_env(cls, **overrides) -> 'Settings':
        settings = cls(**overrides)
        if os.environ.get(ASSUME_YES_ENV, '').strip().lower() in {'1', 'yes', 'true'}:
            settings.assume_yes = True
        return settings
