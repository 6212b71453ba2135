class LimineGuardError(Exception):
    """Base class for failures that end a command."""

    remedy = ''


class PreconditionError(LimineGuardError):
    pass


class ToolMissing(PreconditionError):
    def __init__(self, tool: str, package: str = ''):
        self.tool = tool
        self.remedy = f"Install it first: pacman -S {package or tool}"
        super().__init__(f"required tool '{tool}' is not installed")


class ToolTimeout(PreconditionError):
    def __init__(self, command: str, timeout: float):
        self.command = command
        self.timeout = timeout
        super().__init__(f"'{command}' did not finish within {timeout}s")


class HashUnavailable(LimineGuardError):
    """A single file could not be hashed. Callers skip the entry."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"cannot hash {path}: {reason}")


class BackupError(LimineGuardError):
    pass


class MutationError(LimineGuardError):
    def __init__(self, message: str, restored: bool = False):
        self.restored = restored
        if restored:
            self.remedy = "limine.conf was restored from the most recent backup."
        else:
            self.remedy = "limine.conf may be partially updated; compare it with its .backup.* copies."
        super().__init__(message)
