"""Domain errors for pgbackup."""


class BackupError(RuntimeError):
    """Raised when a backup run cannot continue safely."""


class ConfigError(BackupError):
    """Missing or invalid configuration value."""


class DatabaseConnectionError(BackupError):
    """The database server could not be reached or refused the credentials."""


class DiscoveryError(BackupError):
    """The catalog query listing databases failed."""


class DumpError(BackupError):
    """Base class for dump executor failures."""

    def __init__(self, message: str, database: str = ""):
        super().__init__(message)
        self.database = database


class DumpSpawnError(DumpError):
    """The dump utility could not be started."""


class DumpExecutionError(DumpError):
    """The dump utility started but did not finish successfully."""

    def __init__(self, message: str, database: str = "", returncode=None, stderr: str = ""):
        super().__init__(message, database=database)
        self.returncode = returncode
        self.stderr = stderr


class CompressionError(BackupError):
    """The gzip encoder could not be finalized."""


class UploadError(BackupError):
    """The object store rejected or failed the write."""


class RunFailedError(BackupError):
    """One or more databases failed while the run continued past errors."""

    def __init__(self, message: str, report):
        super().__init__(message)
        self.report = report


def format_error_chain(exc: BaseException) -> str:
    lines = [f"{type(exc).__name__}: {exc}"]
    seen = {id(exc)}
    current = exc.__cause__ or exc.__context__
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        lines.append(f"  caused by {type(current).__name__}: {current}")
        current = current.__cause__ or current.__context__
    return "\n".join(lines)
