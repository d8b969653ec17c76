"""
pgbackup - Scheduled PostgreSQL backups to S3
"""

__version__ = "0.3.0"

from .core import BackupRunner
from .errors import BackupError

__all__ = ["BackupRunner", "BackupError"]
