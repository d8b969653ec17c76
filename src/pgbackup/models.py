"""Shared domain models for pgbackup."""

from dataclasses import dataclass, field
from datetime import time
from typing import List, Optional

from pgbackup.constants import DEFAULT_DUMP_COMMAND, FAILURE_POLICY_ABORT


@dataclass(frozen=True)
class ConnectionProfile:
    """Credentials and address of the server being backed up."""

    username: str
    host: str
    port: int
    admin_database: str
    password: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class BackupSettings:
    """Validated settings for one run, loaded from the environment."""

    profile: ConnectionProfile
    bucket: str
    schedule_time: Optional[time] = None
    region: Optional[str] = None
    endpoint_url: Optional[str] = None
    failure_policy: str = FAILURE_POLICY_ABORT
    streaming: bool = False
    dump_command: str = DEFAULT_DUMP_COMMAND
    dump_timeout: Optional[float] = None
    manifest_file: Optional[str] = None


@dataclass
class DatabaseResult:
    database: str
    key: str
    status: str = "pending"
    dump_bytes: Optional[int] = None
    compressed_bytes: Optional[int] = None
    error: Optional[str] = None


@dataclass
class RunReport:
    """Outcome of one scheduled tick."""

    run_date: str
    status: str = "running"
    databases: List[str] = field(default_factory=list)
    results: List[DatabaseResult] = field(default_factory=list)

    @property
    def failures(self) -> List[DatabaseResult]:
        return [result for result in self.results if result.status == "failed"]

    @property
    def succeeded(self) -> List[DatabaseResult]:
        return [result for result in self.results if result.status == "success"]
