"""Dump executor built on the external ``pg_dump`` utility."""

import os
from typing import BinaryIO, Dict, List, Optional

from pgbackup.constants import DEFAULT_DUMP_COMMAND, PASSWORD_ENV_VAR
from pgbackup.errors import DumpError, DumpSpawnError
from pgbackup.errors_catalog import actionable_error
from pgbackup.models import ConnectionProfile


class PgDumpRunner:
    """Produces the plain SQL dump of one database.

    Anything with ``run(profile, database) -> bytes`` and
    ``stream(profile, database, sink) -> int`` can stand in for this class,
    which keeps the orchestrator testable without a real ``pg_dump``.
    """

    def __init__(
        self,
        command_runner,
        logger,
        command: str = DEFAULT_DUMP_COMMAND,
        timeout: Optional[float] = None,
        base_env: Optional[Dict[str, str]] = None,
    ):
        self.command_runner = command_runner
        self.logger = logger
        self.command = command
        self.timeout = timeout
        self.base_env = base_env

    def build_command(self, profile: ConnectionProfile, database: str) -> List[str]:
        return [
            self.command,
            "-h",
            profile.host,
            "-p",
            str(profile.port),
            "-d",
            database,
            "-U",
            profile.username,
        ]

    def build_env(self, profile: ConnectionProfile) -> Dict[str, str]:
        env = dict(os.environ if self.base_env is None else self.base_env)
        if profile.password is not None:
            env[PASSWORD_ENV_VAR] = profile.password
        return env

    def run(self, profile: ConnectionProfile, database: str) -> bytes:
        try:
            result = self.command_runner.run(
                self.build_command(profile, database),
                env=self.build_env(profile),
                timeout=self.timeout,
            )
        except DumpError as exc:
            raise self._with_database(exc, database)

        output = result.stdout or b""
        self.logger.info("Dumped %s: %s bytes", database, len(output))
        return output

    def stream(self, profile: ConnectionProfile, database: str, sink: BinaryIO) -> int:
        try:
            written = self.command_runner.stream(
                self.build_command(profile, database),
                sink,
                env=self.build_env(profile),
                timeout=self.timeout,
            )
        except DumpError as exc:
            raise self._with_database(exc, database)

        self.logger.info("Dumped %s: %s bytes (streamed)", database, written)
        return written

    def _with_database(self, exc: DumpError, database: str) -> DumpError:
        exc.database = database
        if isinstance(exc, DumpSpawnError):
            self.logger.error(actionable_error("dump_not_found", command=self.command))
        return exc
