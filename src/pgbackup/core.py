import logging
import tempfile
import threading
from datetime import date, datetime, timezone
from typing import List, Optional, Tuple, Union

from rich.console import Console

from .constants import FAILURE_POLICY_ABORT, SPOOL_MAX_BYTES
from .errors import BackupError, RunFailedError
from .models import BackupSettings, DatabaseResult, RunReport
from .services.catalog import CatalogService
from .services.command_runner import CommandRunner
from .services.compression import GzipCompressor
from .services.dump import PgDumpRunner
from .services.manifest import ManifestService
from .services.storage import S3Uploader, build_s3_client, object_key

console = Console()
logger = logging.getLogger("pgbackup")


class BackupRunner:
    """Runs one backup tick: discover every database, then dump, gzip and upload each."""

    def __init__(
        self,
        settings: BackupSettings,
        catalog_service: Optional[CatalogService] = None,
        dump_runner=None,
        compressor: Optional[GzipCompressor] = None,
        uploader: Optional[S3Uploader] = None,
        manifest_service: Optional[ManifestService] = None,
        output_console: Optional[Console] = None,
    ):
        self.settings = settings
        self.profile = settings.profile
        self.console = output_console or console

        self.catalog_service = catalog_service or CatalogService(logger=logger)
        self.dump_runner = dump_runner or PgDumpRunner(
            command_runner=CommandRunner(logger=logger),
            logger=logger,
            command=settings.dump_command,
            timeout=settings.dump_timeout,
        )
        self.compressor = compressor or GzipCompressor(logger=logger)
        self.uploader = uploader or S3Uploader(
            client=build_s3_client(region=settings.region, endpoint_url=settings.endpoint_url),
            logger=logger,
        )
        self.manifest_service = manifest_service or ManifestService(
            manifest_file=settings.manifest_file,
            logger=logger,
            bucket=settings.bucket,
        )

    @staticmethod
    def format_run_date(run_date: Union[date, str, None] = None) -> str:
        if run_date is None:
            run_date = datetime.now(timezone.utc).date()
        if isinstance(run_date, date):
            return run_date.strftime("%Y-%m-%d")
        return run_date

    def _close(self, connection):
        try:
            connection.close()
        except Exception as exc:
            logger.warning("Could not close the discovery connection cleanly: %s", exc)

    def discover(self) -> List[str]:
        connection = self.catalog_service.connect(self.profile)
        try:
            return self.catalog_service.discover(connection)
        finally:
            self._close(connection)

    def plan(self, run_date: Union[date, str, None] = None) -> List[Tuple[str, str]]:
        """Return ``(database, key)`` pairs a run on ``run_date`` would write."""
        run_date_str = self.format_run_date(run_date)
        return [(database, object_key(database, run_date_str)) for database in self.discover()]

    def backup_database(self, database: str, result: DatabaseResult):
        if self.settings.streaming:
            self._backup_streaming(database, result)
        else:
            self._backup_buffered(database, result)

    def _backup_buffered(self, database: str, result: DatabaseResult):
        dump = self.dump_runner.run(self.profile, database)
        result.dump_bytes = len(dump)
        self._warn_if_empty(database, result.dump_bytes)

        compressed = self.compressor.compress(dump)
        result.compressed_bytes = len(compressed)

        self.uploader.upload(self.settings.bucket, result.key, compressed)

    def _backup_streaming(self, database: str, result: DatabaseResult):
        with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_BYTES) as spool:
            with self.compressor.open_writer(spool) as writer:
                result.dump_bytes = self.dump_runner.stream(self.profile, database, writer)
            self._warn_if_empty(database, result.dump_bytes)

            result.compressed_bytes = spool.tell()
            logger.info(
                "Compressed %s bytes to %s bytes using gzip",
                result.dump_bytes,
                result.compressed_bytes,
            )
            self.uploader.upload_fileobj(self.settings.bucket, result.key, spool)

    @staticmethod
    def _warn_if_empty(database: str, size: int):
        if size == 0:
            logger.warning("Dump of %s produced no output; uploading an empty archive.", database)

    def run(
        self,
        run_date: Union[date, str, None] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> RunReport:
        run_date_str = self.format_run_date(run_date)
        report = RunReport(run_date=run_date_str)
        abort_on_error = self.settings.failure_policy == FAILURE_POLICY_ABORT
        manifest_error: Optional[str] = None

        logger.info("Starting backup run for %s", run_date_str)
        self.manifest_service.start_run(report)

        try:
            connection = self.catalog_service.connect(self.profile)
            try:
                report.databases = self.catalog_service.discover(connection)

                for index, database in enumerate(report.databases):
                    if stop_event is not None and stop_event.is_set():
                        logger.warning(
                            "Stop requested; skipping %s remaining database(s).",
                            len(report.databases) - index,
                        )
                        report.status = "aborted"
                        break

                    result = DatabaseResult(
                        database=database,
                        key=object_key(database, run_date_str),
                        status="running",
                    )
                    report.results.append(result)
                    self.manifest_service.record(report)
                    self.console.print(f"[blue]Backing up {database}...[/blue]")

                    try:
                        self.backup_database(database, result)
                    except BackupError as exc:
                        result.status = "failed"
                        result.error = str(exc)
                        self.manifest_service.record(report)
                        if abort_on_error:
                            raise
                        logger.error("Backup of %s failed, continuing: %s", database, exc)
                        continue

                    result.status = "success"
                    self.manifest_service.record(report)
            finally:
                self._close(connection)

            if report.failures:
                failed = ", ".join(item.database for item in report.failures)
                raise RunFailedError(
                    f"{len(report.failures)} of {len(report.results)} database backup(s) failed: {failed}",
                    report=report,
                )

            if report.status != "aborted":
                report.status = "success"
            self.console.print(
                f"[green]Backed up {len(report.succeeded)} database(s) for {run_date_str}.[/green]"
            )
            logger.info("Backup run for %s finished: %s", run_date_str, report.status)
            return report

        except BackupError as exc:
            report.status = "failed"
            manifest_error = str(exc)
            logger.error("Backup run for %s failed: %s", run_date_str, exc)
            raise
        finally:
            if report.status == "running":
                report.status = "failed"
            self.manifest_service.record(report, error=manifest_error)
