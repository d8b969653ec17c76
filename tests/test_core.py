import gzip
import json
import logging
import threading

import pytest

from pgbackup.core import BackupRunner
from pgbackup.errors import (
    CompressionError,
    DatabaseConnectionError,
    DiscoveryError,
    DumpExecutionError,
    DumpSpawnError,
    RunFailedError,
    UploadError,
)
from pgbackup.models import BackupSettings, ConnectionProfile
from pgbackup.services.compression import GzipCompressor
from pgbackup.services.manifest import ManifestService


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


class FakeConnection:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


class FakeCatalogService:
    def __init__(self, databases=(), connect_error=None, discover_error=None):
        self.databases = list(databases)
        self.connect_error = connect_error
        self.discover_error = discover_error
        self.connections = []

    def connect(self, profile):
        if self.connect_error:
            raise self.connect_error
        connection = FakeConnection()
        self.connections.append(connection)
        return connection

    def discover(self, connection):
        if self.discover_error:
            raise self.discover_error
        return list(self.databases)


class FakeDumpRunner:
    def __init__(self, outputs, on_dump=None):
        self.outputs = outputs
        self.on_dump = on_dump
        self.calls = []

    def _output(self, database):
        self.calls.append(database)
        if self.on_dump:
            self.on_dump(database)
        output = self.outputs[database]
        if isinstance(output, Exception):
            raise output
        return output

    def run(self, profile, database):
        return self._output(database)

    def stream(self, profile, database, sink):
        output = self._output(database)
        sink.write(output)
        return len(output)


class FakeUploader:
    def __init__(self, fail_keys=()):
        self.fail_keys = set(fail_keys)
        self.objects = {}

    def upload(self, bucket, key, data):
        if key in self.fail_keys:
            raise UploadError(f"Upload of `{key}` to bucket `{bucket}` failed.")
        self.objects[key] = data

    def upload_fileobj(self, bucket, key, fileobj):
        fileobj.seek(0)
        self.upload(bucket, key, fileobj.read())


class FailingCompressor(GzipCompressor):
    def compress(self, content):
        raise CompressionError("Could not gzip: interrupted write")


def _settings(**kwargs) -> BackupSettings:
    profile = ConnectionProfile(
        username="backup",
        password="s3cret",
        host="db.internal",
        port=5432,
        admin_database="postgres",
    )
    return BackupSettings(profile=profile, bucket="nightly-backups", **kwargs)


def build_runner(catalog, dump_runner, uploader=None, compressor=None, manifest_file=None, **kwargs):
    return BackupRunner(
        settings=_settings(**kwargs),
        catalog_service=catalog,
        dump_runner=dump_runner,
        compressor=compressor or GzipCompressor(logger=DummyLogger()),
        uploader=uploader or FakeUploader(),
        manifest_service=ManifestService(manifest_file, logger=DummyLogger(), bucket="nightly-backups"),
        output_console=DummyConsole(),
    )


THREE_DUMPS = {
    "tasks": b"-- tasks dump\n",
    "billing": b"-- billing dump\n",
    "audit": b"-- audit dump\n",
}


def test_run_backs_up_every_discovered_database_in_order():
    catalog = FakeCatalogService(["tasks", "billing", "audit"])
    dump_runner = FakeDumpRunner(THREE_DUMPS)
    uploader = FakeUploader()
    runner = build_runner(catalog, dump_runner, uploader)

    report = runner.run(run_date="2024-03-01")

    assert dump_runner.calls == ["tasks", "billing", "audit"]
    assert list(uploader.objects) == [
        "tasks/tasks.2024-03-01.sql.gz",
        "billing/billing.2024-03-01.sql.gz",
        "audit/audit.2024-03-01.sql.gz",
    ]
    assert gzip.decompress(uploader.objects["billing/billing.2024-03-01.sql.gz"]) == THREE_DUMPS["billing"]
    assert report.status == "success"
    assert [result.status for result in report.results] == ["success"] * 3
    assert report.results[0].dump_bytes == len(THREE_DUMPS["tasks"])
    assert catalog.connections[0].closed


def test_abort_policy_stops_run_at_first_failed_database():
    dumps = dict(THREE_DUMPS, billing=DumpExecutionError("pg_dump exited with 1", database="billing"))
    catalog = FakeCatalogService(["tasks", "billing", "audit"])
    dump_runner = FakeDumpRunner(dumps)
    uploader = FakeUploader()
    runner = build_runner(catalog, dump_runner, uploader, failure_policy="abort")

    with pytest.raises(DumpExecutionError):
        runner.run(run_date="2024-03-01")

    assert dump_runner.calls == ["tasks", "billing"]
    assert list(uploader.objects) == ["tasks/tasks.2024-03-01.sql.gz"]
    assert catalog.connections[0].closed


def test_continue_policy_isolates_failures_and_reports_them():
    dumps = dict(THREE_DUMPS, billing=DumpExecutionError("pg_dump exited with 1", database="billing"))
    catalog = FakeCatalogService(["tasks", "billing", "audit"])
    dump_runner = FakeDumpRunner(dumps)
    uploader = FakeUploader()
    runner = build_runner(catalog, dump_runner, uploader, failure_policy="continue")

    with pytest.raises(RunFailedError, match="1 of 3") as exc_info:
        runner.run(run_date="2024-03-01")

    report = exc_info.value.report
    assert dump_runner.calls == ["tasks", "billing", "audit"]
    assert "audit/audit.2024-03-01.sql.gz" in uploader.objects
    assert [item.database for item in report.failures] == ["billing"]
    assert report.status == "failed"
    assert catalog.connections[0].closed


def test_discovery_failure_backs_up_nothing():
    catalog = FakeCatalogService(discover_error=DiscoveryError("permission denied for pg_database"))
    dump_runner = FakeDumpRunner({})
    runner = build_runner(catalog, dump_runner)

    with pytest.raises(DiscoveryError):
        runner.run(run_date="2024-03-01")

    assert dump_runner.calls == []
    assert catalog.connections[0].closed


def test_connection_failure_aborts_run():
    catalog = FakeCatalogService(connect_error=DatabaseConnectionError("Could not connect"))
    runner = build_runner(catalog, FakeDumpRunner({}))

    with pytest.raises(DatabaseConnectionError):
        runner.run(run_date="2024-03-01")


def test_continue_policy_records_spawn_failure():
    dumps = {"tasks": DumpSpawnError("Could not start command `pg_dump`", database="tasks")}
    runner = build_runner(FakeCatalogService(["tasks"]), FakeDumpRunner(dumps), failure_policy="continue")

    with pytest.raises(RunFailedError) as exc_info:
        runner.run(run_date="2024-03-01")

    assert exc_info.value.report.failures[0].database == "tasks"


def test_compression_failure_aborts_under_default_policy():
    uploader = FakeUploader()
    runner = build_runner(
        FakeCatalogService(["tasks", "billing"]),
        FakeDumpRunner(THREE_DUMPS),
        uploader,
        compressor=FailingCompressor(logger=DummyLogger()),
    )

    with pytest.raises(CompressionError):
        runner.run(run_date="2024-03-01")

    assert uploader.objects == {}


def test_upload_failure_aborts_remaining_databases():
    catalog = FakeCatalogService(["tasks", "billing", "audit"])
    dump_runner = FakeDumpRunner(THREE_DUMPS)
    uploader = FakeUploader(fail_keys={"tasks/tasks.2024-03-01.sql.gz"})
    runner = build_runner(catalog, dump_runner, uploader)

    with pytest.raises(UploadError):
        runner.run(run_date="2024-03-01")

    assert dump_runner.calls == ["tasks"]


def test_empty_dump_is_uploaded_with_warning(caplog):
    uploader = FakeUploader()
    runner = build_runner(FakeCatalogService(["empty"]), FakeDumpRunner({"empty": b""}), uploader)

    with caplog.at_level(logging.WARNING, logger="pgbackup"):
        report = runner.run(run_date="2024-03-01")

    assert report.status == "success"
    assert gzip.decompress(uploader.objects["empty/empty.2024-03-01.sql.gz"]) == b""
    assert "produced no output" in caplog.text


def test_streaming_mode_uploads_gzip_of_dump():
    uploader = FakeUploader()
    runner = build_runner(
        FakeCatalogService(["tasks", "billing"]),
        FakeDumpRunner(THREE_DUMPS),
        uploader,
        streaming=True,
    )

    report = runner.run(run_date="2024-03-01")

    assert gzip.decompress(uploader.objects["tasks/tasks.2024-03-01.sql.gz"]) == THREE_DUMPS["tasks"]
    assert report.results[1].dump_bytes == len(THREE_DUMPS["billing"])
    assert report.results[1].compressed_bytes == len(uploader.objects["billing/billing.2024-03-01.sql.gz"])


def test_stop_requested_during_run_finishes_current_database_only():
    stop_event = threading.Event()
    catalog = FakeCatalogService(["tasks", "billing", "audit"])
    dump_runner = FakeDumpRunner(THREE_DUMPS, on_dump=lambda _database: stop_event.set())
    uploader = FakeUploader()
    runner = build_runner(catalog, dump_runner, uploader)

    report = runner.run(run_date="2024-03-01", stop_event=stop_event)

    assert dump_runner.calls == ["tasks"]
    assert list(uploader.objects) == ["tasks/tasks.2024-03-01.sql.gz"]
    assert report.status == "aborted"
    assert catalog.connections[0].closed


def test_run_defaults_to_current_utc_date():
    runner = build_runner(FakeCatalogService([]), FakeDumpRunner({}))

    report = runner.run()

    assert len(report.run_date) == 10
    assert report.run_date.count("-") == 2


def test_plan_lists_keys_without_dumping():
    catalog = FakeCatalogService(["tasks", "billing"])
    dump_runner = FakeDumpRunner(THREE_DUMPS)
    runner = build_runner(catalog, dump_runner)

    plan = runner.plan(run_date="2024-03-01")

    assert plan == [
        ("tasks", "tasks/tasks.2024-03-01.sql.gz"),
        ("billing", "billing/billing.2024-03-01.sql.gz"),
    ]
    assert dump_runner.calls == []
    assert catalog.connections[0].closed


def test_run_writes_manifest_when_configured(tmp_path):
    manifest_file = tmp_path / "manifest" / "last-run.json"
    dumps = dict(THREE_DUMPS, audit=DumpExecutionError("pg_dump exited with 1", database="audit"))
    runner = build_runner(
        FakeCatalogService(["tasks", "audit"]),
        FakeDumpRunner(dumps),
        manifest_file=str(manifest_file),
    )

    with pytest.raises(DumpExecutionError):
        runner.run(run_date="2024-03-01")

    data = json.loads(manifest_file.read_text(encoding="utf-8"))
    assert data["status"] == "failed"
    assert data["run_date"] == "2024-03-01"
    assert [entry["status"] for entry in data["databases"]] == ["success", "failed"]
    assert "pg_dump exited with 1" in data["error"]
    assert data["bucket"] == "nightly-backups"
    assert data["databases"][0]["key"] == "tasks/tasks.2024-03-01.sql.gz"
