import io
from datetime import date

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from pgbackup.errors import UploadError
from pgbackup.services.storage import S3Uploader, object_key


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None


class FakeS3Client:
    def __init__(self, error=None):
        self.error = error
        self.objects = {}
        self.calls = []

    def put_object(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        body = kwargs["Body"]
        if hasattr(body, "read"):
            body = body.read()
        self.objects[(kwargs["Bucket"], kwargs["Key"])] = body
        return {"ETag": '"abc"'}


def test_object_key_uses_database_and_date():
    assert object_key("tasks", "2024-03-01") == "tasks/tasks.2024-03-01.sql.gz"


def test_object_key_formats_date_objects():
    assert object_key("billing", date(2024, 3, 1)) == "billing/billing.2024-03-01.sql.gz"


def test_object_key_is_stable_for_same_inputs():
    assert object_key("tasks", date(2024, 3, 1)) == object_key("tasks", "2024-03-01")


def test_upload_writes_full_object():
    client = FakeS3Client()
    uploader = S3Uploader(client=client, logger=DummyLogger())

    uploader.upload("backups", "tasks/tasks.2024-03-01.sql.gz", b"\x1f\x8bdata")

    call = client.calls[0]
    assert call["Bucket"] == "backups"
    assert call["Key"] == "tasks/tasks.2024-03-01.sql.gz"
    assert call["ContentLength"] == 6
    assert call["ContentType"] == "application/gzip"
    assert client.objects[("backups", "tasks/tasks.2024-03-01.sql.gz")] == b"\x1f\x8bdata"


def test_upload_overwrites_existing_key():
    client = FakeS3Client()
    uploader = S3Uploader(client=client, logger=DummyLogger())

    uploader.upload("backups", "tasks/tasks.2024-03-01.sql.gz", b"first")
    uploader.upload("backups", "tasks/tasks.2024-03-01.sql.gz", b"second")

    assert len(client.objects) == 1
    assert client.objects[("backups", "tasks/tasks.2024-03-01.sql.gz")] == b"second"


def test_upload_fileobj_rewinds_and_sends_size():
    client = FakeS3Client()
    uploader = S3Uploader(client=client, logger=DummyLogger())
    spool = io.BytesIO()
    spool.write(b"compressed-bytes")

    uploader.upload_fileobj("backups", "tasks/tasks.2024-03-01.sql.gz", spool)

    assert client.calls[0]["ContentLength"] == len(b"compressed-bytes")
    assert client.objects[("backups", "tasks/tasks.2024-03-01.sql.gz")] == b"compressed-bytes"


def test_upload_wraps_client_error():
    error = ClientError({"Error": {"Code": "AccessDenied", "Message": "Access Denied"}}, "PutObject")
    uploader = S3Uploader(client=FakeS3Client(error=error), logger=DummyLogger())

    with pytest.raises(UploadError, match="bucket `backups`") as exc_info:
        uploader.upload("backups", "tasks/tasks.2024-03-01.sql.gz", b"data")

    assert exc_info.value.__cause__ is error


def test_upload_wraps_network_error():
    error = EndpointConnectionError(endpoint_url="https://s3.example.com")
    uploader = S3Uploader(client=FakeS3Client(error=error), logger=DummyLogger())

    with pytest.raises(UploadError, match="Suggested action"):
        uploader.upload("backups", "tasks/tasks.2024-03-01.sql.gz", b"data")
