"""S3 object uploader for pgbackup."""

from datetime import date
from typing import BinaryIO, Optional, Union

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from pgbackup.constants import OBJECT_CONTENT_TYPE, OBJECT_KEY_TEMPLATE
from pgbackup.errors import UploadError
from pgbackup.errors_catalog import actionable_error


def object_key(database: str, run_date: Union[date, str]) -> str:
    if isinstance(run_date, date):
        run_date = run_date.strftime("%Y-%m-%d")
    return OBJECT_KEY_TEMPLATE.format(database=database, date=run_date)


def build_s3_client(region: Optional[str] = None, endpoint_url: Optional[str] = None):
    """Create an S3 client from the standard boto3 credential chain."""
    return boto3.client("s3", region_name=region, endpoint_url=endpoint_url)


class S3Uploader:
    """Writes whole objects to a bucket, replacing whatever is at the key."""

    def __init__(self, client, logger):
        self.client = client
        self.logger = logger

    def upload(self, bucket: str, key: str, data: bytes):
        self._put(bucket, key, data, len(data))

    def upload_fileobj(self, bucket: str, key: str, fileobj: BinaryIO):
        fileobj.seek(0, 2)
        size = fileobj.tell()
        fileobj.seek(0)
        self._put(bucket, key, fileobj, size)

    def _put(self, bucket: str, key: str, body, size: int):
        try:
            self.client.put_object(
                Bucket=bucket,
                Key=key,
                Body=body,
                ContentLength=size,
                ContentType=OBJECT_CONTENT_TYPE,
            )
        except (ClientError, BotoCoreError) as exc:
            raise UploadError(
                f"{actionable_error('upload_failed', key=key, bucket=bucket)} ({exc})"
            ) from exc

        self.logger.info("Uploaded s3://%s/%s (%s bytes)", bucket, key, size)
