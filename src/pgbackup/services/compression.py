"""Gzip compression helpers for pgbackup."""

import gzip
import zlib
from contextlib import contextmanager
from typing import BinaryIO, Iterator

from pgbackup.constants import GZIP_COMPRESSION_LEVEL
from pgbackup.errors import CompressionError


class GzipCompressor:
    """Encodes dumps as single-member gzip streams."""

    def __init__(self, logger, level: int = GZIP_COMPRESSION_LEVEL):
        self.logger = logger
        self.level = level

    def compress(self, content: bytes) -> bytes:
        try:
            compressed = gzip.compress(content, compresslevel=self.level)
        except (OSError, zlib.error) as exc:
            raise CompressionError(f"Could not gzip {len(content)} bytes: {exc}") from exc

        self.logger.info(
            "Compressed %s bytes to %s bytes using gzip", len(content), len(compressed)
        )
        return compressed

    def decompress(self, content: bytes) -> bytes:
        try:
            return gzip.decompress(content)
        except (OSError, EOFError, zlib.error) as exc:
            raise CompressionError(f"Could not gunzip {len(content)} bytes: {exc}") from exc

    @contextmanager
    def open_writer(self, fileobj: BinaryIO) -> Iterator[BinaryIO]:
        """Yield a writable gzip stream over ``fileobj``; finalized on exit."""
        try:
            writer = gzip.GzipFile(fileobj=fileobj, mode="wb", compresslevel=self.level)
        except (OSError, zlib.error) as exc:
            raise CompressionError(f"Could not open gzip stream: {exc}") from exc

        try:
            yield writer
        except (OSError, zlib.error) as exc:
            raise CompressionError(f"Could not write gzip stream: {exc}") from exc
        finally:
            try:
                writer.close()
            except (OSError, zlib.error) as exc:
                raise CompressionError(f"Could not finalize gzip stream: {exc}") from exc
