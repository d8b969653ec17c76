"""Shared constants for pgbackup."""

SECONDS_PER_DAY = 86400

EXCLUDED_DATABASES = ("postgres", "template0", "template1")

OBJECT_KEY_TEMPLATE = "{database}/{database}.{date}.sql.gz"
OBJECT_CONTENT_TYPE = "application/gzip"

GZIP_COMPRESSION_LEVEL = 6

PASSWORD_ENV_VAR = "PGPASSWORD"
DEFAULT_DUMP_COMMAND = "pg_dump"
CONNECT_TIMEOUT_SECONDS = 10

# Streaming mode keeps at most this many bytes of a compressed dump in memory.
SPOOL_MAX_BYTES = 64 * 1024 * 1024
STREAM_CHUNK_SIZE = 64 * 1024

FAILURE_POLICY_ABORT = "abort"
FAILURE_POLICY_CONTINUE = "continue"
FAILURE_POLICIES = (FAILURE_POLICY_ABORT, FAILURE_POLICY_CONTINUE)

DEFAULT_CONFIG_FILE = ".pgbackup.yml"
