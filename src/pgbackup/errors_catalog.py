"""Actionable error catalog for pgbackup."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "missing_env": {
        "what": "Missing required setting `{name}`.",
        "next": "Export `{name}` or set `{key}` in the config file.",
    },
    "invalid_port": {
        "what": "Invalid database port: {value}",
        "next": "Use an integer between 1 and 65535 for `DATABASE_PORT`.",
    },
    "invalid_schedule_time": {
        "what": "Invalid schedule time: {value}",
        "next": "Use a UTC wall-clock value such as `02:30` or `02:30:00` (quoted in YAML).",
    },
    "connection_failed": {
        "what": "Could not connect to {host}:{port} as `{username}`.",
        "next": "Check that the server is reachable and the credentials are valid.",
    },
    "dump_not_found": {
        "what": "Dump utility `{command}` could not be started.",
        "next": "Install the PostgreSQL client tools or set `PG_DUMP_COMMAND`.",
    },
    "upload_failed": {
        "what": "Upload of `{key}` to bucket `{bucket}` failed.",
        "next": "Check the AWS credentials, the bucket name and the bucket policy.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
