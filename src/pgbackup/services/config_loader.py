"""Configuration loader for pgbackup."""

from datetime import datetime, time
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from pgbackup.constants import DEFAULT_DUMP_COMMAND, FAILURE_POLICIES, FAILURE_POLICY_ABORT
from pgbackup.errors import ConfigError
from pgbackup.errors_catalog import actionable_error
from pgbackup.models import BackupSettings, ConnectionProfile


class ConfigLoader:
    """Builds validated settings from environment variables and an optional YAML file.

    Environment variables win over file values; explicit ``overrides`` (from
    the command line) win over both.
    """

    # config file key -> environment variable
    ENV_VARS = {
        "username": "USERNAME",
        "password": "PASSWORD",
        "root_database": "ROOT_DATABASE",
        "database_host": "DATABASE_HOST",
        "database_port": "DATABASE_PORT",
        "bucket_name": "BUCKET_NAME",
        "schedule_time": "SCHEDULE_TIME",
        "aws_region": "AWS_REGION",
        "s3_endpoint_url": "S3_ENDPOINT_URL",
        "failure_policy": "FAILURE_POLICY",
        "streaming": "STREAMING",
        "pg_dump_command": "PG_DUMP_COMMAND",
        "dump_timeout": "DUMP_TIMEOUT",
        "manifest_file": "MANIFEST_FILE",
    }

    SUPPORTED_KEYS = set(ENV_VARS) | {"verbose", "log_file"}

    TRUE_VALUES = {"1", "true", "yes", "on"}
    FALSE_VALUES = {"0", "false", "no", "off", ""}

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise ConfigError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise ConfigError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise ConfigError(f"Unknown configuration keys: {unknown_list}")

        return parsed

    def load_settings(
        self,
        environ: Mapping[str, str],
        file_values: Optional[Mapping[str, Any]] = None,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> BackupSettings:
        values = self._merge(environ, file_values or {}, overrides or {})

        profile = ConnectionProfile(
            username=self._required(values, "username"),
            password=self._optional_str(values, "password"),
            host=self._required(values, "database_host"),
            port=self.parse_port(self._required(values, "database_port")),
            admin_database=self._required(values, "root_database"),
        )

        failure_policy = str(values.get("failure_policy") or FAILURE_POLICY_ABORT).strip().lower()
        if failure_policy not in FAILURE_POLICIES:
            raise ConfigError(
                f"Invalid failure policy '{failure_policy}'. "
                f"Supported policies: {', '.join(FAILURE_POLICIES)}."
            )

        schedule_time = values.get("schedule_time")
        dump_timeout = values.get("dump_timeout")

        return BackupSettings(
            profile=profile,
            bucket=self._required(values, "bucket_name"),
            schedule_time=self.parse_schedule_time(schedule_time) if schedule_time else None,
            region=self._optional_str(values, "aws_region"),
            endpoint_url=self._optional_str(values, "s3_endpoint_url"),
            failure_policy=failure_policy,
            streaming=self.parse_bool(values.get("streaming", False), "streaming"),
            dump_command=self._optional_str(values, "pg_dump_command") or DEFAULT_DUMP_COMMAND,
            dump_timeout=self.parse_timeout(dump_timeout) if dump_timeout not in (None, "") else None,
            manifest_file=self._optional_str(values, "manifest_file"),
        )

    def _merge(self, environ, file_values, overrides) -> Dict[str, Any]:
        values: Dict[str, Any] = {
            key: value for key, value in file_values.items() if key in self.ENV_VARS
        }
        for key, env_name in self.ENV_VARS.items():
            if env_name in environ:
                values[key] = environ[env_name]
        for key, value in overrides.items():
            if value is not None:
                values[key] = value
        return values

    def _required(self, values: Mapping[str, Any], key: str) -> str:
        value = values.get(key)
        if value is None or str(value).strip() == "":
            raise ConfigError(actionable_error("missing_env", name=self.ENV_VARS[key], key=key))
        return str(value).strip()

    @staticmethod
    def _optional_str(values: Mapping[str, Any], key: str) -> Optional[str]:
        value = values.get(key)
        if value is None:
            return None
        value = str(value)
        return value if value.strip() else None

    @staticmethod
    def parse_port(value: Any) -> int:
        try:
            port = int(str(value).strip())
        except ValueError as exc:
            raise ConfigError(actionable_error("invalid_port", value=str(value))) from exc
        if not 1 <= port <= 65535:
            raise ConfigError(actionable_error("invalid_port", value=str(value)))
        return port

    @staticmethod
    def parse_schedule_time(value: Any) -> time:
        if isinstance(value, time):
            return value
        text = str(value).strip()
        for fmt in ("%H:%M:%S", "%H:%M"):
            try:
                return datetime.strptime(text, fmt).time()
            except ValueError:
                continue
        raise ConfigError(actionable_error("invalid_schedule_time", value=text))

    @staticmethod
    def parse_timeout(value: Any) -> float:
        try:
            timeout = float(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid dump timeout: {value}") from exc
        if timeout <= 0:
            raise ConfigError(f"Dump timeout must be positive, got {value}.")
        return timeout

    def parse_bool(self, value: Any, key: str) -> bool:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in self.TRUE_VALUES:
            return True
        if text in self.FALSE_VALUES:
            return False
        raise ConfigError(f"Invalid boolean for `{key}`: {value}")
