"""Last-run manifest for monitoring and restore lookups."""

import json
import os
import tempfile
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pgbackup.models import RunReport


class ManifestService:
    """Mirrors a :class:`RunReport` into a JSON file as the run progresses.

    The file tells a health check whether the last run succeeded and tells an
    operator which object key holds each database, without listing the bucket.
    With no ``manifest_file`` nothing is written.
    """

    def __init__(self, manifest_file: Optional[str], logger, bucket: Optional[str] = None):
        self.manifest_file = manifest_file
        self.logger = logger
        self.bucket = bucket
        self.started_at: Optional[str] = None

    def start_run(self, report: RunReport):
        self.started_at = self._now()
        self.record(report)

    def snapshot(self, report: RunReport, error: Optional[str] = None) -> Dict[str, Any]:
        return {
            "run_date": report.run_date,
            "status": report.status,
            "bucket": self.bucket,
            "started_at": self.started_at,
            "updated_at": self._now(),
            "databases": [asdict(result) for result in report.results],
            "error": error,
        }

    def record(self, report: RunReport, error: Optional[str] = None):
        if not self.manifest_file:
            return

        directory = os.path.dirname(self.manifest_file) or "."
        try:
            os.makedirs(directory, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(prefix=".pgbackup-manifest-", suffix=".json", dir=directory)
        except OSError as exc:
            self.logger.warning("Could not write manifest file '%s': %s", self.manifest_file, exc)
            return

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                json.dump(self.snapshot(report, error), file_obj, indent=2, sort_keys=True)
                file_obj.write("\n")
            os.replace(temp_path, self.manifest_file)
        except OSError as exc:
            self.logger.warning("Could not write manifest file '%s': %s", self.manifest_file, exc)
            try:
                os.remove(temp_path)
            except OSError:
                pass

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
