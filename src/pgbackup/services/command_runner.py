"""Subprocess execution service for pgbackup."""

import subprocess
import tempfile
import threading
from typing import BinaryIO, Dict, List, Optional

from pgbackup.constants import STREAM_CHUNK_SIZE
from pgbackup.errors import DumpExecutionError, DumpSpawnError


class CommandRunner:
    """Runs external commands and captures their binary output."""

    def __init__(self, logger, default_timeout: Optional[float] = None, subprocess_module=subprocess):
        self.logger = logger
        self.default_timeout = default_timeout
        self.subprocess = subprocess_module

    def run(
        self,
        cmd: List[str],
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        """Run ``cmd`` to completion and return it with stdout buffered as bytes.

        The child runs in its own session, so a terminal Ctrl-C or a service
        manager's SIGTERM reaches only pgbackup and the dump can finish.
        """
        cmd_str = " ".join(cmd)
        self.logger.debug("Executing: %s", cmd_str)

        effective_timeout = timeout if timeout is not None else self.default_timeout

        try:
            result = self.subprocess.run(
                cmd,
                capture_output=True,
                env=env,
                timeout=effective_timeout,
                start_new_session=True,
            )
        except (FileNotFoundError, PermissionError) as exc:
            raise DumpSpawnError(f"Could not start command `{cmd[0]}`: {exc}") from exc
        except self.subprocess.TimeoutExpired as exc:
            raise self._timeout_error(cmd_str, effective_timeout) from exc
        except OSError as exc:
            raise DumpSpawnError(f"Failed to execute command: {cmd_str}. {exc}") from exc

        if result.returncode != 0:
            raise self._execution_error(cmd_str, result.returncode, result.stderr)

        return result

    def stream(
        self,
        cmd: List[str],
        sink: BinaryIO,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> int:
        """Copy the stdout of ``cmd`` into ``sink`` chunk by chunk.

        stderr goes to a temporary file so a chatty process cannot block on a
        full pipe while stdout is being drained. Returns the number of bytes
        written to ``sink``.
        """
        cmd_str = " ".join(cmd)
        self.logger.debug("Streaming: %s", cmd_str)

        effective_timeout = timeout if timeout is not None else self.default_timeout
        total = 0

        with tempfile.TemporaryFile() as stderr_file:
            try:
                process = self.subprocess.Popen(
                    cmd,
                    stdout=self.subprocess.PIPE,
                    stderr=stderr_file,
                    env=env,
                    start_new_session=True,
                )
            except (FileNotFoundError, PermissionError) as exc:
                raise DumpSpawnError(f"Could not start command `{cmd[0]}`: {exc}") from exc
            except OSError as exc:
                raise DumpSpawnError(f"Failed to execute command: {cmd_str}. {exc}") from exc

            timed_out = threading.Event()

            def _kill_on_timeout():
                timed_out.set()
                process.kill()

            timer = None
            if effective_timeout is not None:
                timer = threading.Timer(effective_timeout, _kill_on_timeout)
                timer.start()

            try:
                for chunk in iter(lambda: process.stdout.read(STREAM_CHUNK_SIZE), b""):
                    sink.write(chunk)
                    total += len(chunk)
            except BaseException:
                process.kill()
                process.wait()
                raise
            finally:
                if timer is not None:
                    timer.cancel()
                process.stdout.close()

            returncode = process.wait()
            if timed_out.is_set():
                raise self._timeout_error(cmd_str, effective_timeout)
            if returncode != 0:
                stderr_file.seek(0)
                raise self._execution_error(cmd_str, returncode, stderr_file.read())

        return total

    @staticmethod
    def _timeout_error(cmd_str: str, timeout: Optional[float]) -> DumpExecutionError:
        return DumpExecutionError(f"Command timed out after {timeout}s and was killed: {cmd_str}")

    @staticmethod
    def _execution_error(cmd_str: str, returncode: int, stderr) -> DumpExecutionError:
        if isinstance(stderr, bytes):
            stderr = stderr.decode("utf-8", errors="replace")
        stderr = (stderr or "").strip()

        if returncode < 0:
            message = f"Command was killed by signal {-returncode}: {cmd_str}"
        else:
            message = f"Command failed ({returncode}): {cmd_str}"
        if stderr:
            message = f"{message}\n{stderr}"
        return DumpExecutionError(message, returncode=returncode, stderr=stderr)
