from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Mapping
from pathlib import Path
from threading import Timer
from typing import IO, cast

import httpx

from .archive import package_as_zip
from .exceptions import ProcessExecutionError, StreamError
from .fetch import fetch_and_extract
from .options import DumpOptions
from .pipes import PipeWriter, StreamHandle, start_stream_task
from .process_utils import finish_process, pump_stdout, request_termination, start_stderr_drain
from .settings import get_setting
from .versions import PGVersion, VersionCapability, resolve

logger = logging.getLogger(__name__)

PING_QUERY = "SELECT 1;"

VersionLike = VersionCapability | PGVersion | str


class PgClient:
    """Streaming wrapper around the ``pg_dump`` and ``psql`` binaries.

    Every call takes the PostgreSQL version to use and a libpq connection
    target (a connection URI or conninfo string) which is always passed as
    the first argument to the binary.
    """

    def __init__(
        self,
        env: Mapping[str, str] | None = None,
        *,
        chunk_size: int | None = None,
        buffer_size: int | None = None,
        terminate_timeout: float | None = None,
        entry_name: str | None = None,
        http_client: httpx.Client | None = None,
    ):
        self.env = dict(env or {})
        self.chunk_size = chunk_size or int(get_setting("CHUNK_SIZE"))  # type: ignore[call-overload]
        self.buffer_size = buffer_size or int(get_setting("PIPE_BUFFER_SIZE"))  # type: ignore[call-overload]
        if terminate_timeout is None:
            terminate_timeout = float(get_setting("TERMINATE_TIMEOUT"))  # type: ignore[arg-type]
        self.terminate_timeout = terminate_timeout
        self.entry_name = entry_name or str(get_setting("ARCHIVE_ENTRY_NAME"))
        self.http_client = http_client

    def _env(self) -> dict[str, str]:
        env = os.environ.copy()
        env.update(self.env)
        return env

    def ping(self, version: VersionLike, conn: str) -> None:
        """Check connectivity with a trivial query."""
        capability = _capability(version)
        self._run(capability, [capability.psql, conn, "-c", PING_QUERY])

    def dump(self, version: VersionLike, conn: str, options: DumpOptions | None = None) -> StreamHandle:
        """Start ``pg_dump`` and return its output as a stream.

        A non-zero exit reaches the reader as a ``StreamError`` after every
        byte the process wrote. Closing the stream early terminates the
        process.
        """
        capability = _capability(version)
        cmd = [capability.pg_dump, conn, *(options or DumpOptions()).to_args()]
        logger.debug("Starting pg_dump v%s with flags %s", capability.identifier, cmd[2:])
        try:
            proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, env=self._env())
        except OSError as exc:
            raise self._command_error(cmd, capability, exc) from exc
        stderr_drain = start_stderr_drain(proc)
        stdout = cast(IO[bytes], proc.stdout)
        kill_timers: list[Timer] = []

        def _monitor(writer: PipeWriter) -> None:
            try:
                try:
                    completed = pump_stdout(stdout, writer, self.chunk_size)
                except OSError as exc:
                    request_termination(proc)
                    finish_process(proc, stderr_drain=stderr_drain, kill_after=self.terminate_timeout)
                    writer.close_with_error(StreamError(f"error reading pg_dump output: {exc}", cause=exc))
                    return
                abandoned = not completed or writer.abandoned
                if abandoned:
                    logger.warning("pg_dump v%s output was abandoned; terminating process", capability.identifier)
                    request_termination(proc)
                returncode, stderr = finish_process(
                    proc,
                    stderr_drain=stderr_drain,
                    kill_after=self.terminate_timeout if abandoned else None,
                )
            finally:
                for timer in kill_timers:
                    timer.cancel()
            if not abandoned and returncode != 0:
                error = ProcessExecutionError(
                    cmd, returncode, stderr.decode(errors="replace").strip(), capability.identifier
                )
                logger.warning("pg_dump v%s failed with exit status %s", capability.identifier, returncode)
                writer.close_with_error(StreamError(str(error), cause=error))

        def _on_close() -> None:
            # Must not depend on the monitor, which can be blocked on a silent stdout.
            timer = request_termination(proc, kill_after=self.terminate_timeout)
            if timer is not None:
                kill_timers.append(timer)

        handle = start_stream_task(
            _monitor, name=f"pgstream-pg_dump-{capability.identifier}", max_buffer=self.buffer_size
        )
        handle.add_close_callback(_on_close)
        return handle

    def dump_zip(self, version: VersionLike, conn: str, options: DumpOptions | None = None) -> StreamHandle:
        """Stream the dump wrapped in a single-entry ZIP archive."""
        return package_as_zip(
            self.dump(version, conn, options),
            self.entry_name,
            chunk_size=self.chunk_size,
            max_buffer=self.buffer_size,
        )

    def restore(self, version: VersionLike, conn: str, path: str | Path) -> None:
        """Apply a plain SQL file with ``psql -f``."""
        capability = _capability(version)
        self._run(capability, [capability.psql, conn, "-f", str(path)])

    def restore_zip(self, version: VersionLike, conn: str, url: str) -> None:
        """Download the ZIP at ``url``, extract the dump entry and restore it.

        The transient workspace is removed whether or not ``psql`` succeeds.
        """
        capability = _capability(version)
        logger.info("Restoring from %s with psql v%s", url, capability.identifier)
        extracted = fetch_and_extract(
            url,
            self.entry_name,
            client=self.http_client,
            timeout=float(get_setting("FETCH_TIMEOUT")),  # type: ignore[arg-type]
            workspace_dir=get_setting("WORKSPACE_DIR"),  # type: ignore[arg-type]
            workspace_prefix=str(get_setting("WORKSPACE_PREFIX")),
        )
        with extracted:
            self.restore(capability, conn, extracted.path)
        logger.info("Restore from %s completed", url)

    def _run(self, capability: VersionCapability, cmd: list[str]) -> None:
        try:
            result = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, env=self._env())
        except OSError as exc:
            raise self._command_error(cmd, capability, exc) from exc
        if result.returncode != 0:
            output = (result.stdout or b"").decode(errors="replace").strip()
            raise ProcessExecutionError(cmd, result.returncode, output, capability.identifier)

    @staticmethod
    def _command_error(cmd: list[str], capability: VersionCapability, exc: OSError) -> ProcessExecutionError:
        if exc.errno == 2:
            return ProcessExecutionError(
                cmd,
                127,
                f"Command not found: {cmd[0]}. Ensure the PostgreSQL {capability.identifier} client tools are installed.",
                capability.identifier,
            )
        return ProcessExecutionError(cmd, 1, str(exc), capability.identifier)


def _capability(version: VersionLike) -> VersionCapability:
    if isinstance(version, VersionCapability):
        return version
    return resolve(version)
