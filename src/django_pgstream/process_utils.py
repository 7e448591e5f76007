from __future__ import annotations

import io
import subprocess
from contextlib import suppress
from threading import Thread, Timer
from typing import IO

from .pipes import PipeWriter

StderrDrain = tuple[Thread, list[bytes]] | None


def start_stderr_drain(proc: subprocess.Popen[bytes]) -> StderrDrain:
    """Collect ``proc.stderr`` in a background thread and detach it from the process.

    Keeps a chatty stderr from filling the OS pipe buffer and stalling stdout.
    Returns ``None`` when stderr is not a real stream (for example a mock).
    """
    stream = proc.stderr
    if stream is None or not isinstance(stream, io.IOBase):
        return None

    chunks: list[bytes] = []

    def _collect() -> None:
        with suppress(OSError, ValueError):
            for chunk in iter(lambda: stream.read(65536), b""):
                chunks.append(chunk)
        with suppress(OSError, ValueError):
            stream.close()

    thread = Thread(target=_collect, name="pgstream-stderr", daemon=True)
    thread.start()
    proc.stderr = None
    return thread, chunks


def collect_stderr(drain: StderrDrain) -> bytes:
    if drain is None:
        return b""
    thread, chunks = drain
    thread.join()
    return b"".join(chunks)


def pump_stdout(stdout: IO[bytes], writer: PipeWriter, chunk_size: int) -> bool:
    """Copy process stdout into ``writer``.

    Returns False when the reader closed the pipe before stdout hit EOF.
    """
    read = getattr(stdout, "read1", stdout.read)
    while True:
        chunk = read(chunk_size)
        if not chunk:
            return True
        try:
            writer.write(chunk)
        except BrokenPipeError:
            return False


def request_termination(proc: subprocess.Popen[bytes], kill_after: float | None = None) -> Timer | None:
    """Ask a still-running process to stop. Never blocks.

    With ``kill_after`` a daemon timer kills the process if it is still
    running that many seconds later. The timer is returned so the caller
    can cancel it once the process has been reaped.
    """
    if proc.poll() is not None:
        return None
    with suppress(OSError):
        proc.terminate()
    if kill_after is None:
        return None
    timer = Timer(kill_after, _kill_if_running, args=(proc,))
    timer.daemon = True
    timer.start()
    return timer


def _kill_if_running(proc: subprocess.Popen[bytes]) -> None:
    if proc.poll() is None:
        with suppress(OSError):
            proc.kill()


def finish_process(
    proc: subprocess.Popen[bytes],
    *,
    stderr_drain: StderrDrain = None,
    kill_after: float | None = None,
) -> tuple[int, bytes]:
    """Reap ``proc`` and return ``(returncode, stderr)``.

    When ``kill_after`` is set the process is killed if it has not exited
    within that many seconds.
    """
    if proc.stdout is not None:
        with suppress(OSError, ValueError):
            proc.stdout.close()
        proc.stdout = None
    try:
        _, stderr_pipe = proc.communicate(timeout=kill_after)
    except subprocess.TimeoutExpired:
        proc.kill()
        _, stderr_pipe = proc.communicate()
    stderr = collect_stderr(stderr_drain) or stderr_pipe or b""
    return proc.returncode, stderr
