"""Bounded in-memory byte pipe connecting a background task to one reader.

The writing side is owned by a thread that closes the pipe either normally or
with a ``StreamError``. The reading side is a ``StreamHandle``: a single-pass
binary stream that yields buffered bytes first and only then reports the
terminal error, on every subsequent read.
"""

from __future__ import annotations

import io
import logging
from collections import deque
from collections.abc import Callable, Iterator
from threading import Condition, Thread

from .exceptions import StreamError

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 262144
DEFAULT_CHUNK_SIZE = 65536


class _PipeState:
    def __init__(self, max_buffer: int):
        self.max_buffer = max(1, max_buffer)
        self.cond = Condition()
        self.chunks: deque[bytes] = deque()
        self.buffered = 0
        self.eof = False
        self.error: StreamError | None = None
        self.reader_closed = False


class PipeWriter:
    """Write end of a pipe. Writes block while the buffer window is full."""

    def __init__(self, state: _PipeState):
        self._state = state

    def writable(self) -> bool:
        return True

    def write(self, data: bytes | bytearray | memoryview) -> int:
        chunk = bytes(data)
        if not chunk:
            return 0
        state = self._state
        with state.cond:
            while state.buffered >= state.max_buffer and not state.reader_closed and not state.eof:
                state.cond.wait()
            if state.reader_closed:
                raise BrokenPipeError("stream reader was closed")
            if state.eof:
                raise BrokenPipeError("write to a closed stream")
            state.chunks.append(chunk)
            state.buffered += len(chunk)
            state.cond.notify_all()
        return len(chunk)

    def flush(self) -> None:
        pass

    @property
    def closed(self) -> bool:
        return self._state.eof

    @property
    def abandoned(self) -> bool:
        """True once the reader has closed its end."""
        return self._state.reader_closed

    def close(self) -> None:
        """Close normally. Has no effect if the pipe was already closed."""
        self._finish(None)

    def close_with_error(self, error: StreamError) -> None:
        """Close with a terminal error. The first close of the pipe wins."""
        self._finish(error)

    def _finish(self, error: StreamError | None) -> None:
        state = self._state
        with state.cond:
            if state.eof:
                return
            state.eof = True
            state.error = error
            state.cond.notify_all()


class StreamHandle(io.RawIOBase):
    """Read end of a pipe, fed by a background task.

    A terminal error is raised only after every buffered byte has been
    returned. ``read()`` without a size discards the bytes it gathered when
    that error surfaces; read in sized chunks (or via ``iter_chunks``) to
    keep the partial output.
    """

    def __init__(self, state: _PipeState):
        super().__init__()
        self._state = state
        self._on_close: list[Callable[[], None]] = []
        self._tasks: list[Thread] = []

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:  # type: ignore[override]
        if self.closed:
            raise ValueError("I/O operation on closed stream.")
        view = memoryview(buffer).cast("B")
        if not len(view):
            return 0
        state = self._state
        with state.cond:
            while not state.chunks and not state.eof:
                state.cond.wait()
            if state.chunks:
                chunk = state.chunks[0]
                size = min(len(view), len(chunk))
                view[:size] = chunk[:size]
                if size == len(chunk):
                    state.chunks.popleft()
                else:
                    state.chunks[0] = chunk[size:]
                state.buffered -= size
                state.cond.notify_all()
                return size
            if state.error is not None:
                raise state.error
            return 0

    def iter_chunks(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> ChunkIterator:
        return ChunkIterator(self, chunk_size)

    def add_close_callback(self, callback: Callable[[], None]) -> None:
        self._on_close.append(callback)

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the producing task(s). Returns True when all have finished."""
        for task in self._tasks:
            task.join(timeout)
        return not any(task.is_alive() for task in self._tasks)

    def close(self) -> None:
        if self.closed:
            return
        state = self._state
        with state.cond:
            abandoned = not state.eof or bool(state.chunks)
            state.reader_closed = True
            state.chunks.clear()
            state.buffered = 0
            state.cond.notify_all()
        if abandoned:
            logger.debug("Stream closed before the producer finished")
        try:
            for callback in self._on_close:
                callback()
        finally:
            super().close()


class ChunkIterator:
    """Iterate a stream in chunks; closing the iterator closes the stream.

    Unlike a generator, ``close()`` takes effect even before the first
    chunk was requested, which is what WSGI servers rely on.
    """

    def __init__(self, stream: StreamHandle, chunk_size: int):
        self.stream = stream
        self.chunk_size = chunk_size

    def __iter__(self) -> Iterator[bytes]:
        return self

    def __next__(self) -> bytes:
        if self.stream.closed:
            raise StopIteration
        chunk = self.stream.read(self.chunk_size)
        if not chunk:
            self.close()
            raise StopIteration
        return chunk

    def close(self) -> None:
        self.stream.close()


def pipe(max_buffer: int = DEFAULT_BUFFER_SIZE) -> tuple[StreamHandle, PipeWriter]:
    """Create a connected ``(reader, writer)`` pair."""
    state = _PipeState(max_buffer)
    return StreamHandle(state), PipeWriter(state)


def start_stream_task(
    task: Callable[[PipeWriter], None],
    *,
    name: str,
    max_buffer: int = DEFAULT_BUFFER_SIZE,
) -> StreamHandle:
    """Run ``task(writer)`` in a daemon thread and return the reading end.

    The task owns the writer and must close it. If it escapes with an
    exception the pipe is closed with a ``StreamError`` so the reader never
    blocks forever.
    """
    reader, writer = pipe(max_buffer)

    def _run() -> None:
        try:
            task(writer)
        except Exception as exc:
            logger.exception("Stream task %s failed", name)
            writer.close_with_error(StreamError(f"{name} failed: {exc}", cause=exc))
        else:
            writer.close()

    thread = Thread(target=_run, name=name, daemon=True)
    reader._tasks.append(thread)
    thread.start()
    return reader
