from __future__ import annotations

import logging
import time
import zipfile
from typing import IO

from .exceptions import StreamError
from .pipes import DEFAULT_BUFFER_SIZE, DEFAULT_CHUNK_SIZE, PipeWriter, StreamHandle, start_stream_task

logger = logging.getLogger(__name__)

DUMP_ENTRY_NAME = "dump.sql"


def package_as_zip(
    source: IO[bytes],
    entry_name: str = DUMP_ENTRY_NAME,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    max_buffer: int = DEFAULT_BUFFER_SIZE,
) -> StreamHandle:
    """Stream ``source`` as a single-entry ZIP archive.

    The archive is written to a non-seekable pipe, so sizes and CRCs go into
    data descriptors and the entry is always ZIP64 (the payload size is not
    known up front). A ``StreamError`` raised by ``source`` reaches the reader
    unchanged. ``source`` is closed once the stage ends.
    """

    def _encode(writer: PipeWriter) -> None:
        try:
            with zipfile.ZipFile(writer, mode="w", compression=zipfile.ZIP_DEFLATED) as archive:  # type: ignore[arg-type]
                info = zipfile.ZipInfo(entry_name, date_time=time.localtime()[:6])
                info.compress_type = zipfile.ZIP_DEFLATED
                with archive.open(info, mode="w", force_zip64=True) as entry:
                    _copy(source, entry, writer, chunk_size)
        except StreamError as exc:
            writer.close_with_error(exc)
        except BrokenPipeError:
            logger.debug("ZIP stream for %s ended before the archive was complete", entry_name)
        except (OSError, ValueError, zipfile.BadZipFile, zipfile.LargeZipFile) as exc:
            logger.warning("Error writing %s to zip file: %s", entry_name, exc)
            writer.close_with_error(StreamError(f"error writing to zip file: {exc}", cause=exc))
        else:
            writer.close()
        finally:
            source.close()

    return start_stream_task(_encode, name=f"pgstream-zip-{entry_name}", max_buffer=max_buffer)


def _copy(source: IO[bytes], entry: IO[bytes], writer: PipeWriter, chunk_size: int) -> None:
    while True:
        try:
            chunk = source.read(chunk_size)
        except StreamError as exc:
            # Fail the output before the archive trailer gets written.
            writer.close_with_error(exc)
            raise
        if not chunk:
            return
        entry.write(chunk)
