from __future__ import annotations

import logging
import shutil
import tempfile
import zipfile
import zlib
from contextlib import ExitStack
from pathlib import Path

import httpx

from .archive import DUMP_ENTRY_NAME
from .exceptions import ArchiveFormatError, ArchiveIOError, EntryNotFoundError, FetchError

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = 60.0
DEFAULT_WORKSPACE_PREFIX = "pgstream-restore-"
ARCHIVE_FILENAME = "archive.zip"


class Workspace:
    """Temporary directory owned by a single restore call."""

    def __init__(self, path: Path):
        self.path = path

    @classmethod
    def create(cls, prefix: str = DEFAULT_WORKSPACE_PREFIX, directory: str | Path | None = None) -> Workspace:
        try:
            return cls(Path(tempfile.mkdtemp(prefix=prefix, dir=directory)))
        except OSError as exc:
            raise ArchiveIOError(f"error creating temp dir: {exc}") from exc

    def cleanup(self) -> None:
        shutil.rmtree(self.path, ignore_errors=True)

    def __enter__(self) -> Workspace:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cleanup()


class ExtractedEntry:
    """An extracted archive entry together with the workspace holding it.

    Leaving the ``with`` block removes the workspace.
    """

    def __init__(self, path: Path, workspace: Workspace):
        self.path = path
        self.workspace = workspace

    def cleanup(self) -> None:
        self.workspace.cleanup()

    def __enter__(self) -> ExtractedEntry:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cleanup()


def fetch_and_extract(
    url: str,
    entry_name: str = DUMP_ENTRY_NAME,
    *,
    client: httpx.Client | None = None,
    timeout: float = DEFAULT_FETCH_TIMEOUT,
    workspace_dir: str | Path | None = None,
    workspace_prefix: str = DEFAULT_WORKSPACE_PREFIX,
) -> ExtractedEntry:
    """Download the ZIP at ``url`` and extract ``entry_name`` into a new workspace.

    On failure the workspace is removed before the error propagates. On
    success the caller owns the returned ``ExtractedEntry`` and must clean it
    up, usually by using it as a context manager.
    """
    workspace = Workspace.create(workspace_prefix, workspace_dir)
    with ExitStack() as stack:
        stack.callback(workspace.cleanup)
        archive_path = workspace.path / ARCHIVE_FILENAME
        _download(url, archive_path, client=client, timeout=timeout)
        entry_path = _extract_entry(archive_path, entry_name, workspace.path)
        stack.pop_all()
    return ExtractedEntry(entry_path, workspace)


def _download(url: str, destination: Path, *, client: httpx.Client | None, timeout: float) -> None:
    with ExitStack() as stack:
        if client is None:
            client = stack.enter_context(httpx.Client(timeout=timeout, follow_redirects=True))
        try:
            response = stack.enter_context(client.stream("GET", url))
            if not response.is_success:
                raise FetchError(url, f"HTTP {response.status_code}", status_code=response.status_code)
            with destination.open("wb") as out:
                for chunk in response.iter_bytes():
                    out.write(chunk)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("Download of %s failed: %s", url, exc)
            raise FetchError(url, str(exc) or type(exc).__name__) from exc
        except OSError as exc:
            raise ArchiveIOError(f"error writing to ZIP file: {exc}") from exc
    logger.debug("Downloaded %s to %s", url, destination)


def _extract_entry(archive_path: Path, entry_name: str, directory: Path) -> Path:
    try:
        archive = zipfile.ZipFile(archive_path)
    except (zipfile.BadZipFile, EOFError) as exc:
        raise ArchiveFormatError(f"error opening ZIP file: {exc}") from exc
    except OSError as exc:
        raise ArchiveIOError(f"error opening ZIP file: {exc}") from exc

    with archive:
        info = next((item for item in archive.infolist() if item.filename == entry_name), None)
        if info is None:
            raise EntryNotFoundError(entry_name)
        # Never trust the entry name as a path; it only selects the member.
        target = directory / Path(entry_name).name
        if target == archive_path:
            target = directory / f"extracted-{target.name}"
        try:
            with archive.open(info) as source, target.open("wb") as out:
                shutil.copyfileobj(source, out)
        except (zipfile.BadZipFile, zlib.error, NotImplementedError, RuntimeError) as exc:
            # CRC mismatch, unsupported compression or an encrypted member.
            raise ArchiveFormatError(f"error reading {entry_name} in ZIP file: {exc}") from exc
        except OSError as exc:
            raise ArchiveIOError(f"error writing {entry_name}: {exc}") from exc
    return target
