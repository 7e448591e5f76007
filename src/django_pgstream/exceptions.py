from __future__ import annotations


class DjangoPgstreamError(Exception):
    """Base exception for django-pgstream."""


class UnsupportedVersionError(DjangoPgstreamError):
    """Raised when a PostgreSQL version identifier is not in the supported set."""

    def __init__(self, identifier: object):
        self.identifier = identifier
        super().__init__(f"pg version not allowed: {identifier}")


class ProcessExecutionError(DjangoPgstreamError):
    """Raised when pg_dump or psql exits with a non-zero status."""

    def __init__(self, cmd: list[str], returncode: int, output: str = "", version: str = ""):
        self.cmd = cmd
        self.returncode = returncode
        self.output = output
        self.version = version
        binary = cmd[0].rsplit("/", 1)[-1] if cmd else "command"
        label = f"{binary} v{version}" if version else binary
        super().__init__(f"error running {label} (exit {returncode}): {output}".strip())


class StreamError(DjangoPgstreamError):
    """Terminal error delivered through the read path of a stream."""

    def __init__(self, message: str, cause: BaseException | None = None):
        self.cause = cause
        super().__init__(message)
        self.__cause__ = cause


class FetchError(DjangoPgstreamError):
    """Raised when a remote archive cannot be downloaded."""

    def __init__(self, url: str, reason: str, status_code: int | None = None):
        self.url = url
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"error downloading ZIP file from {url}: {reason}")


class ArchiveIOError(DjangoPgstreamError):
    """Raised when transient restore files cannot be created or written."""


class ArchiveFormatError(DjangoPgstreamError):
    """Raised when a downloaded file is not a readable ZIP archive."""


class EntryNotFoundError(DjangoPgstreamError):
    """Raised when the archive has no entry with the requested name."""

    def __init__(self, entry_name: str):
        self.entry_name = entry_name
        super().__init__(f"{entry_name} not found in ZIP file")


class EngineNotSupported(DjangoPgstreamError):
    """Raised when a Django database engine is not PostgreSQL-compatible."""

    def __init__(self, engine: str):
        self.engine = engine
        super().__init__(f"No PostgreSQL support for database engine: {engine}")
