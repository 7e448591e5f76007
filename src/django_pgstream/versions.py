"""Supported PostgreSQL major versions and their client executables.

Only versions covered by the PostgreSQL versioning policy are listed. Running
a ``pg_dump`` or ``psql`` from another major version against a server is a
dump/restore format hazard, so unknown identifiers are rejected rather than
mapped to a default.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath

from .exceptions import UnsupportedVersionError
from .settings import get_setting


@dataclass(frozen=True)
class VersionCapability:
    identifier: str
    pg_dump: str
    psql: str


class PGVersion(Enum):
    PG13 = "13"
    PG14 = "14"
    PG15 = "15"
    PG16 = "16"

    @classmethod
    def parse(cls, identifier: object) -> PGVersion:
        if isinstance(identifier, cls):
            return identifier
        for member in cls:
            if member.value == identifier:
                return member
        raise UnsupportedVersionError(identifier)

    def capability(self, bin_dir_template: str | None = None) -> VersionCapability:
        template = bin_dir_template or str(get_setting("BIN_DIR_TEMPLATE"))
        bin_dir = PurePosixPath(template.format(version=self.value))
        return VersionCapability(
            identifier=self.value,
            pg_dump=str(bin_dir / "pg_dump"),
            psql=str(bin_dir / "psql"),
        )


def supported_versions() -> list[str]:
    return [member.value for member in PGVersion]


def resolve(identifier: object, bin_dir_template: str | None = None) -> VersionCapability:
    """Return the executables for a supported version identifier.

    Raises ``UnsupportedVersionError`` for anything outside ``PGVersion``.
    """
    return PGVersion.parse(identifier).capability(bin_dir_template)
