from __future__ import annotations

from dataclasses import dataclass, fields


@dataclass(frozen=True)
class DumpOptions:
    """Flags passed through to ``pg_dump``.

    Flag combinations are not validated here; ``pg_dump`` rejects invalid
    ones (for example ``if_exists`` without ``clean``).
    """

    # --data-only: dump only the data, not the schema.
    data_only: bool = False
    # --schema-only: dump only the object definitions, not data.
    schema_only: bool = False
    # --clean: emit DROP commands before the CREATE commands.
    clean: bool = False
    # --if-exists: use DROP ... IF EXISTS in --clean mode.
    if_exists: bool = False
    # --create: begin the output with CREATE DATABASE and reconnect to it.
    create: bool = False
    # --no-comments: do not dump comments.
    no_comments: bool = False

    def to_args(self) -> list[str]:
        return [f"--{field.name.replace('_', '-')}" for field in fields(self) if getattr(self, field.name)]
