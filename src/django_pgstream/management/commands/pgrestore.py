from __future__ import annotations

from urllib.parse import urlsplit

from django.conf import settings as django_settings
from django.core.management.base import BaseCommand, CommandError, CommandParser

from django_pgstream.exceptions import (
    ArchiveFormatError,
    ArchiveIOError,
    EngineNotSupported,
    EntryNotFoundError,
    FetchError,
    ProcessExecutionError,
    UnsupportedVersionError,
)
from django_pgstream.signals import post_db_restore, pre_db_restore
from django_pgstream.targets import get_target


class Command(BaseCommand):
    help = "Restore the database from a ZIP archive at a URL."

    def add_arguments(self, parser: CommandParser) -> None:
        parser.add_argument(
            "--url",
            required=True,
            help="HTTP(S) URL of a ZIP archive containing a dump.sql entry.",
        )
        parser.add_argument(
            "-d",
            "--database",
            default="",
            help="Database alias to restore. Required when multiple databases are configured.",
        )
        parser.add_argument(
            "--pg-version",
            default=None,
            help="PostgreSQL major version of the server. Overrides DJANGO_PGSTREAM['VERSIONS'].",
        )
        parser.add_argument(
            "--noinput",
            action="store_false",
            dest="interactive",
            default=True,
            help="Do not prompt for confirmation before restoring.",
        )

    def handle(self, *args: object, **options: object) -> None:
        url = str(options["url"])
        database = str(options["database"])
        interactive = bool(options["interactive"])
        verbosity = int(options["verbosity"])  # type: ignore[arg-type]
        pg_version = options["pg_version"]

        try:
            scheme = urlsplit(url).scheme
        except ValueError as exc:
            raise CommandError(f"Invalid --url: {exc}") from exc
        if scheme not in {"http", "https"}:
            raise CommandError("--url must be an http:// or https:// URL.")

        if not database:
            if len(django_settings.DATABASES) > 1:
                raise CommandError(
                    "Multiple databases are configured. Please specify which one to restore with --database."
                )
            database = next(iter(django_settings.DATABASES))
        elif database not in django_settings.DATABASES:
            raise CommandError(f"Database '{database}' is not configured.")

        try:
            target = get_target(database, str(pg_version) if pg_version else None)
        except (EngineNotSupported, UnsupportedVersionError) as exc:
            raise CommandError(f"{exc}. Configure DJANGO_PGSTREAM['VERSIONS'] or pass --pg-version.") from exc

        if interactive:
            answer = input(f"Restore database '{database}' from '{url}'? [y/N] ").strip().lower()
            if answer not in {"y", "yes"}:
                self.stdout.write("Restore cancelled.")
                raise SystemExit(0)

        pre_db_restore.send(sender=self.__class__, database=database, url=url)

        if verbosity >= 1:
            self.stdout.write(f"Restoring database '{database}' from {url}")

        try:
            target.client().restore_zip(target.capability, target.uri, url)
        except FetchError as exc:
            self.stderr.write(f"Download failed: {exc}")
            raise SystemExit(1) from exc
        except ArchiveFormatError as exc:
            self.stderr.write(f"Not a valid backup archive: {exc}")
            raise SystemExit(1) from exc
        except EntryNotFoundError as exc:
            self.stderr.write(f"Backup archive has no '{exc.entry_name}' entry.")
            raise SystemExit(1) from exc
        except ArchiveIOError as exc:
            self.stderr.write(f"Failed to stage backup: {exc}")
            raise SystemExit(1) from exc
        except ProcessExecutionError as exc:
            self.stderr.write(f"Database restore failed: {exc.output or exc}")
            raise SystemExit(1) from exc

        post_db_restore.send(sender=self.__class__, database=database, url=url)

        if verbosity >= 1:
            self.stdout.write(self.style.SUCCESS(f"Restore completed from: {url}"))
