from __future__ import annotations

from django.conf import settings as django_settings
from django.core.management.base import BaseCommand, CommandError, CommandParser

from django_pgstream.exceptions import EngineNotSupported, ProcessExecutionError, UnsupportedVersionError
from django_pgstream.targets import get_target


class Command(BaseCommand):
    help = "Check that psql can connect to the database."

    def add_arguments(self, parser: CommandParser) -> None:
        parser.add_argument(
            "-d",
            "--database",
            default="default",
            help="Database alias to check (default: 'default').",
        )
        parser.add_argument(
            "--pg-version",
            default=None,
            help="PostgreSQL major version of the server. Overrides DJANGO_PGSTREAM['VERSIONS'].",
        )

    def handle(self, *args: object, **options: object) -> None:
        database = str(options["database"])
        verbosity = int(options["verbosity"])  # type: ignore[arg-type]
        pg_version = options["pg_version"]

        if database not in django_settings.DATABASES:
            raise CommandError(f"Database '{database}' is not configured.")
        try:
            target = get_target(database, str(pg_version) if pg_version else None)
        except (EngineNotSupported, UnsupportedVersionError) as exc:
            raise CommandError(f"{exc}. Configure DJANGO_PGSTREAM['VERSIONS'] or pass --pg-version.") from exc

        try:
            target.client().ping(target.capability, target.uri)
        except ProcessExecutionError as exc:
            self.stderr.write(f"Connection check failed: {exc.output or exc}")
            raise SystemExit(1) from exc

        if verbosity >= 1:
            self.stdout.write(self.style.SUCCESS(f"Database '{database}' is reachable (psql {target.capability.identifier})."))
