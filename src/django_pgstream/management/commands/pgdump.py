from __future__ import annotations

import shutil
import sys
from contextlib import ExitStack
from pathlib import Path

from django.conf import settings as django_settings
from django.core.management.base import BaseCommand, CommandError, CommandParser

from django_pgstream.exceptions import EngineNotSupported, ProcessExecutionError, StreamError, UnsupportedVersionError
from django_pgstream.options import DumpOptions
from django_pgstream.signals import post_db_dump, pre_db_dump
from django_pgstream.targets import get_target

FLAG_HELP = {
    "data_only": "Dump only the data, not the schema.",
    "schema_only": "Dump only the schema, not the data.",
    "clean": "Emit DROP commands before CREATE commands.",
    "if_exists": "Use DROP ... IF EXISTS (requires --clean).",
    "create": "Include CREATE DATABASE and reconnect to it.",
    "no_comments": "Do not dump comments.",
}


class Command(BaseCommand):
    help = "Stream a pg_dump of the database to a file or stdout."

    def add_arguments(self, parser: CommandParser) -> None:
        parser.add_argument(
            "-d",
            "--database",
            default="default",
            help="Database alias to dump (default: 'default').",
        )
        parser.add_argument(
            "--pg-version",
            default=None,
            help="PostgreSQL major version of the server. Overrides DJANGO_PGSTREAM['VERSIONS'].",
        )
        parser.add_argument(
            "-o",
            "--output",
            default="-",
            help="Output file path, or '-' for stdout (default).",
        )
        parser.add_argument(
            "--zip",
            action="store_true",
            help="Wrap the dump in a ZIP archive with a single dump.sql entry.",
        )
        for name, text in FLAG_HELP.items():
            parser.add_argument(f"--{name.replace('_', '-')}", action="store_true", dest=name, help=text)

    def handle(self, *args: object, **options: object) -> None:
        database = str(options["database"])
        output = str(options["output"])
        verbosity = int(options["verbosity"])  # type: ignore[arg-type]
        pg_version = options["pg_version"]

        if database not in django_settings.DATABASES:
            raise CommandError(f"Database '{database}' is not configured.")
        try:
            target = get_target(database, str(pg_version) if pg_version else None)
        except (EngineNotSupported, UnsupportedVersionError) as exc:
            raise CommandError(f"{exc}. Configure DJANGO_PGSTREAM['VERSIONS'] or pass --pg-version.") from exc

        dump_options = DumpOptions(**{name: bool(options[name]) for name in FLAG_HELP})
        client = target.client()

        pre_db_dump.send(sender=self.__class__, database=database)

        if verbosity >= 1 and output != "-":
            self.stdout.write(f"Dumping database '{database}' to {output}")

        try:
            if options["zip"]:
                stream = client.dump_zip(target.capability, target.uri, dump_options)
            else:
                stream = client.dump(target.capability, target.uri, dump_options)
        except ProcessExecutionError as exc:
            self.stderr.write(f"Database dump failed: {exc}")
            raise SystemExit(1) from exc

        try:
            with ExitStack() as stack:
                stack.callback(stream.close)
                if output == "-":
                    destination = sys.stdout.buffer
                else:
                    destination = stack.enter_context(Path(output).open("wb"))
                shutil.copyfileobj(stream, destination, client.chunk_size)
        except StreamError as exc:
            if output != "-":
                Path(output).unlink(missing_ok=True)
            self.stderr.write(f"Database dump failed: {exc}")
            raise SystemExit(1) from exc
        except OSError as exc:
            self.stderr.write(f"Failed to write dump: {exc}")
            raise SystemExit(1) from exc

        post_db_dump.send(sender=self.__class__, database=database, path=output)

        if verbosity >= 1 and output != "-":
            self.stdout.write(self.style.SUCCESS(f"Dump completed: {output}"))
