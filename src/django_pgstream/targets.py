from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote, urlencode

from django.conf import settings as django_settings

from .exceptions import EngineNotSupported, UnsupportedVersionError
from .postgres import PgClient
from .settings import get_setting
from .versions import VersionCapability, resolve

POSTGRES_ENGINES = frozenset(
    {
        "django.db.backends.postgresql",
        "django.db.backends.postgresql_psycopg2",
        "django.contrib.gis.db.backends.postgis",
        "django_prometheus.db.backends.postgresql",
        "django_prometheus.db.backends.postgis",
    }
)

# libpq options that can be carried in the connection URI query string.
URI_OPTIONS = ("sslmode", "sslrootcert", "sslcert", "sslkey", "connect_timeout", "application_name", "options")


@dataclass(frozen=True)
class DatabaseTarget:
    """A Django database alias resolved to what pg_dump/psql need."""

    alias: str
    uri: str
    capability: VersionCapability
    password: str = field(default="", repr=False)

    def env(self) -> dict[str, str]:
        """Environment for the client binaries (password never goes on argv)."""
        return {"PGPASSWORD": self.password} if self.password else {}

    def client(self, **kwargs: Any) -> PgClient:
        return PgClient(env=self.env(), **kwargs)


def connection_uri(database_settings: dict[str, Any]) -> str:
    """Build a ``postgresql://`` URI without the password."""
    user = quote(str(database_settings.get("USER") or ""), safe="")
    host = str(database_settings.get("HOST") or "")
    port = str(database_settings.get("PORT") or "")
    name = quote(str(database_settings.get("NAME") or ""), safe="")

    netloc = ""
    if user:
        netloc = f"{user}@"
    if host.startswith("/"):
        # Unix socket directory: libpq wants it as the host query parameter.
        query = {"host": host}
    else:
        query = {}
        netloc += f"[{host}]" if ":" in host else host
    if port:
        netloc += f":{port}"

    options = database_settings.get("OPTIONS") or {}
    query.update({key: str(options[key]) for key in URI_OPTIONS if key in options})
    uri = f"postgresql://{netloc}/{name}"
    if query:
        uri += f"?{urlencode(query)}"
    return uri


def get_target(database: str = "default", version: str | None = None) -> DatabaseTarget:
    """Resolve a Django database alias.

    The PostgreSQL version comes from ``version`` or ``VERSIONS[database]``;
    there is no implicit default.
    """
    db_settings: dict[str, Any] = django_settings.DATABASES[database]
    engine: str = db_settings["ENGINE"]
    if engine not in POSTGRES_ENGINES:
        raise EngineNotSupported(engine)

    if version is None:
        versions: dict[str, str] = get_setting("VERSIONS")  # type: ignore[assignment]
        if database not in versions:
            raise UnsupportedVersionError(None)
        version = versions[database]

    return DatabaseTarget(
        alias=database,
        uri=connection_uri(db_settings),
        capability=resolve(version),
        password=str(db_settings.get("PASSWORD") or ""),
    )
