from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path

import pytest

from django_pgstream.versions import resolve

PG_VERSION = os.environ.get("TEST_PG_VERSION", "16")
PG_HOST = os.environ.get("TEST_PG_HOST", "localhost")
PG_PORT = os.environ.get("TEST_PG_PORT", "5432")
PG_USER = os.environ.get("TEST_PG_USER", "django_pgstream")
PG_PASSWORD = os.environ.get("TEST_PG_PASSWORD", "testpassword")
PG_NAME = os.environ.get("TEST_PG_NAME", "django_pgstream_test")

PG_URI = f"postgresql://{PG_USER}@{PG_HOST}:{PG_PORT}/{PG_NAME}"
PG_ENV = {"PGPASSWORD": PG_PASSWORD}


def _pg_available() -> bool:
    capability = resolve(PG_VERSION, bin_dir_template="/usr/lib/postgresql/{version}/bin")
    if not (Path(capability.pg_dump).exists() and Path(capability.psql).exists()):
        return False
    if not shutil.which("pg_isready"):
        return False
    try:
        result = subprocess.run(
            ["pg_isready", "-h", PG_HOST, "-p", PG_PORT, "-U", PG_USER],
            capture_output=True,
            timeout=5,
        )
        return result.returncode == 0
    except (OSError, subprocess.TimeoutExpired):
        return False


requires_postgres = pytest.mark.skipif(not _pg_available(), reason="PostgreSQL not available")


def run_sql(sql: str) -> str:
    capability = resolve(PG_VERSION, bin_dir_template="/usr/lib/postgresql/{version}/bin")
    result = subprocess.run(
        [capability.psql, PG_URI, "-At", "-v", "ON_ERROR_STOP=1", "-c", sql],
        capture_output=True,
        env={**os.environ, **PG_ENV},
        check=True,
    )
    return result.stdout.decode().strip()


@pytest.fixture()
def widgets_table():
    run_sql("DROP TABLE IF EXISTS pgstream_widgets; CREATE TABLE pgstream_widgets (id integer, name text);")
    run_sql("INSERT INTO pgstream_widgets VALUES (1, 'gear'), (2, 'sprocket');")
    yield "pgstream_widgets"
    run_sql("DROP TABLE IF EXISTS pgstream_widgets;")
