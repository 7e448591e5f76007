from __future__ import annotations

import io
import os
import sys
import time
import zipfile
from pathlib import Path

import httpx
import pytest

from django_pgstream.versions import VersionCapability

CONN = "postgresql://app@db.example.com:5432/warehouse"

FAKE_PG_DUMP = """
import os
import sys

pidfile = os.environ.get("FAKE_PG_DUMP_PIDFILE")
if pidfile:
    with open(pidfile, "w") as fh:
        fh.write(str(os.getpid()))

mode = os.environ.get("FAKE_PG_DUMP_MODE", "echo")
out = sys.stdout.buffer
if mode == "echo":
    out.write("\\n".join(sys.argv[1:]).encode())
elif mode == "payload":
    with open(os.environ["FAKE_PG_DUMP_PAYLOAD"], "rb") as fh:
        out.write(fh.read())
elif mode == "fail":
    out.write(b"x" * int(os.environ.get("FAKE_PG_DUMP_BYTES", "0")))
    out.flush()
    sys.stderr.write("pg_dump: error: connection to server failed\\n")
    sys.exit(3)
elif mode == "endless":
    while True:
        out.write(b"-- filler line\\n" * 1024)
        out.flush()
elif mode == "stubborn":
    import signal
    import time

    signal.signal(signal.SIGTERM, signal.SIG_IGN)
    out.write(b"head")
    out.flush()
    time.sleep(60)
"""

FAKE_PSQL = """
import json
import os
import shutil
import sys

args = sys.argv[1:]
argv_file = os.environ.get("FAKE_PSQL_ARGV")
if argv_file:
    with open(argv_file, "w") as fh:
        json.dump(args, fh)

if os.environ.get("FAKE_PSQL_MODE") == "fail":
    sys.stderr.write("psql: error: relation \\"widgets\\" does not exist\\n")
    sys.exit(2)

record = os.environ.get("FAKE_PSQL_RECORD")
if record and "-f" in args:
    shutil.copyfile(args[args.index("-f") + 1], record)
"""


@pytest.fixture()
def fake_bin(tmp_path: Path) -> Path:
    """Directory with executable ``pg_dump`` and ``psql`` stand-ins."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    for name, body in (("pg_dump", FAKE_PG_DUMP), ("psql", FAKE_PSQL)):
        script = bin_dir / name
        script.write_text(f"#!{sys.executable}\n{body}")
        script.chmod(0o755)
    return bin_dir


@pytest.fixture()
def capability(fake_bin: Path) -> VersionCapability:
    return VersionCapability(identifier="16", pg_dump=str(fake_bin / "pg_dump"), psql=str(fake_bin / "psql"))


@pytest.fixture()
def workspace_dir(tmp_path: Path) -> Path:
    path = tmp_path / "workspaces"
    path.mkdir()
    return path


def make_zip(entries: dict[str, bytes], compression: int = zipfile.ZIP_DEFLATED) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, mode="w", compression=compression) as archive:
        for name, data in entries.items():
            archive.writestr(name, data)
    return buffer.getvalue()


def serving(body: bytes, status_code: int = 200) -> httpx.Client:
    """An httpx client whose every GET returns ``body``."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, content=body)

    return httpx.Client(transport=httpx.MockTransport(handler))


def read_until_error(stream, chunk_size: int = 1024) -> tuple[bytes, BaseException | None]:
    """Read ``stream`` to exhaustion, keeping the bytes seen before an error."""
    received = bytearray()
    while True:
        try:
            chunk = stream.read(chunk_size)
        except Exception as exc:
            return bytes(received), exc
        if not chunk:
            return bytes(received), None
        received += chunk


def wait_for_exit(pid: int, timeout: float = 10.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return True
        time.sleep(0.05)
    return False


def read_pid(pidfile: Path, timeout: float = 10.0) -> int:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if pidfile.exists() and pidfile.read_text():
            return int(pidfile.read_text())
        time.sleep(0.05)
    raise AssertionError(f"{pidfile} was never written")
