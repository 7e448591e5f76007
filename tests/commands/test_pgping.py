from __future__ import annotations

from io import StringIO
from unittest.mock import MagicMock, patch

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import override_settings

from django_pgstream.exceptions import ProcessExecutionError


class TestPgpingCommand:
    def test_reachable(self, fake_bin):
        stdout = StringIO()
        with override_settings(DJANGO_PGSTREAM={"BIN_DIR_TEMPLATE": str(fake_bin), "VERSIONS": {"warehouse": "16"}}):
            call_command("pgping", database="warehouse", stdout=stdout)

        assert "Database 'warehouse' is reachable (psql 16)." in stdout.getvalue()

    @patch("django_pgstream.management.commands.pgping.get_target")
    def test_unreachable(self, mock_get_target: MagicMock):
        target = MagicMock()
        target.client.return_value.ping.side_effect = ProcessExecutionError(
            ["psql"], 2, "could not connect to server", "16"
        )
        mock_get_target.return_value = target
        stderr = StringIO()

        with pytest.raises(SystemExit) as excinfo:
            call_command("pgping", database="warehouse", stderr=stderr)

        assert excinfo.value.code == 1
        assert "could not connect to server" in stderr.getvalue()

    @override_settings(DJANGO_PGSTREAM={"VERSIONS": {}})
    def test_missing_version(self):
        with pytest.raises(CommandError, match="--pg-version"):
            call_command("pgping", database="warehouse")
