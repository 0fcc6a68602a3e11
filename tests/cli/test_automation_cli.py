"""
Tests for the operator CLI (scripts/automation_cli.py).

Each test runs ``main()`` against a fresh SQLite file and parses the JSON
the command prints.
"""

from __future__ import annotations

import json

import pytest

from school_kernel.db.engine import reset_engine

from scripts.automation_cli import main


@pytest.fixture
def db_args(tmp_path):
    yield ["--db-url", f"sqlite:///{tmp_path / 'cli.db'}", "--create-tables"]
    reset_engine()


def _run(capsys, argv):
    code = main(argv)
    return code, json.loads(capsys.readouterr().out)


class TestStatus:
    def test_prints_dashboard_payload(self, capsys, db_args):
        code, payload = _run(capsys, db_args + ["status"])

        assert code == 0
        assert payload["systemStatus"]["scheduler"] == "stopped"
        assert payload["summary"]["totalScheduledJobs"] == 4


class TestExecution:
    def test_bill_empty_school(self, capsys, db_args):
        code, payload = _run(capsys, db_args + ["bill", "--month", "3", "--year", "2024"])

        assert code == 0
        assert payload["success"] is True
        assert payload["totalStudents"] == 0
        assert "runId" in payload

    def test_bill_invalid_month(self, capsys, db_args):
        code, payload = _run(capsys, db_args + ["bill", "--month", "13", "--year", "2024"])

        assert code == 1
        assert payload["error"]["code"] == "VALIDATION_ERROR"

    def test_remind(self, capsys, db_args):
        code, payload = _run(capsys, db_args + ["remind", "overdue"])
        assert code == 0
        assert payload["totalStudents"] == 0

    def test_remind_rejects_unknown_type(self, db_args):
        with pytest.raises(SystemExit):
            main(db_args + ["remind", "weekly"])


class TestTrigger:
    def test_trigger_configured_job(self, capsys, db_args):
        code, payload = _run(capsys, db_args + ["trigger", "fee-reminder-due"])

        assert code == 0
        assert payload["accepted"] is True
        assert payload["run"]["status"] == "completed"
        assert payload["run"]["trigger"] == "manual"

    def test_trigger_unknown_job(self, capsys, db_args):
        code, payload = _run(capsys, db_args + ["trigger", "nope"])

        assert code == 1
        assert payload["accepted"] is False
        assert payload["error"]["code"] == "JOB_NOT_FOUND"
