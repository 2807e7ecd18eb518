"""Tests for operator CLI commands."""

import json
import signal

import pytest
from click.testing import CliRunner
from sqlalchemy.orm import sessionmaker

from trustline_api import cli as cli_module
from trustline_api.investigations.service import CaseManager
from trustline_api.notifications.service import NotificationService
from trustline_api.settings import get_settings


@pytest.fixture
def export_dirs(tmp_path, monkeypatch):
    settings = get_settings()
    out, staging = tmp_path / "exports", tmp_path / "staging"
    monkeypatch.setattr(settings, "export_dir", str(out))
    monkeypatch.setattr(settings, "export_staging_dir", str(staging))
    return out, staging


@pytest.fixture
def cli_db(engine, monkeypatch):
    monkeypatch.setattr(cli_module, "SessionLocal", sessionmaker(autocommit=False, autoflush=False, bind=engine))


@pytest.fixture
def case(db, clock, platform_caller):
    manager = CaseManager(db, clock=clock, notifier=NotificationService(url="", secret=""))
    return manager.create(platform_caller, {"title": "Session hijack", "case_type": "security"})


def test_export_case_writes_file(cli_db, export_dirs, case):
    out, staging = export_dirs

    result = CliRunner().invoke(cli_module.cli, ["export-case", "--case-id", case.id])

    assert result.exit_code == 0, result.output
    written = out / f"{case.case_number}.json"
    body = json.loads(written.read_text())
    assert list(body)[0] == "generated_at"
    assert body["case"]["case_number"] == case.case_number
    assert list(staging.iterdir()) == []


def test_export_case_custom_name_and_format(cli_db, export_dirs, case):
    out, _ = export_dirs

    result = CliRunner().invoke(
        cli_module.cli, ["export-case", "--case-id", case.id, "--format", "csv", "--out-name", "hijack.csv"]
    )

    assert result.exit_code == 0, result.output
    assert (out / "hijack.csv").read_text().startswith("generated_at,")


def test_interrupted_export_leaves_no_file(cli_db, export_dirs, case, monkeypatch):
    """Test that Ctrl-C during an export removes the partial file."""
    out, staging = export_dirs

    def interrupted_export(self, caller, case_id, fmt="json", cancel_event=None, generated_at=None):
        yield '{"generated_at": "2026-03-02T12:00:00.000000Z"'
        signal.raise_signal(signal.SIGINT)
        yield ', "case": {}}'

    monkeypatch.setattr(CaseManager, "export_audit_trail", interrupted_export)

    result = CliRunner().invoke(cli_module.cli, ["export-case", "--case-id", case.id])

    assert result.exit_code == 1
    assert "cancelled" in result.output
    assert list(out.iterdir()) == []
    assert list(staging.iterdir()) == []


def test_export_unknown_case(cli_db, export_dirs):
    result = CliRunner().invoke(cli_module.cli, ["export-case", "--case-id", "missing"])

    assert result.exit_code == 1
    assert "not found" in result.output.lower()
