"""Tests for the user-import command line."""

from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from user_import.cli.main import cli
from user_import.client import source_client
from user_import.config import load_config_from_yaml
from user_import.migration import orchestrator as orchestrator_module
from user_import.migration.state import SessionStore

from tests.helpers import SERVICE_KEY, SOURCE_URL, TENANT, FakeSupabase, make_user


@pytest.fixture
def source() -> FakeSupabase:
    return FakeSupabase([make_user(i) for i in range(1, 4)])


@pytest.fixture(autouse=True)
def stub_source(monkeypatch, source: FakeSupabase):
    class StubConnector(source_client.SourceConnector):
        def __init__(self, *args, **kwargs):
            kwargs["transport"] = source.transport
            super().__init__(*args, **kwargs)

    monkeypatch.setattr(orchestrator_module, "SourceConnector", StubConnector)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "destination": {"database_url": f"sqlite:///{tmp_path / 'users.db'}"},
                "state": {"db_path": str(tmp_path / "state.db")},
                "performance": {
                    "retry_attempts": 1,
                    "retry_backoff_min": 0,
                    "retry_backoff_max": 0,
                },
            }
        )
    )
    return path


@pytest.fixture
def invoke(config_file: Path, tmp_path: Path):
    runner = CliRunner()

    def _invoke(*args: str):
        return runner.invoke(
            cli,
            ["--config", str(config_file), "--log-file", str(tmp_path / "cli.log"), *args],
        )

    return _invoke


def run_import(invoke, *extra: str):
    return invoke(
        "run",
        "--url",
        SOURCE_URL,
        "--credential",
        SERVICE_KEY,
        "--tenant",
        TENANT,
        "--yes",
        *extra,
    )


def latest_session_id(config_file: Path) -> str:
    store = SessionStore(load_config_from_yaml(config_file).state)
    return store.list_sessions(limit=1)[0]["session_id"]


def test_validate_succeeds(invoke):
    result = invoke("validate", "--url", SOURCE_URL, "--credential", SERVICE_KEY)

    assert result.exit_code == 0, result.output
    assert "Connected" in result.output


def test_validate_with_bad_credential_exits_3(invoke):
    result = invoke("validate", "--url", SOURCE_URL, "--credential", "wrong")

    assert result.exit_code == 3


def test_preview_prints_sample(invoke):
    result = invoke("preview", "--url", SOURCE_URL, "--credential", SERVICE_KEY, "-n", "2")

    assert result.exit_code == 0, result.output
    assert "User1@Example.com" in result.output


def test_run_imports_everything(invoke, config_file):
    result = run_import(invoke)

    assert result.exit_code == 0, result.output
    assert "Import completed" in result.output

    status = invoke("status", "--tenant", TENANT)
    assert status.exit_code == 0, status.output
    assert "Import Sessions" in status.output


def test_run_with_bad_credential_exits_3(invoke):
    result = invoke(
        "run", "--url", SOURCE_URL, "--credential", "wrong", "--tenant", TENANT, "--yes"
    )

    assert result.exit_code == 3


def test_failed_import_exits_1_and_can_be_resumed(invoke, source, config_file):
    source.users = [make_user(i) for i in range(1, 7)]
    source.fail_pages = {2}

    result = run_import(invoke, "--batch-size", "2")
    assert result.exit_code == 1
    assert "resume" in result.output

    source.fail_pages = set()
    session_id = latest_session_id(config_file)
    resumed = invoke("resume", session_id, "--credential", SERVICE_KEY)

    assert resumed.exit_code == 0, resumed.output
    assert "Import completed" in resumed.output


def test_resume_of_completed_session_exits_5(invoke, config_file):
    run_import(invoke)
    session_id = latest_session_id(config_file)

    result = invoke("resume", session_id, "--credential", SERVICE_KEY)

    assert result.exit_code == 5


def test_export_errors_writes_csv(invoke, source, config_file, tmp_path):
    source.users = [make_user(1), make_user(2, email="not-an-email")]
    run_import(invoke)
    session_id = latest_session_id(config_file)
    output = tmp_path / "errors.csv"

    result = invoke("export-errors", session_id, "-o", str(output))

    assert result.exit_code == 0, result.output
    assert output.read_text() == '"email","reason"\n"not-an-email","invalid_record"\n'


def test_status_of_unknown_session_exits_1(invoke):
    result = invoke("status", "missing")

    assert result.exit_code == 1
