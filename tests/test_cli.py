"""
Tests for the CLI interface.
"""

import os
import shutil
import tempfile
from datetime import datetime

import pytest
from typer.testing import CliRunner

from collab_core.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL
from collab_core.core.reducer import Snapshot, apply_fields
from collab_core.storage.db import initialize_schema
from collab_core.storage.models import UsageRecord, UsageStatus
from collab_core.storage.repository import (
    EventRepository,
    ProjectRepository,
    RateWindowRepository,
    UsageRepository,
)

runner = CliRunner()


@pytest.fixture
def db_path():
    """Point the CLI at a temporary database."""
    temp_dir = tempfile.mkdtemp()
    path = os.path.join(temp_dir, "cli.db")
    yield path
    shutil.rmtree(temp_dir, ignore_errors=True)


def _invoke(args, db_path):
    return runner.invoke(app, args, env={"COLLAB_CORE_DB_PATH": db_path})


class TestCLI:
    """Test CLI commands."""

    def test_no_command_prints_hint(self, db_path):
        result = _invoke([], db_path)
        assert result.exit_code == EXIT_CODE_PASS
        assert "--help" in result.output

    def test_init_creates_schema(self, db_path):
        result = _invoke(["init"], db_path)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized" in result.output
        assert os.path.exists(db_path)

    def test_create_project(self, db_path):
        result = _invoke(["create-project", "alice", "Alpha"], db_path)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Created project" in result.output

    def test_replay_in_sync(self, db_path):
        initialize_schema(db_path)
        project = ProjectRepository(db_path).create_project("alice", "Alpha")
        events = EventRepository(db_path)
        events.append_and_project(project.id, "alice", "project.rename", {"name": "Foo"}, apply_fields)
        events.append_and_project(project.id, "alice", "project.rename", {"name": "Bar"}, apply_fields)

        result = _invoke(["replay", project.id], db_path)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Events replayed: 2" in result.output
        assert "matches" in result.output

    def test_replay_detects_and_repairs_drift(self, db_path):
        initialize_schema(db_path)
        project = ProjectRepository(db_path).create_project("alice", "Alpha")
        events = EventRepository(db_path)
        events.append_and_project(project.id, "alice", "project.rename", {"name": "Foo"}, apply_fields)
        events.replace_projection(Snapshot(aggregate_id=project.id, head_seq=1, fields={"name": "Drifted"}))

        result = _invoke(["replay", project.id], db_path)
        assert result.exit_code == EXIT_CODE_FAIL
        assert "drift" in result.output

        result = _invoke(["replay", project.id, "--write"], db_path)
        assert result.exit_code == EXIT_CODE_PASS
        assert events.get_projection(project.id).fields == {"name": "Foo"}

    def test_usage_summary(self, db_path):
        initialize_schema(db_path)
        ledger = UsageRepository(db_path)
        ledger.record(UsageRecord(
            principal_id="alice",
            provider="openai",
            model="gpt-4",
            tokens_in=1000,
            tokens_out=500,
            cost=0.06,
            status=UsageStatus.OK,
            recorded_at=datetime.now(),
        ))
        ledger.record(UsageRecord.failed("alice", "openai", "gpt-4"))

        result = _invoke(["usage", "alice"], db_path)

        assert result.exit_code == EXIT_CODE_PASS
        assert "$0.0600" in result.output
        assert "$10.0000" in result.output
        assert "Recent calls" in result.output

    def test_usage_with_no_calls(self, db_path):
        initialize_schema(db_path)

        result = _invoke(["usage", "nobody", "--project", "p1"], db_path)

        assert result.exit_code == EXIT_CODE_PASS
        assert "No AI calls recorded today" in result.output
        assert "$5.0000" in result.output

    def test_cleanup_rate_limits(self, db_path):
        initialize_schema(db_path)
        windows = RateWindowRepository(db_path)
        windows.hit("ai_gateway:alice", 60, 30)

        result = _invoke(["cleanup-rate-limits", "--max-age-hours", "1"], db_path)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Removed 1" in result.output
        assert windows.get_count("ai_gateway:alice", 60) == 0

    def test_bad_config_file_fails(self, db_path):
        result = _invoke(["init", "--config", "missing.yaml"], db_path)

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Config file not found" in result.output
