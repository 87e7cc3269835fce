"""
Tests for the CLI interface.
"""
import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from jevons.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL
from jevons.core.sync import SyncError
from jevons.storage.models import SyncResult, UsageEvent
from jevons.storage.writer import write_events_tsv

runner = CliRunner()

TRANSCRIPT = (
    '{"type":"user","cwd":"/work/proj","message":{"role":"user","content":"Hello"},"timestamp":"2025-01-15T10:00:00Z"}\n'
    '{"type":"assistant","message":{"role":"assistant","content":"Hi","usage":{"input_tokens":10,"output_tokens":5,'
    '"cache_read_input_tokens":0,"cache_creation_input_tokens":0}},"timestamp":"2025-01-15T10:00:05Z"}\n'
)


@pytest.fixture
def dirs(tmp_path):
    """Create a source tree with one transcript and an empty data root path."""
    source = tmp_path / "source"
    (source / "proj").mkdir(parents=True)
    (source / "proj" / "s1.jsonl").write_text(TRANSCRIPT, encoding='utf-8')
    return source, tmp_path / "data"


@pytest.fixture
def mock_run_sync():
    """Mock the run_sync function."""
    with patch('jevons.cli.main.run_sync') as mock:
        yield mock


class TestSyncCommand:
    """Test the sync command."""

    def test_sync_writes_reports(self, dirs):
        source, data = dirs

        result = runner.invoke(app, ["sync", "--source", str(source), "--data-root", str(data)])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Sync Result" in result.output
        assert "Event rows" in result.output
        assert (data / "events.tsv").exists()
        assert json.loads((data / "sync-status.json").read_text(encoding='utf-8'))["event_rows"] == 1

    def test_sync_with_no_transcripts(self, tmp_path):
        result = runner.invoke(app, [
            "sync", "--source", str(tmp_path / "none"), "--data-root", str(tmp_path / "data"),
        ])

        assert result.exit_code == EXIT_CODE_PASS
        assert "No transcripts found" in result.output

    def test_sync_failure_exits_with_error(self, tmp_path, mock_run_sync):
        mock_run_sync.side_effect = SyncError("write events.tsv: disk full")

        result = runner.invoke(app, ["sync", "--data-root", str(tmp_path)])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Sync failed" in result.output

    def test_sync_uses_config_file(self, tmp_path, mock_run_sync):
        mock_run_sync.return_value = SyncResult(0, 0, 0, "/from/config")
        config_path = tmp_path / "jevons.yaml"
        config_path.write_text("source_dir: /from/config\ndata_root: /data/from/config\n", encoding='utf-8')

        result = runner.invoke(app, ["sync", "--config", str(config_path)])

        assert result.exit_code == EXIT_CODE_PASS
        config = mock_run_sync.call_args[0][0]
        assert str(config.source_dir) == "/from/config"
        assert str(config.data_root) == "/data/from/config"

    def test_invalid_config_exits_with_error(self, tmp_path):
        config_path = tmp_path / "jevons.yaml"
        config_path.write_text("unknown: 1\n", encoding='utf-8')

        result = runner.invoke(app, ["sync", "--config", str(config_path)])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid configuration" in result.output


class TestTotalCommand:
    """Test the total command."""

    def test_missing_events_file(self, tmp_path):
        result = runner.invoke(app, ["total", "--data-root", str(tmp_path)])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "no synced events found" in result.output

    def test_totals_for_all_events(self, tmp_path):
        write_events_tsv(tmp_path / "events.tsv", [
            UsageEvent.from_counts(1, "", "a", "s", 10, 5, 1, 1),
            UsageEvent.from_counts(2, "", "b", "s", 20, 5, 0, 0),
        ])

        result = runner.invoke(app, ["total", "--range", "all", "--data-root", str(tmp_path)])

        assert result.exit_code == EXIT_CODE_PASS
        totals = json.loads(result.output)
        assert totals["events"] == 2
        assert totals["billable"] == 40
        assert totals["total_with_cache"] == 42
        assert totals["range"] == "all"

    def test_project_filter(self, tmp_path):
        write_events_tsv(tmp_path / "events.tsv", [
            UsageEvent.from_counts(1, "", "a", "s", 10, 5, 0, 0),
            UsageEvent.from_counts(2, "", "b", "s", 20, 5, 0, 0),
        ])

        result = runner.invoke(app, ["total", "--range", "all", "--project", "b", "--data-root", str(tmp_path)])

        assert json.loads(result.output)["input"] == 20

    def test_invalid_range(self, tmp_path):
        write_events_tsv(tmp_path / "events.tsv", [])

        result = runner.invoke(app, ["total", "--range", "2y", "--data-root", str(tmp_path)])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "unknown range" in result.output


class TestStatusCommand:
    """Test the status command."""

    def test_status_before_sync(self, tmp_path):
        result = runner.invoke(app, ["status", "--data-root", str(tmp_path)])

        assert result.exit_code == EXIT_CODE_PASS
        assert "sync_last_status_json=none" in result.output
        assert f"events_file={tmp_path / 'events.tsv'}" in result.output

    def test_status_after_sync(self, dirs):
        source, data = dirs
        runner.invoke(app, ["sync", "--source", str(source), "--data-root", str(data)])

        result = runner.invoke(app, ["status", "--data-root", str(data)])

        line = next(row for row in result.output.splitlines() if row.startswith("sync_last_status_json="))
        status = json.loads(line.split("=", 1)[1])
        assert status["session_files"] == 1
        assert status["source_root"] == str(source)


class TestDoctorCommand:
    """Test the doctor command."""

    def test_healthy_environment(self, dirs):
        source, data = dirs
        runner.invoke(app, ["sync", "--source", str(source), "--data-root", str(data)])

        result = runner.invoke(app, ["doctor", "--source", str(source), "--data-root", str(data)])

        assert result.exit_code == EXIT_CODE_PASS
        assert "[OK] Found 1 session files" in result.output
        assert "[OK] Exists" in result.output
        assert f"events.tsv: {(data / 'events.tsv').stat().st_size} bytes" in result.output
        assert "All checks passed." in result.output

    def test_missing_directories_reported(self, tmp_path):
        data = tmp_path / "data"

        result = runner.invoke(app, [
            "doctor", "--source", str(tmp_path / "none"), "--data-root", str(data),
        ])

        assert result.exit_code == EXIT_CODE_PASS
        assert "[WARN] Source directory does not exist" in result.output
        assert "[WARN] Data directory does not exist" in result.output
        assert "events.tsv: not found (run: jevons sync)" in result.output
        assert "Some checks failed" in result.output
        assert not data.exists()

    def test_fix_creates_data_directory(self, dirs):
        source, data = dirs

        result = runner.invoke(app, ["doctor", "--fix", "--source", str(source), "--data-root", str(data)])

        assert result.exit_code == EXIT_CODE_PASS
        assert "[FIXED] Created data directory" in result.output
        assert data.is_dir()
