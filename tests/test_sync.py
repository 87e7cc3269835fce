"""
Integration tests for sync orchestration.

Runs the full pipeline over temporary transcript trees.
"""

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from jevons.config.loader import TrackerConfig
from jevons.core.sync import SyncError, run_sync

SLUG = "-Users-test-my-project"

SESSION_1 = """{"cwd":"/Users/test/my-project","type":"user","message":{"role":"user","content":"Hello"},"timestamp":"2025-01-15T10:00:00.000Z"}
{"type":"assistant","message":{"role":"assistant","content":[{"type":"text","text":"Hi!"}],"usage":{"input_tokens":100,"output_tokens":50,"cache_read_input_tokens":20,"cache_creation_input_tokens":10}},"timestamp":"2025-01-15T10:00:10.000Z","isApiErrorMessage":false}
{"type":"user","message":{"role":"user","content":"Write code"},"timestamp":"2025-01-15T10:01:00.000Z"}
{"type":"assistant","message":{"role":"assistant","content":[{"type":"text","text":"Here's code"}],"usage":{"input_tokens":200,"output_tokens":150,"cache_read_input_tokens":40,"cache_creation_input_tokens":15}},"timestamp":"2025-01-15T10:01:10.000Z","isApiErrorMessage":false}
"""

SESSION_2 = """{"type":"user","message":{"role":"user","content":"Fix bug"},"timestamp":"2025-01-15T11:00:00.000Z"}
{"type":"assistant","message":{"role":"assistant","content":[{"type":"text","text":"Fixed!"}],"usage":{"input_tokens":300,"output_tokens":100,"cache_read_input_tokens":0,"cache_creation_input_tokens":0}},"timestamp":"2025-01-15T11:00:05.000Z","isApiErrorMessage":false}
"""

NOW = datetime(2025, 1, 16, 8, 0, 0, tzinfo=timezone.utc)

OUTPUT_FILES = ["events.tsv", "live-events.tsv", "projects.json", "account.json", "sync-status.json"]


class SyncTestCase:
    """Base class with a source tree and a data root."""

    def setup_method(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.source_dir = self.temp_dir / "source"
        self.data_dir = self.temp_dir / "data"
        self.config = TrackerConfig(
            data_root=self.data_dir,
            source_dir=self.source_dir,
            account_file=self.temp_dir / "claude.json",
        )

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_session(self, name, content, slug=SLUG):
        project_dir = self.source_dir / slug
        project_dir.mkdir(parents=True, exist_ok=True)
        (project_dir / name).write_text(content, encoding='utf-8')

    def _read(self, name):
        return (self.data_dir / name).read_text(encoding='utf-8')

    def _write_fixtures(self):
        self._write_session("session-001.jsonl", SESSION_1)
        self._write_session("session-002.jsonl", SESSION_2)


class TestSyncRun(SyncTestCase):
    """Test a full run over two transcripts."""

    def test_end_to_end(self):
        self._write_fixtures()

        result = run_sync(self.config, now=NOW)

        assert result.session_files == 2
        assert result.event_rows == 3
        assert result.live_event_rows == 3
        assert result.source_root == str(self.source_dir)

        lines = self._read("events.tsv").strip().split("\n")
        assert len(lines) == 4
        assert lines[0].startswith("ts_epoch\tts_iso\tproject_slug")
        assert "session-001" in lines[1]
        assert "session-001" in lines[2]
        assert "session-002" in lines[3]
        epochs = [int(line.split("\t")[0]) for line in lines[1:]]
        assert epochs == sorted(epochs)

        live_lines = self._read("live-events.tsv").strip().split("\n")
        assert len(live_lines) == 4
        assert "prompt_preview" in live_lines[0]
        assert [line.split("\t")[4] for line in live_lines[1:]] == ["Hello", "Write code", "Fix bug"]

        projects = json.loads(self._read("projects.json"))
        assert projects == [{"slug": SLUG, "path": "/Users/test/my-project"}]

        status = json.loads(self._read("sync-status.json"))
        assert status["session_files"] == 2
        assert status["event_rows"] == 3
        assert status["live_event_rows"] == 3
        assert status["source_root"] == str(self.source_dir)
        assert status["last_sync_iso"] == "2025-01-16T08:00:00Z"
        assert status["last_sync_epoch"] == int(NOW.timestamp())

        assert json.loads(self._read("account.json")) == {}

    def test_account_profile_written(self):
        self._write_fixtures()
        self.config.account_file.write_text(json.dumps({
            "oauthAccount": {"displayName": "Test", "emailAddress": "t@example.com"},
            "userID": "u-1",
        }), encoding='utf-8')

        run_sync(self.config, now=NOW)

        account = json.loads(self._read("account.json"))
        assert account["display_name"] == "Test"
        assert account["email"] == "t@example.com"
        assert account["user_id"] == "u-1"
        assert account["generated_at"] == "2025-01-16T08:00:00Z"

    def test_idempotent(self):
        self._write_fixtures()

        run_sync(self.config, now=NOW)
        first = {name: self._read(name) for name in OUTPUT_FILES}
        run_sync(self.config, now=NOW)
        second = {name: self._read(name) for name in OUTPUT_FILES}

        assert first == second

    def test_stores_identical_across_different_times(self):
        self._write_fixtures()

        run_sync(self.config)
        first = [self._read(name) for name in ("events.tsv", "live-events.tsv", "projects.json")]
        run_sync(self.config)
        second = [self._read(name) for name in ("events.tsv", "live-events.tsv", "projects.json")]

        assert first == second

    def test_replayed_lines_are_deduplicated(self):
        """Identical rows produced by replayed turns are written once."""
        self._write_session("session-001.jsonl", SESSION_1 + SESSION_1)

        result = run_sync(self.config, now=NOW)

        assert result.event_rows == 2
        assert result.live_event_rows == 2

    def test_deeply_nested_lines_do_not_abort_the_run(self):
        """Undecodable transcript and account lines are skipped, not fatal."""
        self._write_session("session-002.jsonl", "[" * 100000 + "\n" + SESSION_2)
        self.config.account_file.write_text("[" * 100000, encoding='utf-8')

        result = run_sync(self.config, now=NOW)

        assert result.event_rows == 1
        assert json.loads(self._read("account.json")) == {}

    def test_unknown_project_path(self):
        self._write_session("session-002.jsonl", SESSION_2, slug="no-cwd")

        run_sync(self.config, now=NOW)

        projects = json.loads(self._read("projects.json"))
        assert projects == [{"slug": "no-cwd", "path": "/unknown/no-cwd"}]


class TestSyncEmptySource(SyncTestCase):
    """Test runs with nothing to ingest."""

    def test_missing_source_is_not_an_error(self):
        result = run_sync(self.config, now=NOW)

        assert result.session_files == 0
        assert result.event_rows == 0
        assert result.live_event_rows == 0
        assert self._read("events.tsv").count("\n") == 1
        assert self._read("projects.json") == "[]\n"
        for name in OUTPUT_FILES:
            assert (self.data_dir / name).exists()

    def test_ignores_non_jsonl(self):
        self._write_session("notes.txt", SESSION_1)

        result = run_sync(self.config, now=NOW)

        assert result.session_files == 0


class TestSyncFailures(SyncTestCase):
    """Test fatal errors."""

    def test_write_failure_raises_sync_error(self):
        self._write_fixtures()

        with patch("jevons.core.sync.write_projects_json", side_effect=OSError("disk full")):
            with pytest.raises(SyncError) as exc_info:
                run_sync(self.config, now=NOW)

        assert "projects.json" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, OSError)

    def test_data_root_not_creatable(self):
        blocker = self.temp_dir / "blocker"
        blocker.write_text("file, not a directory", encoding='utf-8')
        config = TrackerConfig(
            data_root=blocker / "data",
            source_dir=self.source_dir,
            account_file=self.config.account_file,
        )

        with pytest.raises(SyncError):
            run_sync(config, now=NOW)

    def test_previous_reports_survive_failed_write(self):
        self._write_fixtures()
        run_sync(self.config, now=NOW)
        before = self._read("events.tsv")

        self._write_session("session-003.jsonl", SESSION_2.replace("Fix bug", "Another"), slug="other")
        with patch("jevons.storage.writer.os.replace", side_effect=OSError("read-only")):
            with pytest.raises(SyncError):
                run_sync(self.config, now=NOW)

        assert self._read("events.tsv") == before
        assert not [n for n in os.listdir(self.data_dir) if n.endswith(".tmp")]
