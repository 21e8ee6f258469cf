"""Tests for the scheduler wiring and the command line."""

import json
import os
import tempfile
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from handover_sync.config import Config
from handover_sync.main import HandoverSyncApp, SingleInstanceLock, SyncCoordinator, build_parser, main
from handover_sync.models import empty_dataset
from handover_sync.sync.orchestrator import TRIGGER_CONNECTIVITY_RESTORED, TRIGGER_TIMER
from handover_sync.sync.store import LocalStore


class TestSyncCoordinator:
    """Tests for SyncCoordinator."""

    def setup_method(self):
        """Set up test fixtures."""
        self.orchestrator = Mock()
        self.scheduler = Mock()
        self.scheduler.running = False
        self.source = Mock()
        self.coordinator = SyncCoordinator(
            self.orchestrator,
            interval_seconds=300,
            trigger_sources=[self.source],
            scheduler=self.scheduler,
        )

    def test_start_schedules_timer_and_sources(self):
        """Test start adds the interval job and starts every source."""
        self.coordinator.start()

        job_kwargs = self.scheduler.add_job.call_args_list[0].kwargs
        assert job_kwargs["id"] == "sync_job"
        assert job_kwargs["args"] == [TRIGGER_TIMER]
        self.scheduler.start.assert_called_once()
        self.source.start.assert_called_once_with(self.coordinator.dispatch)

    def test_start_runs_initial_check(self):
        """Test an initial staleness check happens at startup."""
        self.coordinator.start()

        self.orchestrator.handle_trigger.assert_called_once_with(TRIGGER_TIMER)

    def test_dispatch_uses_scheduler_when_running(self):
        self.scheduler.running = True

        self.coordinator.dispatch(TRIGGER_CONNECTIVITY_RESTORED)

        kwargs = self.scheduler.add_job.call_args.kwargs
        assert kwargs["args"] == [TRIGGER_CONNECTIVITY_RESTORED]
        assert kwargs["id"] == f"trigger:{TRIGGER_CONNECTIVITY_RESTORED}"
        self.orchestrator.handle_trigger.assert_not_called()

    def test_dispatch_runs_inline_when_stopped(self):
        self.coordinator.dispatch(TRIGGER_CONNECTIVITY_RESTORED)

        self.orchestrator.handle_trigger.assert_called_once_with(TRIGGER_CONNECTIVITY_RESTORED)

    def test_stop(self):
        self.scheduler.running = True

        self.coordinator.stop()

        self.source.stop.assert_called_once()
        self.scheduler.shutdown.assert_called_once_with(wait=False)


class TestHandoverSyncApp:
    """Tests for HandoverSyncApp wiring."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = Path(self.temp_dir) / "app.db"

    def _app(self, config=None) -> HandoverSyncApp:
        return HandoverSyncApp(config=config or Config(notifications=False), store=LocalStore(self.db_path))

    def test_stored_endpoint_wins(self):
        """Test the endpoint saved in the store overrides the config file."""
        store = LocalStore(self.db_path)
        store.set_endpoint("https://stored/exec")
        store.close()

        with self._app(Config(endpoint_url="https://file/exec", notifications=False)) as app:
            assert app.remote.endpoint_url == "https://stored/exec"

    def test_config_endpoint_used_when_none_stored(self):
        with self._app(Config(endpoint_url="https://file/exec", notifications=False)) as app:
            assert app.remote.is_configured is True

    def test_stored_overrides_applied(self):
        """Test the persisted sync_config blob tunes the orchestrator."""
        store = LocalStore(self.db_path)
        store.write_config({"sync": {"max_retries": 7, "stale_after_seconds": 60}})
        store.close()

        with self._app() as app:
            assert app.orchestrator.max_retries == 7
            assert app.orchestrator.stale_after.total_seconds() == 60

    def test_mistyped_stored_override_keeps_default(self):
        """Test a stored setting of the wrong type falls back to the default."""
        store = LocalStore(self.db_path)
        store.write_config({"sync": {"max_retries": "3"}})
        store.close()

        with self._app() as app:
            assert app.orchestrator.max_retries == 3
            assert isinstance(app.orchestrator.max_retries, int)

    def test_browser_sync_config_applied(self):
        """Test the browser app's saved settings configure the agent."""
        store = LocalStore(self.db_path)
        store.write_config({"googleScriptUrl": "https://browser/exec", "maxRetries": 4})
        store.close()

        with self._app() as app:
            assert app.remote.endpoint_url == "https://browser/exec"
            assert app.orchestrator.max_retries == 4

    def test_shutdown_is_idempotent(self):
        app = self._app()

        app.shutdown()
        app.shutdown()


class TestCommandLine:
    """Tests for the argument parser and one-shot commands."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = Path(self.temp_dir) / "cli.db"

    def _run(self, argv):
        def make_app():
            return HandoverSyncApp(config=Config(notifications=False), store=LocalStore(self.db_path))

        with patch("handover_sync.main.setup_logging"), patch(
            "handover_sync.main.HandoverSyncApp", side_effect=make_app
        ):
            with pytest.raises(SystemExit) as exc_info:
                main(argv)
        return exc_info.value.code

    def test_parser_defaults(self):
        args = build_parser().parse_args(["export"])

        assert args.command == "export"
        assert args.format == "json"
        assert args.output is None

    def test_parser_no_command(self):
        assert build_parser().parse_args([]).command is None

    def test_export_to_file(self):
        """Test exporting CSV to a file."""
        store = LocalStore(self.db_path)
        data = empty_dataset()
        data["towers"]["A"]["flats"]["A-101"] = {"keyHandover": {"completed": True}}
        store.write(data)
        store.close()
        output = Path(self.temp_dir) / "out.csv"

        code = self._run(["export", "--format", "csv", "-o", str(output)])

        assert code == 0
        assert output.read_text().splitlines()[1] == "A,101,Yes,No,No,No,No"

    def test_export_unsupported_format(self, capsys):
        code = self._run(["export", "-f", "pdf"])

        assert code == 2
        assert "Unsupported format: pdf" in capsys.readouterr().err

    def test_set_endpoint(self):
        code = self._run(["set-endpoint", "https://script.google.com/macros/s/x/exec"])

        store = LocalStore(self.db_path)
        assert code == 0
        assert store.get_endpoint() == "https://script.google.com/macros/s/x/exec"
        store.close()

    def test_status(self, capsys):
        code = self._run(["status"])

        status = json.loads(capsys.readouterr().out)
        assert code == 0
        assert status["queue_size"] == 0
        assert status["endpoint_configured"] is False

    def test_sync_without_endpoint(self):
        """Test a one-shot sync with no endpoint succeeds locally."""
        assert self._run(["sync"]) == 0


class TestSingleInstanceLock:
    def test_second_lock_fails(self):
        path = Path(tempfile.mkdtemp()) / "test.lock"
        first = SingleInstanceLock(path)
        second = SingleInstanceLock(path)

        assert first.acquire() is True
        try:
            assert second.acquire() is False
        finally:
            first.release()

        assert second.acquire() is True
        second.release()

    def test_lock_writes_pid_and_cleans_up(self):
        path = Path(tempfile.mkdtemp()) / "pid.lock"

        with SingleInstanceLock(path) as lock:
            assert lock.acquire() is True
            assert lock.acquire() is True
            assert lock.held is True
            assert path.read_text() == str(os.getpid())

        assert lock.held is False
        assert not path.exists()
