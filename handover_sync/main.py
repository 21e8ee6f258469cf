"""Handover Sync - Main entry point."""

import argparse
import json
import logging
import os
import signal
import sys
import threading
from datetime import timedelta
from pathlib import Path
from typing import Optional, Sequence

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from . import __version__
from .config import Config, setup_logging
from .errors import HandoverSyncError
from .export import SUPPORTED_FORMATS
from .importer import SheetImporter
from .notifications import DesktopNotifier
from .sync import LocalStore, OfflineQueue, RetryConfig, SheetsClient, SyncOrchestrator
from .sync.orchestrator import TRIGGER_TIMER
from .sync.protocols import TriggerSource
from .triggers import NetworkPoller, SignalTrigger

logger = logging.getLogger(__name__)


class SyncCoordinator:
    """Owns the scheduler and the trigger sources feeding the orchestrator.

    Every trigger is handed to the scheduler's worker pool so that trigger
    threads never block on network I/O.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        interval_seconds: int,
        trigger_sources: Sequence[TriggerSource] = (),
        scheduler: Optional[BackgroundScheduler] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.interval_seconds = interval_seconds
        self.trigger_sources = list(trigger_sources)
        self.scheduler = scheduler or BackgroundScheduler()

    def start(self) -> None:
        """Run the initial sync check and start the periodic timer."""
        self.scheduler.add_job(
            self.orchestrator.handle_trigger,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            args=[TRIGGER_TIMER],
            id="sync_job",
            replace_existing=True,
        )
        self.scheduler.start()
        self.dispatch(TRIGGER_TIMER)

        for source in self.trigger_sources:
            source.start(self.dispatch)

        logger.info(f"Sync loop started (interval: {self.interval_seconds}s)")

    def dispatch(self, signal_name: str) -> None:
        """Schedule a one-off run of a trigger (e.g. after a network change)."""
        if self.scheduler.running:
            self.scheduler.add_job(
                self.orchestrator.handle_trigger,
                args=[signal_name],
                id=f"trigger:{signal_name}",
                replace_existing=True,
            )
        else:
            self.orchestrator.handle_trigger(signal_name)

    def stop(self) -> None:
        """Stop trigger sources and shut down the scheduler if running."""
        for source in self.trigger_sources:
            source.stop()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)


class HandoverSyncApp:
    """Main application class: builds and wires every component."""

    def __init__(self, config: Optional[Config] = None, store: Optional[LocalStore] = None):
        self.config = config or Config.load()
        self.store = store or LocalStore()

        # Overrides saved alongside the data win over the config file
        self.config.merge_overrides(self.store.read_config())
        endpoint = self.store.get_endpoint() or self.config.endpoint_url

        settings = self.config.sync
        self.remote = SheetsClient(endpoint_url=endpoint, timeout=settings.timeout)
        self.importer = SheetImporter(timeout=settings.timeout)
        self.queue = OfflineQueue(self.store, max_size=settings.max_queue_size)
        self.orchestrator = SyncOrchestrator(
            store=self.store,
            queue=self.queue,
            remote=self.remote,
            notifier=DesktopNotifier(enabled=self.config.notifications),
            max_retries=settings.max_retries,
            stale_after=timedelta(seconds=settings.stale_after_seconds),
            retry_config=RetryConfig(
                max_retries=settings.max_retries,
                base_delay=settings.retry_base_delay,
                max_delay=settings.retry_max_delay,
                jitter=settings.retry_jitter,
            ),
            importer=self.importer,
        )
        self.coordinator = SyncCoordinator(
            self.orchestrator,
            interval_seconds=settings.interval_seconds,
            trigger_sources=[
                NetworkPoller(
                    host=self.config.network.probe_host,
                    port=self.config.network.probe_port,
                    interval=self.config.network.probe_interval,
                ),
                SignalTrigger(),
            ],
        )
        self._shutdown_event = threading.Event()
        self._shutdown_done = False

    def run(self) -> None:
        """Run until SIGINT/SIGTERM."""
        logger.info(f"Handover Sync {__version__} starting...")
        if not self.remote.is_configured:
            logger.warning("No sheet endpoint configured; sync will run locally only")

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        self.coordinator.start()
        self._shutdown_event.wait()

    def _signal_handler(self, signum, frame) -> None:
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}")
        self._shutdown_event.set()

    def shutdown(self) -> None:
        """Shutdown the application. Safe to call multiple times."""
        if self._shutdown_done:
            return
        self._shutdown_done = True
        logger.info("Shutting down...")

        self.coordinator.stop()
        self.remote.close()
        self.importer.close()
        self.store.close()

        logger.info("Shutdown complete")

    def __enter__(self) -> "HandoverSyncApp":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()


def _lock_file(handle) -> None:
    """Take a non-blocking exclusive lock on ``handle``; OSError if held elsewhere."""
    if sys.platform == "win32":
        import msvcrt
        msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
    else:
        import fcntl
        fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)


def _unlock_file(handle) -> None:
    if sys.platform == "win32":
        import msvcrt
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        import fcntl
        fcntl.flock(handle, fcntl.LOCK_UN)


class SingleInstanceLock:
    """Keeps a second agent from running against the same local store.

    The lock file holds the owner's pid; the advisory lock is dropped by the
    OS if the process dies.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else Config.get_data_dir() / ".handover-sync.lock"
        self._handle = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> bool:
        """Try to take the lock without waiting. Returns True on success."""
        if self.held:
            return True
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.path, "a+")  # noqa: SIM115
        try:
            _lock_file(handle)
        except OSError:
            handle.close()
            logger.debug(f"Lock {self.path} is held by another process")
            return False

        handle.seek(0)
        handle.truncate()
        handle.write(str(os.getpid()))
        handle.flush()
        self._handle = handle
        return True

    def release(self) -> None:
        if not self.held:
            return
        handle, self._handle = self._handle, None
        try:
            _unlock_file(handle)
        except OSError as e:
            logger.debug(f"Failed to unlock {self.path}: {e}")
        handle.close()
        try:
            self.path.unlink()
        except OSError:
            pass

    def __enter__(self) -> "SingleInstanceLock":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="handover-sync",
        description="Keep handover records in step with the project spreadsheet.",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("run", help="Run the background sync agent (default)")
    sub.add_parser("sync", help="Run one sync cycle now")
    sub.add_parser("status", help="Show sync status")

    export = sub.add_parser("export", help="Export the local dataset")
    export.add_argument("--format", "-f", default="json", help=f"One of {', '.join(SUPPORTED_FORMATS)}")
    export.add_argument("--output", "-o", type=Path, help="Output file (default: stdout)")

    imp = sub.add_parser("import", help="Import flats from a published Google Sheet")
    imp.add_argument("url", help="Sheet URL")

    endpoint = sub.add_parser("set-endpoint", help="Set the Apps Script web app URL")
    endpoint.add_argument("url", help="Web app URL, or an empty string to disable sync")

    return parser


def _run_agent() -> int:
    lock = SingleInstanceLock()
    if not lock.acquire():
        print("Handover Sync is already running.")
        return 0
    try:
        with HandoverSyncApp() as app:
            app.run()
    finally:
        lock.release()
    return 0


def _run_command(args: argparse.Namespace) -> int:
    with HandoverSyncApp() as app:
        orchestrator = app.orchestrator

        if args.command == "sync":
            report = orchestrator.sync_all()
            if report is None:
                print("Sync skipped")
                return 1
            for warning in report.warnings:
                print(f"warning: {warning}")
            return 0 if report.success else 1

        if args.command == "status":
            print(json.dumps(orchestrator.get_status(), indent=2))
            return 0

        if args.command == "export":
            try:
                output = orchestrator.export(args.format)
            except HandoverSyncError as e:
                print(f"error: {e}", file=sys.stderr)
                return 2
            if args.output:
                mode = "wb" if isinstance(output, bytes) else "w"
                with open(args.output, mode) as f:
                    f.write(output)
            elif isinstance(output, bytes):
                sys.stdout.buffer.write(output)
            else:
                sys.stdout.write(output)
            return 0

        if args.command == "import":
            count = orchestrator.import_from_sheet(args.url)
            if count is None:
                return 1
            print(f"Imported {count} flats")
            return 0

        if args.command == "set-endpoint":
            app.store.set_endpoint(args.url)
            print("Endpoint saved" if args.url.strip() else "Endpoint cleared")
            return 0

    return 2


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.debug)

    if args.command in (None, "run"):
        sys.exit(_run_agent())
    sys.exit(_run_command(args))


if __name__ == "__main__":
    main()
