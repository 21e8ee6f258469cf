"""Trigger sources that ask the sync orchestrator to act.

- NetworkPoller: socket-based connectivity probe, emits lost/restored
- SignalTrigger: a POSIX signal (SIGUSR1 by default) requests a resync,
  the headless stand-in for "the app became visible again"

Both implement ``TriggerSource``: ``start(emit)`` and ``stop()``.
"""

import logging
import platform
import signal
import socket
import threading
from typing import Callable, Optional

from .sync.orchestrator import (
    TRIGGER_CONNECTIVITY_LOST,
    TRIGGER_CONNECTIVITY_RESTORED,
    TRIGGER_RESYNC,
)

logger = logging.getLogger(__name__)

_system = platform.system()


class NetworkPoller:
    """Poll network connectivity and emit a signal on state changes."""

    def __init__(self, host: str, port: int = 443, interval: int = 15, timeout: float = 5):
        self.host = host
        self.port = port
        self.interval = interval
        self.timeout = timeout
        self.online: Optional[bool] = None  # None = unknown
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def probe(self) -> bool:
        try:
            socket.create_connection((self.host, self.port), timeout=self.timeout).close()
            return True
        except OSError:
            return False

    def poll_once(self, emit: Callable[[str], None]) -> None:
        """Probe once and emit if the state changed since the last probe.

        The first probe only emits when it finds the network down, so an
        agent started offline still goes offline.
        """
        online = self.probe()
        if self.online is None:
            if not online:
                logger.info("Network unavailable at startup")
                _safe_call(emit, TRIGGER_CONNECTIVITY_LOST)
        elif self.online != online:
            status = "online" if online else "offline"
            logger.info(f"Network change detected: {status}")
            _safe_call(
                emit,
                TRIGGER_CONNECTIVITY_RESTORED if online else TRIGGER_CONNECTIVITY_LOST,
            )
        self.online = online

    def start(self, emit: Callable[[str], None]) -> None:
        def poll():
            while not self._stop.is_set():
                self.poll_once(emit)
                self._stop.wait(self.interval)

        self._stop.clear()
        self._thread = threading.Thread(target=poll, name="network-poller", daemon=True)
        self._thread.start()
        logger.debug(f"Network poller started (interval: {self.interval}s)")

    def stop(self) -> None:
        self._stop.set()


class SignalTrigger:
    """Emit a resync request when the process receives a signal.

    Must be started from the main thread; the handler itself only hands the
    work to a daemon thread so the sync never runs inside a signal handler.
    """

    def __init__(self, signum: Optional[int] = None):
        if signum is None:
            signum = getattr(signal, "SIGUSR1", None)
        self.signum = signum
        self._previous = None

    def start(self, emit: Callable[[str], None]) -> None:
        if self.signum is None:
            logger.warning(f"Resync signal not supported on {_system}")
            return

        def handler(signum, frame):
            logger.info(f"Received signal {signum}, requesting resync")
            threading.Thread(
                target=_safe_call, args=(emit, TRIGGER_RESYNC), daemon=True
            ).start()

        self._previous = signal.signal(self.signum, handler)

    def stop(self) -> None:
        if self.signum is not None and self._previous is not None:
            signal.signal(self.signum, self._previous)
            self._previous = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _safe_call(fn: Callable, *args) -> None:
    """Call a function, catching and logging any exceptions."""
    try:
        fn(*args)
    except Exception:
        logger.exception(f"Error in trigger callback {getattr(fn, '__name__', fn)}")
