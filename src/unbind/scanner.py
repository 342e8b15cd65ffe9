"""Periodic port scanning loop for unbind."""

import logging
import threading
import time
from collections.abc import Callable

from unbind.adapters import PortInspector
from unbind.config import MIN_SCAN_INTERVAL_MS
from unbind.errors import AdapterUnreachable, EngineError
from unbind.reconciler import Reconciler

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 2000


class ScanLoop:
    """
    Scan loop that samples the port inspector on a fixed cadence.

    Runs in a separate daemon thread and feeds every result to the
    Reconciler. Scheduled scans run one after another on that thread, so
    they never overlap; ``scan_now`` runs an extra scan on the caller's
    thread.
    """

    def __init__(
        self,
        inspector: PortInspector,
        reconciler: Reconciler,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the ScanLoop.

        Args:
            inspector: Source of port snapshots.
            reconciler: Receives every scan result.
            interval_ms: Time between scans in milliseconds. Default 2000.
            clock: Monotonic clock in seconds.
        """
        self._inspector = inspector
        self._reconciler = reconciler
        self._interval_ms = max(MIN_SCAN_INTERVAL_MS, interval_ms)
        self._clock = clock
        self._wakeup = threading.Condition()
        self._stopped = True
        self._generation = 0
        self._next_tick_at: float | None = None
        self._ticks = 0
        self._thread: threading.Thread | None = None

    @property
    def interval_ms(self) -> int:
        """Get the current scan interval."""
        return self._interval_ms

    @property
    def is_running(self) -> bool:
        """Check if the scan thread is running."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def next_tick_at(self) -> float | None:
        """Clock time of the next scheduled scan, None while a scan runs or when stopped."""
        return self._next_tick_at

    @property
    def ticks(self) -> int:
        """Number of scheduled scans started since construction."""
        return self._ticks

    def set_interval(self, interval_ms: int) -> None:
        """
        Change the scan interval.

        The next scheduled scan is re-armed to fire ``interval_ms`` after this
        call; a scan already in flight is left to complete.
        """
        with self._wakeup:
            self._interval_ms = max(MIN_SCAN_INTERVAL_MS, interval_ms)
            if self._next_tick_at is not None:
                self._next_tick_at = self._clock() + self._interval_ms / 1000
                self._wakeup.notify_all()
        logger.debug("Scan interval set to %d ms", self._interval_ms)

    def start(self) -> None:
        """Start the scanning thread; the first scan runs immediately."""
        if self.is_running and not self._stopped:
            return

        with self._wakeup:
            self._stopped = False
            self._generation += 1
            generation = self._generation

        self._thread = threading.Thread(
            target=self._run,
            args=(generation,),
            daemon=True,
            name="ScanLoop",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the scanning thread.

        A scan in flight is not interrupted, but its result is discarded.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        with self._wakeup:
            self._stopped = True
            self._next_tick_at = None
            self._wakeup.notify_all()

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        if thread is None or not thread.is_alive():
            self._thread = None

    def scan_now(self) -> bool:
        """
        Scan immediately, outside the schedule.

        Returns:
            True if the scan succeeded and was applied.
        """
        return self._scan(generation=None)

    def _run(self, generation: int) -> None:
        """Main scanning loop running in the background thread."""
        while self._is_current(generation):
            self._ticks += 1
            self._scan(generation)
            if not self._wait_for_next_tick(generation):
                break

    def _wait_for_next_tick(self, generation: int) -> bool:
        with self._wakeup:
            if not self._is_current(generation):
                return False
            self._next_tick_at = self._clock() + self._interval_ms / 1000
            while self._is_current(generation):
                remaining = self._next_tick_at - self._clock()
                if remaining <= 0:
                    self._next_tick_at = None
                    return True
                self._wakeup.wait(timeout=remaining)
            return False

    def _is_current(self, generation: int) -> bool:
        return not self._stopped and self._generation == generation

    def _scan(self, generation: int | None) -> bool:
        sequence = self._reconciler.begin_scan()
        try:
            ports = self._inspector.scan()
        except EngineError as exc:
            error: EngineError = exc
        except Exception as exc:
            logger.exception("Port inspector raised unexpectedly")
            error = AdapterUnreachable(str(exc) or exc.__class__.__name__)
        else:
            if generation is not None and not self._is_current(generation):
                self._reconciler.discard(sequence)
                return False
            return self._reconciler.apply(sequence, ports)

        if generation is not None and not self._is_current(generation):
            self._reconciler.discard(sequence)
            return False
        self._reconciler.fail(sequence, error)
        return False
