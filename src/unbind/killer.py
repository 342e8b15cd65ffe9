"""Kill requests and their follow-up."""

import logging
from collections.abc import Callable

from unbind.adapters import ProcessTerminator
from unbind.errors import AdapterUnreachable, EngineError
from unbind.history import HistoryLog
from unbind.models import KillHint
from unbind.reconciler import Reconciler

logger = logging.getLogger(__name__)

UNKNOWN_PORT = 0
UNKNOWN_PROCESS = "unknown"


class KillCoordinator:
    """
    Terminates processes and folds the result back into the view.

    A successful kill is recorded in the history, the pid is hidden from the
    view as a tentative kill, and a scan is forced so the freed port drops
    out as soon as possible. A failed kill only sets ``last_error``.

    Kills are independent of each other: there is no global lock, and
    killing an already-dead pid is reported however the terminator reports
    it.
    """

    def __init__(
        self,
        terminator: ProcessTerminator,
        reconciler: Reconciler,
        history: HistoryLog,
        force_scan: Callable[[], object],
    ) -> None:
        self._terminator = terminator
        self._reconciler = reconciler
        self._history = history
        self._force_scan = force_scan

    def kill(self, pid: int, hint: KillHint | None = None) -> bool:
        """
        Terminate ``pid``.

        Args:
            pid: Process to terminate; it need not be in the current view.
            hint: Port and process name to record in the history.

        Returns:
            True if the terminator reported success.
        """
        return self.attempt(pid, hint) is None

    def attempt(self, pid: int, hint: KillHint | None = None) -> EngineError | None:
        """Like ``kill``, but return the error of a failed kill, or None on success."""
        if isinstance(pid, bool) or not isinstance(pid, int) or pid <= 0:
            raise ValueError(f"pid must be a positive integer, got {pid!r}")

        # Resolve history details before the scan that follows drops the pid.
        port, process_name = self._describe(pid, hint)

        try:
            self._terminator.terminate(pid)
        except EngineError as exc:
            logger.warning("Failed to kill pid %d: %s", pid, exc)
            self._reconciler.set_error(exc)
            return exc
        except Exception as exc:
            logger.exception("Process terminator raised unexpectedly for pid %d", pid)
            error = AdapterUnreachable(str(exc) or exc.__class__.__name__)
            self._reconciler.set_error(error)
            return error

        logger.info("Killed pid %d (%s) on port %d", pid, process_name, port)
        self._reconciler.mark_pending_kill(pid)

        if not self._history.append(port, pid, process_name):
            logger.warning("Kill of pid %d was not recorded in history", pid)

        self._force_scan()
        return None

    def _describe(self, pid: int, hint: KillHint | None) -> tuple[int, str]:
        port = hint.port if hint else None
        process_name = hint.process_name if hint else None
        if port is None or not process_name:
            entry = self._reconciler.find_pid(pid)
            if entry is not None:
                port = entry.port if port is None else port
                process_name = process_name or entry.process_name
        return (
            port if port is not None else UNKNOWN_PORT,
            process_name or UNKNOWN_PROCESS,
        )
