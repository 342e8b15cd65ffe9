"""Applies scan results to the port view."""

import logging
import threading
from collections.abc import Callable, Mapping
from queue import Queue

from unbind.errors import EngineError
from unbind.models import PortEntry, PortFilter, PortView
from unbind.notifications import Notification, NotificationDedup, NotificationDispatcher

logger = logging.getLogger(__name__)


class Reconciler:
    """
    Owner of the live port view.

    Every scan is tagged with a monotonic sequence number by ``begin_scan``.
    Results are applied atomically under a lock; a result older than the
    last applied one is dropped. A failed scan keeps the previous ports and
    only records the error.

    Pids killed but not yet confirmed by a later scan are kept in
    ``pending_kills`` and hidden from ``visible_ports``.
    """

    def __init__(
        self,
        favorites: Callable[[], Mapping[int, str]],
        dedup: NotificationDedup | None = None,
        dispatcher: NotificationDispatcher | None = None,
        update_queue: "Queue[PortView] | None" = None,
    ) -> None:
        """
        Initialize the Reconciler.

        Args:
            favorites: Returns the favorited ports and their labels.
            dedup: Notification edge detector.
            dispatcher: Delivers notifications; None disables delivery.
            update_queue: Receives a PortView after every state change.
        """
        self._favorites = favorites
        self._dedup = dedup or NotificationDedup()
        self._dispatcher = dispatcher
        self._queue = update_queue
        self._lock = threading.Lock()

        self._ports: tuple[PortEntry, ...] = ()
        self._last_error: EngineError | None = None
        self._issued = 0
        self._applied = 0
        self._in_flight = 0
        # pid -> sequence of the newest scan issued before the kill
        self._pending_kills: dict[int, int] = {}

    @property
    def current_ports(self) -> tuple[PortEntry, ...]:
        return self._ports

    @property
    def is_scanning(self) -> bool:
        return self._in_flight > 0

    @property
    def last_error(self) -> EngineError | None:
        return self._last_error

    @property
    def pending_kills(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._pending_kills)

    @property
    def dedup(self) -> NotificationDedup:
        return self._dedup

    def view(self) -> PortView:
        with self._lock:
            return self._view_locked()

    def visible_ports(self, port_filter: PortFilter | None = None) -> tuple[PortEntry, ...]:
        ports = self.view().visible_ports
        if port_filter is None:
            return ports
        return tuple(p for p in ports if port_filter.matches(p))

    def find_port(self, port: int) -> PortEntry | None:
        """First entry bound to ``port`` in the current view."""
        for entry in self._ports:
            if entry.port == port:
                return entry
        return None

    def find_pid(self, pid: int) -> PortEntry | None:
        for entry in self._ports:
            if entry.pid == pid:
                return entry
        return None

    def begin_scan(self) -> int:
        """Register a scan about to call the inspector and return its sequence number."""
        with self._lock:
            self._issued += 1
            self._in_flight += 1
            sequence = self._issued
            view = self._view_locked()
        self._publish(view)
        return sequence

    def apply(self, sequence: int, ports: list[PortEntry]) -> bool:
        """
        Apply a successful scan.

        Returns:
            False if the result was stale and dropped.
        """
        with self._lock:
            self._in_flight -= 1
            if sequence < self._applied:
                logger.debug("Dropping stale scan %d (applied %d)", sequence, self._applied)
                view = self._view_locked()
                notifications: list[Notification] = []
                applied = False
            else:
                self._applied = sequence
                self._ports = tuple(ports)
                self._last_error = None
                self._pending_kills = {
                    pid: seq for pid, seq in self._pending_kills.items() if seq >= sequence
                }
                notifications = self._dedup.observe(self._ports, self._favorites())
                view = self._view_locked()
                applied = True

        self._publish(view)
        self._notify(notifications)
        return applied

    def fail(self, sequence: int, error: EngineError) -> bool:
        """
        Record a failed scan; the current ports are left untouched.

        Returns:
            False if a newer scan has already been applied.
        """
        with self._lock:
            self._in_flight -= 1
            applied = sequence >= self._applied
            if applied:
                self._applied = sequence
                self._last_error = error
            view = self._view_locked()

        if applied:
            logger.warning("Port scan failed: %s", error)
        self._publish(view)
        return applied

    def discard(self, sequence: int) -> None:
        """Drop a scan whose result arrived after its loop was stopped."""
        with self._lock:
            self._in_flight -= 1
            view = self._view_locked()
        logger.debug("Discarding scan %d", sequence)
        self._publish(view)

    def set_error(self, error: EngineError | None) -> None:
        with self._lock:
            self._last_error = error
            view = self._view_locked()
        self._publish(view)

    def mark_pending_kill(self, pid: int) -> None:
        """Hide ``pid`` until a scan issued after this call is applied."""
        with self._lock:
            self._pending_kills[pid] = self._issued
            view = self._view_locked()
        self._publish(view)

    def _view_locked(self) -> PortView:
        return PortView(
            ports=self._ports,
            is_scanning=self._in_flight > 0,
            last_error=self._last_error,
            pending_kills=frozenset(self._pending_kills),
            sequence=self._applied,
        )

    def _publish(self, view: PortView) -> None:
        if self._queue is not None:
            self._queue.put(view)

    def _notify(self, notifications: list[Notification]) -> None:
        if self._dispatcher is None:
            return
        for notification in notifications:
            self._dispatcher.dispatch(notification)
