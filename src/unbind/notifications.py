"""Edge-triggered notifications for favorited ports."""

import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum

from unbind.adapters import NotificationCapability
from unbind.errors import EngineError
from unbind.models import PortEntry

logger = logging.getLogger(__name__)


class PortState(Enum):
    """Notification state of a single port."""

    ABSENT = "absent"
    PRESENT_UNNOTIFIED = "present-unnotified"
    PRESENT_NOTIFIED = "present-notified"


@dataclass(slots=True, frozen=True)
class Notification:
    """A notification the dedup machine decided to send."""

    port: int
    title: str
    body: str


def build_notification(entry: PortEntry, label: str) -> Notification:
    return Notification(
        port=entry.port,
        title=f"Favorite port :{entry.port} is now in use",
        body=f"{label}\nProcess: {entry.process_name} (PID {entry.pid})",
    )


class NotificationDedup:
    """
    Per-port edge detector.

    A favorited port that is present and not yet marked notifies once and is
    marked; the mark is cleared as soon as a scan shows the port absent. The
    first observed snapshot is a baseline: every port present then is marked
    without notifying, favorited or not.

    After the baseline only favorited ports enter the marker set, so a port
    that is already in use when it gets favorited notifies on the next scan.
    Ports outside the marker set are implicitly ``ABSENT``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._notified: set[int] = set()
        self._baseline_taken = False

    @property
    def baseline_taken(self) -> bool:
        return self._baseline_taken

    def state_of(self, port: int) -> PortState:
        with self._lock:
            if port in self._notified:
                return PortState.PRESENT_NOTIFIED
            return PortState.ABSENT

    def notified_ports(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._notified)

    def observe(
        self, ports: Iterable[PortEntry], favorites: Mapping[int, str]
    ) -> list[Notification]:
        """
        Advance the machine with a successful snapshot.

        Args:
            ports: The snapshot, in adapter order.
            favorites: Favorited port -> label.

        Returns:
            Notifications to dispatch, one per port that became present. The
            ports are already marked as notified; dispatch is best-effort.
        """
        first_by_port: dict[int, PortEntry] = {}
        for entry in ports:
            first_by_port.setdefault(entry.port, entry)
        present = frozenset(first_by_port)

        with self._lock:
            if not self._baseline_taken:
                self._notified = set(present)
                self._baseline_taken = True
                return []

            pending: list[Notification] = []
            for port, entry in first_by_port.items():
                label = favorites.get(port)
                if label is None or port in self._notified:
                    continue
                # absent -> present-unnotified -> present-notified
                pending.append(build_notification(entry, label))
                self._notified.add(port)

            self._notified &= present
            return pending

    def reset(self) -> None:
        """Forget all state; the next snapshot becomes a new baseline."""
        with self._lock:
            self._notified.clear()
            self._baseline_taken = False


class NotificationDispatcher:
    """Delivers notifications through a capability, swallowing failures."""

    def __init__(self, capability: NotificationCapability) -> None:
        self._capability = capability

    def dispatch(self, notification: Notification) -> bool:
        """
        Attempt delivery once.

        Returns:
            True if the capability accepted the notification.
        """
        try:
            granted = self._capability.is_granted() or self._capability.request_grant()
            if not granted:
                logger.debug("Notification for port %d not permitted", notification.port)
                return False
            self._capability.dispatch(notification.title, notification.body)
        except EngineError as exc:
            logger.warning("Notification for port %d failed: %s", notification.port, exc)
            return False
        except Exception:
            logger.exception("Notification for port %d failed", notification.port)
            return False
        return True
