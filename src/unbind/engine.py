"""Root context that owns and wires the reconciliation engine."""

import logging
import threading
from queue import Queue

from unbind.adapters import (
    DisabledNotifier,
    LogNotifier,
    NotificationCapability,
    PortInspector,
    ProcessTerminator,
    PsutilPortInspector,
    PsutilProcessTerminator,
)
from unbind.config import Settings
from unbind.errors import EngineError, StorageFailure
from unbind.favorites import FavoritesStore
from unbind.history import HistoryLog
from unbind.killer import KillCoordinator
from unbind.models import KillHint, PortView
from unbind.notifications import NotificationDedup, NotificationDispatcher
from unbind.reconciler import Reconciler
from unbind.scanner import DEFAULT_INTERVAL_MS, ScanLoop
from unbind.storage import PersistenceAdapter, SqlStorage

logger = logging.getLogger(__name__)


class Engine:
    """
    Owns every engine component and injects their collaborators.

    Favorites and history are hydrated by ``initialize``; ``ready`` is set
    once that has happened, whether or not storage could be read.
    """

    def __init__(
        self,
        inspector: PortInspector,
        terminator: ProcessTerminator,
        storage: PersistenceAdapter,
        notifier: NotificationCapability | None = None,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        update_queue: "Queue[PortView] | None" = None,
    ) -> None:
        self.storage = storage
        self.favorites = FavoritesStore(storage)
        self.history = HistoryLog(storage)
        self.reconciler = Reconciler(
            favorites=self.favorites.labels,
            dedup=NotificationDedup(),
            dispatcher=NotificationDispatcher(notifier) if notifier is not None else None,
            update_queue=update_queue,
        )
        self.scanner = ScanLoop(inspector, self.reconciler, interval_ms=interval_ms)
        self.killer = KillCoordinator(
            terminator, self.reconciler, self.history, force_scan=self.scanner.scan_now
        )
        self.ready = threading.Event()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        notifier: NotificationCapability | None = None,
        update_queue: "Queue[PortView] | None" = None,
    ) -> "Engine":
        """Build an engine with the psutil adapters and SQL storage."""
        if notifier is None:
            notifier = LogNotifier() if settings.notifications_enabled else DisabledNotifier()
        elif not settings.notifications_enabled:
            notifier = DisabledNotifier()
        return cls(
            inspector=PsutilPortInspector(),
            terminator=PsutilProcessTerminator(),
            storage=SqlStorage(settings.database_url),
            notifier=notifier,
            interval_ms=settings.scan_interval_ms,
            update_queue=update_queue,
        )

    def initialize(self) -> bool:
        """
        Prepare storage and hydrate favorites and history.

        Returns:
            True if everything was loaded from storage.
        """
        ok = True
        try:
            initialize = getattr(self.storage, "initialize", None)
            if initialize is not None:
                initialize()
            self.favorites.load()
            self.history.reload()
        except StorageFailure as exc:
            logger.error("Failed to load saved state: %s", exc)
            self.reconciler.set_error(exc)
            ok = False
        finally:
            self.ready.set()
        return ok

    def start(self) -> None:
        """Hydrate state if needed and start scanning."""
        if not self.ready.is_set():
            self.initialize()
        self.scanner.start()

    def stop(self) -> None:
        self.scanner.stop()

    def close(self) -> None:
        self.stop()
        close = getattr(self.storage, "close", None)
        if close is not None:
            close()

    def set_interval(self, interval_ms: int) -> None:
        self.scanner.set_interval(interval_ms)

    def scan_now(self) -> bool:
        return self.scanner.scan_now()

    def kill(self, pid: int, hint: KillHint | None = None) -> bool:
        return self.killer.kill(pid, hint)

    def attempt_kill(self, pid: int, hint: KillHint | None = None) -> EngineError | None:
        return self.killer.attempt(pid, hint)

    def view(self) -> PortView:
        return self.reconciler.view()
