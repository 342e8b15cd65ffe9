"""Bounded log of completed kills."""

import logging
import threading

from unbind.errors import StorageFailure
from unbind.models import HistoryRecord
from unbind.storage import PersistenceAdapter, parse_timestamp

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50

INSERT_RECORD = (
    "INSERT INTO kill_history (port, pid, process_name) "
    "VALUES (:port, :pid, :process_name)"
)
PRUNE_RECORDS = (
    "DELETE FROM kill_history WHERE id NOT IN ("
    "SELECT id FROM kill_history ORDER BY killed_at DESC, id DESC LIMIT :limit)"
)
SELECT_RECORDS = (
    "SELECT id, port, pid, process_name, killed_at FROM kill_history "
    "ORDER BY killed_at DESC, id DESC LIMIT :limit"
)
DELETE_RECORDS = "DELETE FROM kill_history"


class HistoryLog:
    """
    Kill history mirrored between memory and storage.

    Storage is the source of truth: after every append the memory cache is
    reloaded from it, so presentation always sees what storage actually
    holds. Reloads and clears are serialized, so the cache always ends up
    with the result of the last storage read. The number of stored records
    never exceeds ``HISTORY_LIMIT``.
    """

    def __init__(self, storage: PersistenceAdapter, limit: int = HISTORY_LIMIT) -> None:
        self._storage = storage
        self._limit = limit
        self._lock = threading.Lock()
        # Held from a storage read or clear until the cache reflects it.
        self._sync = threading.Lock()
        self._records: list[HistoryRecord] = []

    @property
    def limit(self) -> int:
        return self._limit

    def records(self) -> list[HistoryRecord]:
        """Cached records, newest first."""
        with self._lock:
            return list(self._records)

    def reload(self) -> list[HistoryRecord]:
        """Refresh the cache from storage and return it."""
        with self._sync:
            rows = self._storage.query(SELECT_RECORDS, {"limit": self._limit})
            records = [
                HistoryRecord(
                    id=row["id"],
                    port=row["port"],
                    pid=row["pid"],
                    process_name=row["process_name"],
                    killed_at=parse_timestamp(row["killed_at"]),
                )
                for row in rows
            ]
            with self._lock:
                self._records = records
        return list(records)

    def append(self, port: int, pid: int, process_name: str) -> bool:
        """
        Record a kill and prune everything beyond the newest records.

        Insert and prune run in one storage transaction.

        Returns:
            True if the record was stored.
        """
        try:
            self._storage.execute_batch(
                [
                    (INSERT_RECORD, {"port": port, "pid": pid, "process_name": process_name}),
                    (PRUNE_RECORDS, {"limit": self._limit}),
                ]
            )
        except StorageFailure as exc:
            logger.warning("Failed to record kill of pid %d on port %d: %s", pid, port, exc)
            return False

        try:
            self.reload()
        except StorageFailure as exc:
            # The record is stored; the cache catches up on the next reload.
            logger.warning("Failed to reload kill history: %s", exc)
        return True

    def clear(self) -> bool:
        with self._sync:
            try:
                self._storage.execute(DELETE_RECORDS)
            except StorageFailure as exc:
                logger.warning("Failed to clear kill history: %s", exc)
                return False
            with self._lock:
                self._records = []
        return True
