"""Favorited ports, cached in memory and mirrored to storage."""

import logging
import threading

from unbind.errors import StorageFailure
from unbind.models import Favorite, validate_port
from unbind.storage import PersistenceAdapter, format_timestamp, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

SELECT_FAVORITES = "SELECT port, label, created_at FROM favorites ORDER BY port"
# Re-adding keeps the stored created_at and only replaces the label.
UPSERT_FAVORITE = (
    "INSERT INTO favorites (port, label, created_at) VALUES (:port, :label, :created_at) "
    "ON CONFLICT(port) DO UPDATE SET label = excluded.label"
)
UPDATE_LABEL = "UPDATE favorites SET label = :label WHERE port = :port"
DELETE_FAVORITE = "DELETE FROM favorites WHERE port = :port"


def _validate_label(label: str) -> str:
    if not isinstance(label, str) or not label.strip():
        raise ValueError("favorite label must be a non-empty string")
    return label


class FavoritesStore:
    """
    Authoritative in-memory set of favorites.

    Mutations update memory first and then write through to storage. A failed
    write is reported by returning False; memory keeps the caller's intent
    and is not rolled back, so memory and storage may diverge until the next
    successful write or reload.
    """

    def __init__(self, storage: PersistenceAdapter) -> None:
        self._storage = storage
        self._lock = threading.Lock()
        self._favorites: dict[int, Favorite] = {}

    def load(self) -> None:
        """Replace memory with the favorites held in storage."""
        rows = self._storage.query(SELECT_FAVORITES)
        loaded = {
            row["port"]: Favorite(
                port=row["port"],
                label=row["label"],
                created_at=parse_timestamp(row["created_at"]),
            )
            for row in rows
        }
        with self._lock:
            self._favorites = loaded
        logger.debug("Loaded %d favorites", len(loaded))

    def add(self, port: int, label: str) -> bool:
        validate_port(port)
        _validate_label(label)

        with self._lock:
            existing = self._favorites.get(port)
            created_at = existing.created_at if existing else utcnow()
            self._favorites[port] = Favorite(port=port, label=label, created_at=created_at)

        return self._write(
            UPSERT_FAVORITE,
            {"port": port, "label": label, "created_at": format_timestamp(created_at)},
            "add favorite",
        )

    def remove(self, port: int) -> bool:
        with self._lock:
            if self._favorites.pop(port, None) is None:
                return True

        return self._write(DELETE_FAVORITE, {"port": port}, "remove favorite")

    def update_label(self, port: int, label: str) -> bool:
        _validate_label(label)

        with self._lock:
            existing = self._favorites.get(port)
            if existing is None:
                return True
            self._favorites[port] = Favorite(
                port=port, label=label, created_at=existing.created_at
            )

        return self._write(UPDATE_LABEL, {"port": port, "label": label}, "update favorite label")

    def is_favorite(self, port: int) -> bool:
        return port in self._favorites

    def label_of(self, port: int) -> str | None:
        favorite = self._favorites.get(port)
        return favorite.label if favorite else None

    def get(self, port: int) -> Favorite | None:
        return self._favorites.get(port)

    def favorites(self) -> list[Favorite]:
        """All favorites ordered by port."""
        with self._lock:
            return sorted(self._favorites.values(), key=lambda f: f.port)

    def labels(self) -> dict[int, str]:
        """Favorited port -> label."""
        with self._lock:
            return {port: f.label for port, f in self._favorites.items()}

    def ports(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._favorites)

    def _write(self, statement: str, params: dict, action: str) -> bool:
        try:
            self._storage.execute(statement, params)
        except StorageFailure as exc:
            logger.warning("Failed to %s for port %s: %s", action, params["port"], exc)
            return False
        return True
