"""Data models for unbind."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from unbind.errors import EngineError

MIN_PORT = 1
MAX_PORT = 65535


class Protocol(str, Enum):
    """Transport protocol of a listening socket."""

    TCP = "tcp"
    UDP = "udp"


def validate_port(port: int) -> int:
    """Return ``port`` if it is a usable port number, else raise ValueError."""
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValueError(f"port must be an integer, got {port!r}")
    if not MIN_PORT <= port <= MAX_PORT:
        raise ValueError(f"port must be between {MIN_PORT} and {MAX_PORT}, got {port}")
    return port


@dataclass(slots=True, frozen=True)
class PortEntry:
    """Immutable snapshot of one listening endpoint."""

    port: int
    pid: int  # always positive; sockets with a hidden owner are not reported
    process_name: str
    protocol: Protocol
    local_address: str = "0.0.0.0"

    @property
    def key(self) -> tuple[int, int]:
        """Identity of the entry: a port may be re-bound by another pid."""
        return (self.port, self.pid)


@dataclass(slots=True, frozen=True)
class Favorite:
    """A user-declared port of interest."""

    port: int
    label: str
    created_at: datetime  # aware, UTC


@dataclass(slots=True, frozen=True)
class HistoryRecord:
    """A completed kill, as stored in the kill history."""

    id: int
    port: int
    pid: int
    process_name: str
    killed_at: datetime  # aware, UTC


@dataclass(slots=True, frozen=True)
class KillHint:
    """Context the caller already knows about the process being killed."""

    port: int | None = None
    process_name: str | None = None


@dataclass(slots=True, frozen=True)
class PortFilter:
    """Optional view filter over the current ports."""

    min_port: int | None = None
    max_port: int | None = None
    process_name: str = ""

    def matches(self, entry: PortEntry) -> bool:
        if self.min_port is not None and entry.port < self.min_port:
            return False
        if self.max_port is not None and entry.port > self.max_port:
            return False
        if self.process_name and self.process_name.lower() not in entry.process_name.lower():
            return False
        return True


@dataclass(slots=True, frozen=True)
class PortView:
    """Snapshot of the reconciler state handed to presentation."""

    ports: tuple[PortEntry, ...] = ()
    is_scanning: bool = False
    last_error: EngineError | None = None
    pending_kills: frozenset[int] = field(default_factory=frozenset)
    sequence: int = 0

    @property
    def visible_ports(self) -> tuple[PortEntry, ...]:
        """Ports minus those owned by a pid killed but not yet confirmed gone."""
        if not self.pending_kills:
            return self.ports
        return tuple(p for p in self.ports if p.pid not in self.pending_kills)
