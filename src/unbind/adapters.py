"""Interfaces of the external collaborators and their psutil-backed defaults."""

import logging
import socket
from typing import Protocol as Interface

import psutil

from unbind.errors import (
    AdapterUnreachable,
    CapabilityUnavailable,
    NotFound,
    PermissionDenied,
)
from unbind.models import PortEntry, Protocol

logger = logging.getLogger(__name__)


class PortInspector(Interface):
    """Returns the ports the host is currently listening on."""

    def scan(self) -> list[PortEntry]: ...


class ProcessTerminator(Interface):
    """Terminates a process by pid."""

    def terminate(self, pid: int) -> None: ...


class NotificationCapability(Interface):
    """Best-effort user notification channel."""

    def is_granted(self) -> bool: ...

    def request_grant(self) -> bool: ...

    def dispatch(self, title: str, body: str) -> None: ...


class PsutilPortInspector:
    """
    Port inspector built on ``psutil.net_connections``.

    Keeps TCP sockets in LISTEN state and bound, unconnected UDP sockets.
    Sockets whose owner is hidden from the current user carry no pid and
    are skipped. Processes that vanish while their name is being resolved
    are reported as ``"unknown"`` rather than dropped.
    """

    def scan(self) -> list[PortEntry]:
        try:
            connections = psutil.net_connections(kind="inet")
        except psutil.AccessDenied as exc:
            raise PermissionDenied(f"Permission denied listing sockets: {exc}") from exc
        except (psutil.Error, OSError) as exc:
            raise AdapterUnreachable(f"Failed to scan ports: {exc}") from exc

        names: dict[int, str] = {}
        seen: set[tuple[int, int, Protocol]] = set()
        entries: list[PortEntry] = []

        for conn in connections:
            protocol = self._listening_protocol(conn)
            if protocol is None or not conn.laddr:
                continue

            pid = conn.pid
            if not pid:
                continue

            key = (conn.laddr.port, pid, protocol)
            if key in seen:
                continue  # same socket bound on IPv4 and IPv6
            seen.add(key)

            if pid not in names:
                names[pid] = self._process_name(pid)

            entries.append(
                PortEntry(
                    port=conn.laddr.port,
                    pid=pid,
                    process_name=names[pid],
                    protocol=protocol,
                    local_address=conn.laddr.ip,
                )
            )

        return entries

    @staticmethod
    def _listening_protocol(conn) -> Protocol | None:
        if conn.type == socket.SOCK_STREAM and conn.status == psutil.CONN_LISTEN:
            return Protocol.TCP
        if conn.type == socket.SOCK_DGRAM and not conn.raddr:
            return Protocol.UDP
        return None

    @staticmethod
    def _process_name(pid: int) -> str:
        try:
            return psutil.Process(pid).name() or "unknown"
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return "unknown"


class PsutilProcessTerminator:
    """Kills a process with ``psutil.Process.kill`` (SIGKILL on POSIX)."""

    def terminate(self, pid: int) -> None:
        try:
            psutil.Process(pid).kill()
        except psutil.NoSuchProcess as exc:
            raise NotFound(f"Process {pid} not found") from exc
        except psutil.AccessDenied as exc:
            raise PermissionDenied(f"Permission denied killing process {pid}") from exc
        except (psutil.Error, OSError) as exc:
            raise AdapterUnreachable(f"Failed to kill process {pid}: {exc}") from exc


class LogNotifier:
    """Notification capability that writes notifications to the log."""

    def is_granted(self) -> bool:
        return True

    def request_grant(self) -> bool:
        return True

    def dispatch(self, title: str, body: str) -> None:
        logger.info("%s: %s", title, body.replace("\n", " | "))


class DisabledNotifier:
    """Notification capability for when notifications are switched off."""

    def is_granted(self) -> bool:
        return False

    def request_grant(self) -> bool:
        return False

    def dispatch(self, title: str, body: str) -> None:
        raise CapabilityUnavailable("Notifications are disabled")
