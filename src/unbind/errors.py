"""Error kinds raised by the adapters and surfaced by the engine."""

from enum import Enum


class ErrorKind(str, Enum):
    """Categories of failure the engine distinguishes."""

    ADAPTER_UNREACHABLE = "adapter_unreachable"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    STORAGE_FAILURE = "storage_failure"
    CAPABILITY_UNAVAILABLE = "capability_unavailable"


class EngineError(Exception):
    """Base class for every failure reported by an external collaborator."""

    kind: ErrorKind = ErrorKind.ADAPTER_UNREACHABLE

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, EngineError):
            return NotImplemented
        return self.kind == other.kind and self.message == other.message

    def __hash__(self) -> int:
        return hash((self.kind, self.message))


class AdapterUnreachable(EngineError):
    kind = ErrorKind.ADAPTER_UNREACHABLE


class PermissionDenied(EngineError):
    kind = ErrorKind.PERMISSION_DENIED


class NotFound(EngineError):
    kind = ErrorKind.NOT_FOUND


class StorageFailure(EngineError):
    kind = ErrorKind.STORAGE_FAILURE


class CapabilityUnavailable(EngineError):
    kind = ErrorKind.CAPABILITY_UNAVAILABLE
