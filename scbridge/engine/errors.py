from __future__ import annotations

__all__ = [
    "BridgeError",
    "SpawnFailure",
    "EngineWriteError",
    "EvalRejected",
    "StagingWriteFailure",
    "MalformedClientMessage",
    "BroadcastDeliveryFailure",
]


class BridgeError(RuntimeError):
    """Base class for every error raised by the bridge."""


class SpawnFailure(BridgeError):
    """Raised when the sclang child process cannot be started."""


class EngineWriteError(BridgeError):
    """Raised when a directive cannot be written to the child's stdin."""


class EvalRejected(BridgeError):
    """Raised when an eval request is refused (engine not booted, code too large)."""


class StagingWriteFailure(BridgeError):
    """Raised when the staging artifact for an eval could not be written."""


class MalformedClientMessage(BridgeError):
    """Raised when a client frame is not valid JSON or has an unknown type."""


class BroadcastDeliveryFailure(BridgeError):
    """A send to one client failed. Only ever logged for that client."""
