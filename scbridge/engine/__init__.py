from .bridge import Bridge, build_bridge
from .dispatcher import EvalDispatcher, EvalRequest
from .errors import (
    BridgeError,
    EngineWriteError,
    EvalRejected,
    MalformedClientMessage,
    SpawnFailure,
    StagingWriteFailure,
)
from .hub import BroadcastHub, ClientChannel
from .messages import PostMessage, StatusMessage
from .sanitizer import OutputSanitizer
from .staging import StagingStore
from .supervisor import EngineState, EngineSupervisor

__all__ = [
    "Bridge",
    "BridgeError",
    "BroadcastHub",
    "ClientChannel",
    "EngineState",
    "EngineSupervisor",
    "EngineWriteError",
    "EvalDispatcher",
    "EvalRejected",
    "EvalRequest",
    "MalformedClientMessage",
    "OutputSanitizer",
    "PostMessage",
    "SpawnFailure",
    "StagingStore",
    "StagingWriteFailure",
    "StatusMessage",
    "build_bridge",
]
