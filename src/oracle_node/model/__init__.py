from .node import NodeIdentity, SubmissionAttempt
from .result import (ChatMessage, ComputationResult, EncodedPayload,
                     ResolvedInput, ResponsePayload)
from .status import TERMINAL_PHASES, FailureKind, Phase, SkipReason, TaskStatus
from .task import (ANY_MODEL, ChainTaskStatus, InputDescriptor, OracleKind,
                   StatusEvent, Task, TaskKey, is_hex_id)

__all__ = [
    "ANY_MODEL",
    "ChainTaskStatus",
    "ChatMessage",
    "ComputationResult",
    "EncodedPayload",
    "FailureKind",
    "InputDescriptor",
    "NodeIdentity",
    "OracleKind",
    "Phase",
    "ResolvedInput",
    "ResponsePayload",
    "SkipReason",
    "StatusEvent",
    "SubmissionAttempt",
    "Task",
    "TaskKey",
    "TERMINAL_PHASES",
    "TaskStatus",
    "is_hex_id",
]
