from enum import Enum

from pydantic import BaseModel


class Phase(str, Enum):
    Discovered = "discovered"
    Skipped = "skipped"
    Resolving = "resolving"
    Executing = "executing"
    Encoding = "encoding"
    Submitting = "submitting"
    Submitted = "submitted"
    Failed = "failed"


class SkipReason(str, Enum):
    WrongKind = "wrong_kind"
    NoMatchingModel = "no_matching_model"
    ValidatorModelMismatch = "validator_model_mismatch"
    Expired = "expired"
    AlreadyResponded = "already_responded"


class FailureKind(str, Enum):
    TransientInfra = "transient_infra"
    FatalConfiguration = "fatal_configuration"
    FatalContractLogic = "fatal_contract_logic"
    FatalInput = "fatal_input"
    Timeout = "timeout"
    ExecutionError = "execution_error"
    Cancelled = "cancelled"


TERMINAL_PHASES = frozenset([Phase.Skipped, Phase.Submitted, Phase.Failed])


class TaskStatus(BaseModel):
    phase: Phase
    reason: SkipReason | None = None
    failure: FailureKind | None = None
    tx_hash: str | None = None
    message: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def __str__(self) -> str:
        if self.phase == Phase.Skipped and self.reason is not None:
            return f"Skipped({self.reason.value})"
        if self.phase == Phase.Failed and self.failure is not None:
            return f"Failed({self.failure.value})"
        if self.phase == Phase.Submitted:
            return f"Submitted({self.tx_hash})"
        return self.phase.name
