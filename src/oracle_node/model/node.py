from typing import List

from pydantic import BaseModel

from .status import FailureKind
from .task import OracleKind


class NodeIdentity(BaseModel):
    address: str
    kinds: List[OracleKind]
    models: List[str]
    validator_model: str
    nonce: int = 0


class SubmissionAttempt(BaseModel):
    task_id: int
    kind: OracleKind
    attempts: int = 0
    last_error: FailureKind | None = None
    next_retry_at: float | None = None
    # last transaction the network accepted, not yet confirmed
    tx_hash: str | None = None
    gas_hike_step: int = 0
