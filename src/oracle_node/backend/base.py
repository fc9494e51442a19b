import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from pydantic import BaseModel

from oracle_node.errors import ExecutionError
from oracle_node.model import FailureKind, OracleKind


class ExecutionRequest(BaseModel):
    task_id: int
    kind: OracleKind
    workflow: Dict[str, Any]
    models: List[str]
    max_steps: int
    timeout: float


class BackendError(ExecutionError):
    pass


class NoModelAvailable(BackendError):
    pass


class MalformedRequest(BackendError):
    pass


class ProviderError(BackendError):
    kind = FailureKind.TransientInfra


class ComputationBackend(ABC):
    """Opaque executor: workflow description + budget in, result string out.

    Implementations must raise ``NoModelAvailable`` / ``MalformedRequest``
    for errors that retrying cannot fix and ``ProviderError`` for
    infrastructure errors. ``cancel`` is set when the scheduler abandons the
    invocation; honoring it is best-effort.
    """

    @abstractmethod
    def execute(
        self, request: ExecutionRequest, cancel: threading.Event
    ) -> str: ...
