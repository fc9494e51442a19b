from abc import ABC, abstractmethod
from typing import List

from pydantic import BaseModel

from oracle_node.model import (ChainTaskStatus, OracleKind, ResponsePayload,
                               StatusEvent)


class TaskRequest(BaseModel):
    task_id: int
    requester: str
    status: ChainTaskStatus
    protocol: str = ""
    input: bytes
    models: List[str]
    difficulty: int = 0
    deadline_block: int | None = None


class ChainResponse(BaseModel):
    """A generation already recorded by the coordinator."""

    responder: str
    nonce: int = 0
    score: int = 0
    output: bytes
    metadata: bytes = b""


class EventSubscription(ABC):
    """A live feed of coordinator status events."""

    @abstractmethod
    def recv(self, timeout: float) -> StatusEvent | None:
        """Next event, or None if none arrived within ``timeout`` seconds.

        Raises ``IngestError`` when the subscription is lost.
        """

    @abstractmethod
    def close(self): ...

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class ChainClient(ABC):
    @property
    @abstractmethod
    def address(self) -> str: ...

    @abstractmethod
    def get_block_number(self) -> int: ...

    @abstractmethod
    def get_status_events(self, from_block: int, to_block: int) -> List[StatusEvent]: ...

    @abstractmethod
    def subscribe(self) -> EventSubscription: ...

    @abstractmethod
    def get_task_request(self, task_id: int) -> TaskRequest: ...

    @abstractmethod
    def get_responses(self, task_id: int) -> List[ChainResponse]:
        """Generations recorded for the task, in submission order."""

    @abstractmethod
    def get_best_response(self, task_id: int) -> ChainResponse:
        """The highest scored generation of a completed task."""

    @abstractmethod
    def has_responded(self, task_id: int, kind: OracleKind) -> bool:
        """Whether this node already answered the task for ``kind``.

        For validation this is also true when the node generated one of the
        responses, since a node cannot validate its own answer.
        """

    @abstractmethod
    def is_registered(self, kind: OracleKind) -> bool: ...

    @abstractmethod
    def get_nonce(self) -> int:
        """Pending transaction count of the signing address."""

    @abstractmethod
    def send_response(
        self,
        request: TaskRequest,
        kind: OracleKind,
        response: ResponsePayload,
        nonce: int,
        gas_price_hike: int = 0,
    ) -> str:
        """Sign and broadcast a respond/validate transaction, return its hash.

        Raises a ``SubmissionError`` subclass when the network rejects it.
        """

    @abstractmethod
    def wait_for_receipt(self, tx_hash: str, timeout: float) -> None:
        """Block until mined; raise ``ContractLogicError`` if it reverted."""
