"""Fakes for the chain, the content store and the computation backend."""

import threading
import time
from queue import Empty, Queue
from typing import Dict, List, Sequence, Set, Tuple

import pytest

from oracle_node.backend import MockBackend
from oracle_node.chain import (ChainClient, ChainResponse, EventSubscription,
                               TaskRequest)
from oracle_node.config import (ChainConfig, Config, NodeConfig,
                                SchedulerConfig, StorageConfig,
                                SubmissionConfig)
from oracle_node.errors import (ChainError, ContractLogicError, FetchError,
                                IngestError, NonceError)
from oracle_node.model import (ChainTaskStatus, FailureKind, OracleKind,
                               ResponsePayload, StatusEvent)
from oracle_node.storage import ArweaveStorage, normalize_key

NODE_ADDRESS = "0x00000000000000000000000000000000000000aa"
REQUESTER = "0x00000000000000000000000000000000000000bb"
OTHER_GENERATOR = "0x00000000000000000000000000000000000000cc"


class FakeSubscription(EventSubscription):
    def __init__(self, chain: "FakeChain") -> None:
        self._chain = chain
        self.closed = False

    def recv(self, timeout: float) -> StatusEvent | None:
        try:
            item = self._chain.live.get(timeout=timeout)
        except Empty:
            return None
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.closed = True


class FakeChain(ChainClient):
    def __init__(
        self,
        head: int = 100,
        registered: Sequence[OracleKind] = (OracleKind.Generator, OracleKind.Validator),
    ) -> None:
        self.head = head
        self.registered = set(registered)
        self.requests: Dict[int, TaskRequest] = {}
        self.events: List[StatusEvent] = []
        self.live: "Queue[StatusEvent | Exception]" = Queue()
        self.responded: Set[Tuple[int, OracleKind]] = set()
        self.responses: Dict[int, List[ChainResponse]] = {}

        # pending nonce as the network sees it
        self.nonce = 0
        self.sent: List[dict] = []
        self.send_errors: List[Exception] = []
        self.receipt_errors: List[Exception] = []
        self.receipt_delay = 0.0
        # when set, a response only counts once its receipt was waited for
        self.confirm_on_receipt = False
        self.pending: Dict[str, Tuple[int, OracleKind]] = {}
        self.scan_errors: List[Exception] = []
        self.scans: List[Tuple[int, int]] = []
        self.subscriptions: List[FakeSubscription] = []

        self._lock = threading.Lock()

    @property
    def address(self) -> str:
        return NODE_ADDRESS

    def add_task(
        self,
        task_id: int,
        input: bytes = b"What is 2+2?",
        models: Sequence[str] = ("gpt-4o",),
        status: ChainTaskStatus = ChainTaskStatus.PendingGeneration,
        block: int | None = None,
        protocol: str = "test/0.1",
    ) -> StatusEvent:
        self.requests[task_id] = TaskRequest(
            task_id=task_id,
            requester=REQUESTER,
            status=status,
            protocol=protocol,
            input=input,
            models=list(models),
        )
        before = (
            ChainTaskStatus.NONE
            if status == ChainTaskStatus.PendingGeneration
            else ChainTaskStatus.PendingGeneration
        )
        event = StatusEvent(
            task_id=task_id,
            protocol=protocol,
            status_before=before,
            status_after=status,
            block_number=self.head if block is None else block,
        )
        self.events.append(event)
        return event

    def add_response(
        self,
        task_id: int,
        output: bytes,
        metadata: bytes = b"",
        responder: str = OTHER_GENERATOR,
        score: int = 0,
    ) -> ChainResponse:
        response = ChainResponse(responder=responder, score=score, output=output, metadata=metadata)
        with self._lock:
            self.responses.setdefault(task_id, []).append(response)
        return response

    def get_block_number(self) -> int:
        return self.head

    def get_status_events(self, from_block: int, to_block: int) -> List[StatusEvent]:
        with self._lock:
            self.scans.append((from_block, to_block))
            if self.scan_errors:
                raise self.scan_errors.pop(0)
        return sorted(
            (e for e in self.events if from_block <= e.block_number <= to_block),
            key=lambda e: e.block_number,
        )

    def subscribe(self) -> EventSubscription:
        subscription = FakeSubscription(self)
        self.subscriptions.append(subscription)
        return subscription

    def get_task_request(self, task_id: int) -> TaskRequest:
        return self.requests[task_id]

    def get_responses(self, task_id: int) -> List[ChainResponse]:
        with self._lock:
            return list(self.responses.get(task_id, []))

    def get_best_response(self, task_id: int) -> ChainResponse:
        responses = self.get_responses(task_id)
        if len(responses) == 0:
            raise ChainError(f"task {task_id} has no responses", kind=FailureKind.FatalInput)
        return max(responses, key=lambda r: r.score)

    def has_responded(self, task_id: int, kind: OracleKind) -> bool:
        with self._lock:
            if (task_id, kind) in self.responded:
                return True
            generated = any(
                r.responder == NODE_ADDRESS for r in self.responses.get(task_id, [])
            )
            return kind == OracleKind.Validator and generated

    def is_registered(self, kind: OracleKind) -> bool:
        return kind in self.registered

    def get_nonce(self) -> int:
        with self._lock:
            return self.nonce

    def send_response(
        self,
        request: TaskRequest,
        kind: OracleKind,
        response: ResponsePayload,
        nonce: int,
        gas_price_hike: int = 0,
    ) -> str:
        with self._lock:
            if self.send_errors:
                raise self.send_errors.pop(0)
            if nonce < self.nonce:
                raise NonceError("nonce too low")
            if nonce > self.nonce:
                raise NonceError("nonce too high")
            if (request.task_id, kind) in self.responded:
                raise ContractLogicError("execution reverted: AlreadyResponded")
            self.nonce += 1
            tx_hash = f"0x{len(self.sent) + 1:064x}"
            if self.confirm_on_receipt:
                self.pending[tx_hash] = (request.task_id, kind)
            else:
                self._record(request.task_id, kind, response)
            self.sent.append(
                {
                    "task_id": request.task_id,
                    "kind": kind,
                    "output": response.output,
                    "metadata": response.metadata,
                    "scores": list(response.scores),
                    "response": response,
                    "nonce": nonce,
                    "gas_price_hike": gas_price_hike,
                    "tx_hash": tx_hash,
                }
            )
            return tx_hash

    def wait_for_receipt(self, tx_hash: str, timeout: float) -> None:
        if self.receipt_delay > 0:
            time.sleep(self.receipt_delay)
        with self._lock:
            if self.receipt_errors:
                raise self.receipt_errors.pop(0)
            if tx_hash in self.pending:
                task_id, kind = self.pending.pop(tx_hash)
                sent = next(s for s in self.sent if s["tx_hash"] == tx_hash)
                self._record(task_id, kind, sent["response"])

    def _record(self, task_id: int, kind: OracleKind, response: ResponsePayload):
        self.responded.add((task_id, kind))
        if kind == OracleKind.Generator:
            self.responses.setdefault(task_id, []).append(
                ChainResponse(
                    responder=NODE_ADDRESS, output=response.output, metadata=response.metadata
                )
            )


class FakeStorage(ArweaveStorage):
    def __init__(self, upload_key: str | None = None) -> None:
        super().__init__("https://gateway.test", "https://bundler.test", upload_key=upload_key)
        self.blobs: Dict[str, bytes] = {}
        self.uploads: List[bytes] = []
        self.put_errors: List[Exception] = []

    def get(self, key: str) -> bytes:
        key = normalize_key(key)
        if key not in self.blobs:
            raise FetchError(f"could not fetch {key}: status 404")
        return self.blobs[key]

    def put(self, value: bytes) -> str:
        if self.put_errors:
            raise self.put_errors.pop(0)
        self.uploads.append(value)
        key = f"uploaded-{len(self.uploads)}"
        self.blobs[key] = value
        return key


def lost_subscription() -> IngestError:
    return IngestError("subscription closed: 1006")


@pytest.fixture()
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture()
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture()
def backend() -> MockBackend:
    return MockBackend(responses={"What is 2+2?": "4"})


@pytest.fixture()
def config(tmp_path) -> Config:
    return Config(
        chain=ChainConfig(tx_timeout=1, block_chunk_size=50, rpc_retries=2),
        storage=StorageConfig(byte_limit=1024),
        scheduler=SchedulerConfig(concurrency=2, max_timeout=5, provider_retries=1),
        submission=SubmissionConfig(max_attempts=3, backoff_min=0.01, backoff_max=0.02),
        node=NodeConfig(kinds=[OracleKind.Generator], models=["gpt-4o"], pipeline_workers=4),
    )
