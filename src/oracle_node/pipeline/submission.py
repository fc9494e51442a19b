import concurrent.futures
import logging
import threading
import time
from queue import Queue
from typing import Callable, Dict, List, Sequence, Tuple

from tenacity import (RetryCallState, Retrying, retry_if_exception,
                      stop_after_attempt, stop_when_event_set,
                      wait_exponential)

from oracle_node.chain import ChainClient
from oracle_node.errors import (NonceError, OracleError, SubmissionError,
                                UnderpricedError)
from oracle_node.model import (FailureKind, NodeIdentity, ResponsePayload,
                               SubmissionAttempt, Task, TaskKey)

_logger = logging.getLogger(__name__)


class SubmissionLedger(object):
    """Retry bookkeeping for responses currently in submission."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._attempts: Dict[TaskKey, SubmissionAttempt] = {}

    def open(self, task: Task) -> SubmissionAttempt:
        with self._lock:
            record = self._attempts.get(task.key)
            if record is None:
                record = SubmissionAttempt(task_id=task.task_id, kind=task.kind)
                self._attempts[task.key] = record
            return record

    def get(self, key: TaskKey) -> SubmissionAttempt | None:
        with self._lock:
            record = self._attempts.get(key)
            return record.model_copy() if record is not None else None

    def close(self, key: TaskKey):
        with self._lock:
            self._attempts.pop(key, None)

    def snapshot(self) -> Dict[TaskKey, SubmissionAttempt]:
        with self._lock:
            return {key: record.model_copy() for key, record in self._attempts.items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._attempts)


OnRetry = Callable[[SubmissionAttempt], None]
_Submission = Tuple[Task, ResponsePayload, OnRetry | None, "concurrent.futures.Future[str]"]


class SubmissionManager(object):
    """Nonce-ordered, retrying submission of task responses.

    Responses handed to ``enqueue`` are sent one at a time by a single writer
    thread, so a transaction is confirmed before the next one gets a nonce and
    the threads that queue responses never wait on a receipt. The node
    identity (and its nonce) is only touched while holding ``self._lock``.
    """

    def __init__(
        self,
        chain: ChainClient,
        identity: NodeIdentity,
        max_attempts: int = 4,
        backoff_min: float = 0.3,
        backoff_max: float = 10,
        gas_price_hikes: Sequence[int] = (0, 12, 24, 36),
        tx_timeout: float = 30,
        stop: threading.Event | None = None,
    ) -> None:
        self._chain = chain
        self._identity = identity
        self._max_attempts = max_attempts
        self._backoff_min = backoff_min
        self._backoff_max = backoff_max
        self._gas_price_hikes = list(gas_price_hikes) or [0]
        self._tx_timeout = tx_timeout
        self._stop = stop if stop is not None else threading.Event()

        self._lock = threading.Lock()
        self.ledger = SubmissionLedger()
        self._queue: Queue[_Submission | None] = Queue()
        self._writer: threading.Thread | None = None
        # nonces of every transaction the network accepted, in order
        self.accepted_nonces: List[int] = []

    @property
    def nonce(self) -> int:
        with self._lock:
            return self._identity.nonce

    def sync_nonce(self) -> int:
        with self._lock:
            self._identity.nonce = self._chain.get_nonce()
            _logger.info(f"Nonce synced to {self._identity.nonce}")
            return self._identity.nonce

    def resync_nonce(self) -> int:
        with self._lock:
            chain_nonce = self._chain.get_nonce()
            # never go back to a nonce this node already used
            self._identity.nonce = max(self._identity.nonce, chain_nonce)
            _logger.warning(f"Nonce re-synced to {self._identity.nonce} (chain: {chain_nonce})")
            return self._identity.nonce

    def start(self):
        if self._writer is not None:
            return
        self._writer = threading.Thread(target=self._writer_loop, name="submission", daemon=True)
        self._writer.start()

    def stop(self):
        """Send what is already queued, then stop the writer."""
        if self._writer is None:
            return
        self._queue.put(None)
        self._writer.join()
        self._writer = None

    def enqueue(
        self, task: Task, response: ResponsePayload, on_retry: OnRetry | None = None
    ) -> "concurrent.futures.Future[str]":
        future: concurrent.futures.Future[str] = concurrent.futures.Future()
        if self._writer is None:
            future.set_exception(
                SubmissionError(f"submission writer is not running, task {task.task_id} dropped")
            )
            return future
        self._queue.put((task, response, on_retry, future))
        return future

    def _writer_loop(self):
        while True:
            item = self._queue.get()
            if item is None:
                return
            task, response, on_retry, future = item
            if not future.set_running_or_notify_cancel():
                continue
            try:
                tx_hash = self.submit(task, response, on_retry)
            except Exception as e:
                future.set_exception(e)
            else:
                future.set_result(tx_hash)

    def submit(
        self, task: Task, response: ResponsePayload, on_retry: OnRetry | None = None
    ) -> str:
        record = self.ledger.open(task)
        try:
            for attempt in Retrying(
                retry=retry_if_exception(_is_transient),
                stop=stop_after_attempt(self._max_attempts) | stop_when_event_set(self._stop),
                wait=wait_exponential(multiplier=self._backoff_min, max=self._backoff_max),
                before_sleep=self._before_retry(record, on_retry),
                reraise=True,
            ):
                with attempt:
                    tx_hash = self._attempt(task, response, record)
            return tx_hash
        finally:
            self.ledger.close(task.key)

    def _attempt(self, task: Task, response: ResponsePayload, record: SubmissionAttempt) -> str:
        record.attempts += 1
        record.next_retry_at = None

        if record.tx_hash is not None:
            # a transaction the network accepted is never sent again
            if self._chain.has_responded(task.task_id, task.kind):
                _logger.info(f"Task {task.task_id} already answered by earlier tx {record.tx_hash}")
                return record.tx_hash
            _logger.info(f"Task {task.task_id} still waiting for tx {record.tx_hash}")
            self._chain.wait_for_receipt(record.tx_hash, self._tx_timeout)
            return record.tx_hash

        request = self._chain.get_task_request(task.task_id)
        hike = self._gas_price_hikes[min(record.gas_hike_step, len(self._gas_price_hikes) - 1)]

        with self._lock:
            nonce = self._identity.nonce
            _logger.debug(
                f"Submitting task {task.task_id} (attempt {record.attempts}, nonce {nonce}, gas +{hike}%)"
            )
            tx_hash = self._chain.send_response(
                request, task.kind, response, nonce, gas_price_hike=hike
            )
            self._identity.nonce = nonce + 1
            self.accepted_nonces.append(nonce)
            record.tx_hash = tx_hash

        self._chain.wait_for_receipt(tx_hash, self._tx_timeout)

        return tx_hash

    def _before_retry(
        self,
        record: SubmissionAttempt,
        on_retry: OnRetry | None,
    ):
        def _callback(retry_state: RetryCallState):
            assert retry_state.outcome is not None
            exc = retry_state.outcome.exception()
            sleep = retry_state.next_action.sleep if retry_state.next_action else 0
            record.last_error = exc.kind if isinstance(exc, OracleError) else FailureKind.TransientInfra
            record.next_retry_at = time.time() + sleep
            _logger.warning(
                f"Submission of task {record.task_id} failed (attempt {record.attempts}/"
                f"{self._max_attempts}): {exc}; retrying in {sleep:.1f}s"
            )
            if isinstance(exc, NonceError):
                self.resync_nonce()
            elif isinstance(exc, UnderpricedError):
                record.gas_hike_step += 1
            if on_retry is not None:
                on_retry(record.model_copy())

        return _callback


def _is_transient(e: BaseException) -> bool:
    return isinstance(e, OracleError) and e.retryable
