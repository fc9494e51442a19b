import concurrent.futures
import threading

import allure
import pytest

from oracle_node.errors import (ContractLogicError, NonceError,
                                SubmissionError, UnderpricedError)
from oracle_node.model import (FailureKind, InputDescriptor, NodeIdentity,
                               OracleKind, ResponsePayload, Task)
from oracle_node.pipeline import SubmissionManager

pytestmark = [
    allure.epic("Oracle Node"),
    allure.feature("Submission Manager"),
]

PAYLOAD = ResponsePayload(output=b"4")


def _task(chain, task_id: int) -> Task:
    chain.add_task(task_id)
    return Task(
        task_id=task_id,
        requester="0xbb",
        kind=OracleKind.Generator,
        models=frozenset(["gpt-4o"]),
        input=InputDescriptor(type="inline", data=b"What is 2+2?"),
        discovery_block=chain.head,
    )


def _manager(chain, **kwargs) -> SubmissionManager:
    identity = NodeIdentity(
        address=chain.address,
        kinds=[OracleKind.Generator],
        models=["gpt-4o"],
        validator_model="gpt-4o",
    )
    fields = dict(max_attempts=3, backoff_min=0.001, backoff_max=0.01, tx_timeout=1)
    fields.update(kwargs)
    manager = SubmissionManager(chain, identity, **fields)
    manager.sync_nonce()
    return manager


def test_submits_with_chain_nonce(chain) -> None:
    chain.nonce = 5
    manager = _manager(chain)

    tx_hash = manager.submit(_task(chain, 1), PAYLOAD)

    assert chain.sent[0]["tx_hash"] == tx_hash
    assert chain.sent[0]["nonce"] == 5
    assert manager.nonce == 6
    assert len(manager.ledger) == 0


def test_concurrent_submissions_get_increasing_nonces(chain) -> None:
    manager = _manager(chain)
    tasks = [_task(chain, i) for i in range(20)]

    threads = [threading.Thread(target=manager.submit, args=(task, PAYLOAD)) for task in tasks]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(10)

    assert manager.accepted_nonces == list(range(20))
    assert sorted(s["nonce"] for s in chain.sent) == list(range(20))


def test_nonce_error_resyncs_and_retries(chain) -> None:
    manager = _manager(chain)
    # another process used nonce 0 behind our back
    chain.nonce = 1

    tx_hash = manager.submit(_task(chain, 1), PAYLOAD)

    assert chain.sent[-1]["tx_hash"] == tx_hash
    assert chain.sent[-1]["nonce"] == 1
    assert manager.accepted_nonces == [1]


def test_resync_never_goes_backwards(chain) -> None:
    manager = _manager(chain)
    manager.submit(_task(chain, 1), PAYLOAD)
    chain.nonce = 0

    assert manager.resync_nonce() == 1


def test_contract_rejection_is_not_retried(chain) -> None:
    manager = _manager(chain)
    chain.send_errors = [ContractLogicError("execution reverted: InvalidTaskStatus")]

    with pytest.raises(ContractLogicError) as exc_info:
        manager.submit(_task(chain, 1), PAYLOAD)

    assert exc_info.value.kind == FailureKind.FatalContractLogic
    assert chain.sent == []
    assert manager.nonce == 0


def test_transient_errors_retried_up_to_bound(chain) -> None:
    manager = _manager(chain, max_attempts=3)
    chain.send_errors = [SubmissionError("connection reset") for _ in range(3)]
    retries = []

    with pytest.raises(SubmissionError) as exc_info:
        manager.submit(_task(chain, 1), PAYLOAD, on_retry=retries.append)

    assert exc_info.value.kind == FailureKind.TransientInfra
    assert [r.attempts for r in retries] == [1, 2]
    assert [r.last_error for r in retries] == [FailureKind.TransientInfra] * 2
    assert chain.send_errors == []
    assert chain.sent == []


def test_transient_error_then_success(chain) -> None:
    manager = _manager(chain)
    chain.send_errors = [SubmissionError("503 service unavailable")]

    manager.submit(_task(chain, 1), PAYLOAD)

    assert len(chain.sent) == 1
    assert manager.accepted_nonces == [0]


def test_underpriced_raises_gas_price(chain) -> None:
    manager = _manager(chain, max_attempts=4)
    chain.send_errors = [UnderpricedError("transaction underpriced") for _ in range(2)]

    manager.submit(_task(chain, 1), PAYLOAD)

    assert chain.sent[0]["gas_price_hike"] == 24


def test_receipt_timeout_checks_earlier_transaction(chain) -> None:
    manager = _manager(chain)
    chain.receipt_errors = [SubmissionError("receipt timeout")]

    tx_hash = manager.submit(_task(chain, 1), PAYLOAD)

    # the first transaction landed, nothing is sent twice
    assert len(chain.sent) == 1
    assert tx_hash == chain.sent[0]["tx_hash"]
    assert manager.accepted_nonces == [0]


def test_receipt_timeout_waits_for_pending_transaction(chain) -> None:
    chain.confirm_on_receipt = True
    manager = _manager(chain)
    chain.receipt_errors = [SubmissionError("receipt timeout")]
    pending = []

    def _on_retry(attempt):
        pending.append(manager.ledger.snapshot())

    tx_hash = manager.submit(_task(chain, 1), PAYLOAD, on_retry=_on_retry)

    assert len(chain.sent) == 1
    assert tx_hash == chain.sent[0]["tx_hash"]
    assert chain.has_responded(1, OracleKind.Generator)
    record = pending[0][(1, OracleKind.Generator)]
    assert record.tx_hash == tx_hash
    assert record.attempts == 1
    assert len(manager.ledger) == 0


def test_writer_thread_sends_in_queue_order(chain) -> None:
    manager = _manager(chain)
    manager.start()
    try:
        futures = [manager.enqueue(_task(chain, i), PAYLOAD) for i in range(5)]
        hashes = [f.result(5) for f in futures]
    finally:
        manager.stop()

    assert [s["task_id"] for s in chain.sent] == list(range(5))
    assert hashes == [s["tx_hash"] for s in chain.sent]


def test_writer_reports_failure_on_future(chain) -> None:
    manager = _manager(chain)
    chain.send_errors = [ContractLogicError("execution reverted: AlreadyResponded")]
    manager.start()
    try:
        future = manager.enqueue(_task(chain, 1), PAYLOAD)
        with pytest.raises(ContractLogicError):
            future.result(5)
    finally:
        manager.stop()


def test_enqueue_without_writer_fails(chain) -> None:
    manager = _manager(chain)

    future = manager.enqueue(_task(chain, 1), PAYLOAD)

    assert isinstance(future, concurrent.futures.Future)
    with pytest.raises(SubmissionError):
        future.result(1)
    assert chain.sent == []


def test_stop_event_ends_retries(chain) -> None:
    stop = threading.Event()
    manager = _manager(chain, max_attempts=10, stop=stop)
    chain.send_errors = [SubmissionError("connection reset") for _ in range(10)]
    stop.set()

    with pytest.raises(SubmissionError):
        manager.submit(_task(chain, 1), PAYLOAD)
    assert len(chain.send_errors) == 9


def test_nonce_error_class_is_transient() -> None:
    assert NonceError("nonce too low").retryable
    assert UnderpricedError("underpriced").retryable
