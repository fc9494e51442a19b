import concurrent.futures
import logging
import threading
from typing import Callable, Dict, Iterator, List, Literal, Tuple

from pydantic import BaseModel
from tenacity import (Retrying, before_sleep_log, retry_if_exception_type,
                      stop_never, stop_when_event_set, wait_exponential)

from oracle_node.backend import ComputationBackend
from oracle_node.chain import ChainClient
from oracle_node.config import Config, get_config
from oracle_node.errors import (ChainError, ConfigurationError,
                                ExecutionCancelled, IngestError, OracleError)
from oracle_node.model import (ComputationResult, FailureKind, NodeIdentity,
                               OracleKind, Phase, ResolvedInput, SkipReason,
                               SubmissionAttempt, Task, TaskKey, TaskStatus)
from oracle_node.storage import ArweaveStorage

from .eligibility import Skip, eligible
from .encoder import ResponseEncoder
from .ingestor import EventIngestor
from .preparer import RequestPreparer
from .resolver import InputResolver
from .response import ResponseBuilder
from .scheduler import ExecutionScheduler
from .state import TaskStateTable
from .submission import SubmissionManager

_logger = logging.getLogger(__name__)

RunMode = Literal["bounded", "continuous", "single"]


class RunReport(BaseModel):
    mode: RunMode
    counts: Dict[str, int] = {}
    failures: Dict[Tuple[int, OracleKind], FailureKind] = {}
    ingest_error: str | None = None
    stopped: bool = False

    @property
    def ok(self) -> bool:
        return self.ingest_error is None and len(self.failures) == 0


class TaskProcessingEngine(object):
    """Drives every discovered task through its pipeline.

    The calling thread consumes the ingestor. Pipeline steps of accepted
    tasks run on a pool of ``node.pipeline_workers`` threads and never wait
    on a computation or a transaction: computations finish on the
    scheduler's slots and responses go to the single submission writer, each
    calling back into the pool when done.
    """

    def __init__(
        self,
        chain: ChainClient,
        storage: ArweaveStorage,
        backend: ComputationBackend,
        config: Config | None = None,
        stop: threading.Event | None = None,
    ) -> None:
        if config is None:
            config = get_config()
        self._config = config
        self._chain = chain
        self.stop_event = stop if stop is not None else threading.Event()

        self.tasks = TaskStateTable(retain_finished=config.node.finished_history)
        self.ingestor = EventIngestor(
            chain,
            chunk_size=config.chain.block_chunk_size,
            rpc_retries=config.chain.rpc_retries,
        )
        self.resolver = InputResolver(storage)
        self.preparer = RequestPreparer(chain, self.resolver)
        self.scheduler = ExecutionScheduler(
            backend,
            concurrency=config.scheduler.concurrency,
            max_timeout=config.scheduler.max_timeout,
            max_steps=config.scheduler.max_steps,
            provider_retries=config.scheduler.provider_retries,
        )
        self.encoder = ResponseEncoder(
            storage,
            byte_threshold=config.storage.byte_limit,
            hex_passthrough=config.encoder.hex_passthrough,
        )
        self.responses = ResponseBuilder(self.encoder)
        self.identity: NodeIdentity | None = None
        self.submitter: SubmissionManager | None = None

        self._pool: concurrent.futures.ThreadPoolExecutor | None = None
        self._head_block: int | None = None
        self._outstanding = 0
        self._settled = threading.Condition()

    def prepare(
        self, kinds: List[OracleKind] | None = None, models: List[str] | None = None
    ) -> NodeIdentity:
        """Check the node can serve ``kinds`` with ``models`` and sync its nonce."""
        if not kinds:
            kinds = list(self._config.node.kinds)
        if len(kinds) == 0:
            kinds = [kind for kind in OracleKind if self._chain.is_registered(kind)]
            if len(kinds) == 0:
                raise ConfigurationError(
                    f"{self._chain.address} is not registered as generator or validator"
                )
            _logger.info(f"Serving registered kinds: {', '.join(k.value for k in kinds)}")
        else:
            for kind in kinds:
                if not self._chain.is_registered(kind):
                    raise ConfigurationError(
                        f"{self._chain.address} is not registered as {kind.value}"
                    )

        if not models:
            models = list(self._config.node.models)
        if len(models) == 0:
            raise ConfigurationError("no models configured")

        validator_model = self._config.node.validator_model
        if OracleKind.Validator in kinds and validator_model not in models:
            raise ConfigurationError(f"validator requires model {validator_model}")

        self.identity = NodeIdentity(
            address=self._chain.address,
            kinds=kinds,
            models=models,
            validator_model=validator_model,
        )
        self.submitter = SubmissionManager(
            self._chain,
            self.identity,
            max_attempts=self._config.submission.max_attempts,
            backoff_min=self._config.submission.backoff_min,
            backoff_max=self._config.submission.backoff_max,
            gas_price_hikes=self._config.submission.gas_price_hikes,
            tx_timeout=self._config.chain.tx_timeout,
            stop=self.stop_event,
        )
        self.submitter.sync_nonce()
        _logger.info(f"Node {self.identity.address} ready, models: {', '.join(models)}")
        return self.identity

    def stop(self):
        if not self.stop_event.is_set():
            _logger.info("Stopping task processing engine")
            self.stop_event.set()

    def run_bounded(self, from_block: int, to_block: int) -> RunReport:
        return self._run("bounded", lambda: self.ingestor.bounded(from_block, to_block))

    def run_single(self, task_id: int) -> RunReport:
        return self._run("single", lambda: self.ingestor.single(task_id))

    def run_continuous(self, from_block: int | None = None) -> RunReport:
        self._start()
        ingest_error = None
        try:
            # no attempt limit, only shutdown ends the retries
            for attempt in Retrying(
                retry=retry_if_exception_type(IngestError),
                stop=stop_never | stop_when_event_set(self.stop_event),
                wait=wait_exponential(multiplier=1, max=60),
                sleep=self.stop_event.wait,
                before_sleep=before_sleep_log(_logger, logging.ERROR, True),
                reraise=True,
            ):
                with attempt:
                    self._consume(self.ingestor.continuous(from_block, self.stop_event))
        except IngestError as e:
            ingest_error = str(e)
        finally:
            self._finish()
        return self._report("continuous", ingest_error)

    def _run(self, mode: RunMode, tasks: Callable[[], Iterator[Task]]) -> RunReport:
        self._start()
        ingest_error = None
        try:
            self._consume(tasks())
        except IngestError as e:
            _logger.error(f"Ingest failed at block {e.cursor}: {e}")
            ingest_error = str(e)
        finally:
            self._finish()
        return self._report(mode, ingest_error)

    def _start(self):
        if self.identity is None:
            self.prepare()
        self._pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=self._config.node.pipeline_workers, thread_name_prefix="pipeline"
        )
        self.scheduler.start()
        assert self.submitter is not None
        self.submitter.start()
        try:
            self._head_block = self._chain.get_block_number()
        except ChainError as e:
            _logger.warning(f"Cannot read head block, block deadlines unchecked until discovery: {e}")

    def _finish(self):
        assert self._pool is not None and self.submitter is not None
        if self.stop_event.is_set():
            # cancel queued computations first so their tasks settle
            self.scheduler.stop()
            self._wait_settled()
            self._pool.shutdown(wait=True)
        else:
            self._wait_settled()
            self._pool.shutdown(wait=True)
            self.scheduler.stop()
        self.submitter.stop()
        self._pool = None

    def _wait_settled(self):
        with self._settled:
            while self._outstanding > 0:
                self._settled.wait()

    def _report(self, mode: RunMode, ingest_error: str | None) -> RunReport:
        counts = {phase.value: count for phase, count in self.tasks.counts().items()}
        report = RunReport(
            mode=mode,
            counts=counts,
            failures=self.tasks.failures(),
            ingest_error=ingest_error,
            stopped=self.stop_event.is_set(),
        )
        _logger.info(f"Run finished: {counts}")
        return report

    def _consume(self, tasks: Iterator[Task]):
        for task in tasks:
            if self.stop_event.is_set():
                break
            self._dispatch(task)

    def _dispatch(self, task: Task):
        assert self.identity is not None and self._pool is not None
        self.tasks.discover(task)
        if self._head_block is None or task.discovery_block > self._head_block:
            self._head_block = task.discovery_block

        decision = eligible(task, self.identity, head_block=self._head_block)
        if isinstance(decision, Skip):
            self.tasks.skip(task.key, decision.reason)
            return
        with self._settled:
            self._outstanding += 1
        self._pool.submit(self._start_task, task, decision.model)

    def _already_responded(self, task: Task) -> bool:
        try:
            return self._chain.has_responded(task.task_id, task.kind)
        except ChainError as e:
            # the contract rejects a second answer anyway
            _logger.warning(f"Cannot check earlier responses to task {task.task_id}: {e}")
            return False

    def _start_task(self, task: Task, model: str):
        key = task.key
        try:
            if self._already_responded(task):
                self.tasks.skip(key, SkipReason.AlreadyResponded)
                self._settle()
                return

            self.tasks.advance(key, Phase.Resolving)
            if self.stop_event.is_set():
                raise ExecutionCancelled(f"task {task.task_id} not started, shutting down")
            resolved = self.preparer.prepare(task, self.resolver.resolve(task.input))

            self.tasks.advance(key, Phase.Executing)
            computation = self.scheduler.submit(task, resolved, model)
        except Exception as e:
            self._failed(key, e)
            return

        computation.add_done_callback(
            lambda f: self._later(self._finish_task, task, resolved, f)
        )

    def _finish_task(
        self,
        task: Task,
        resolved: ResolvedInput,
        computation: "concurrent.futures.Future[ComputationResult]",
    ):
        key = task.key
        try:
            try:
                result = computation.result()
            except concurrent.futures.CancelledError as e:
                raise ExecutionCancelled(f"task {task.task_id} cancelled before it started") from e

            self.tasks.advance(key, Phase.Encoding)
            response = self.responses.build(task, resolved, result)
            self.tasks.advance(key, Phase.Submitting)
        except Exception as e:
            self._failed(key, e)
            return

        def _on_retry(attempt: SubmissionAttempt):
            self.tasks.transition(
                key,
                TaskStatus(phase=Phase.Submitting, message=f"retry after attempt {attempt.attempts}"),
            )

        assert self.submitter is not None
        submission = self.submitter.enqueue(task, response, on_retry=_on_retry)
        submission.add_done_callback(lambda f: self._submitted(key, f))

    def _submitted(self, key: TaskKey, submission: "concurrent.futures.Future[str]"):
        try:
            tx_hash = submission.result()
        except Exception as e:
            self._failed(key, e)
            return
        try:
            self.tasks.submitted(key, tx_hash)
        finally:
            self._settle()

    def _later(self, fn: Callable, *args):
        assert self._pool is not None
        self._pool.submit(fn, *args)

    def _failed(self, key: TaskKey, e: Exception):
        try:
            if isinstance(e, OracleError):
                self.tasks.fail(key, e.kind, str(e))
            else:
                _logger.exception(e)
                self.tasks.fail(key, FailureKind.ExecutionError, f"unexpected error: {e}")
        finally:
            self._settle()

    def _settle(self):
        with self._settled:
            self._outstanding -= 1
            self._settled.notify_all()
