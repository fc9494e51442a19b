import concurrent.futures
import logging
import threading
import time
from queue import Empty, Queue
from typing import List, Literal

from tenacity import (Retrying, before_sleep_log, retry_if_exception_type,
                      stop_after_attempt, wait_exponential)

from oracle_node.backend import (ComputationBackend, ExecutionRequest,
                                 ProviderError, build_workflow)
from oracle_node.errors import (ExecutionCancelled, ExecutionError,
                                ExecutionTimeout)
from oracle_node.model import ComputationResult, ResolvedInput, Task

_logger = logging.getLogger(__name__)

SchedulerStatus = Literal["running", "cancelled", "stopped"]


class _Job(object):
    def __init__(self, task: Task, resolved: ResolvedInput, model: str) -> None:
        self.task = task
        self.resolved = resolved
        self.model = model
        self.future: concurrent.futures.Future[ComputationResult] = concurrent.futures.Future()


class ExecutionScheduler(object):
    """Runs computations on at most ``concurrency`` backend invocations.

    Jobs wait FIFO for a free worker. A worker owns one slot for the duration
    of one computation, including provider retries, and gives it back as soon
    as the result (or failure) is known.
    """

    def __init__(
        self,
        backend: ComputationBackend,
        concurrency: int = 4,
        max_timeout: float = 150,
        max_steps: int = 10,
        provider_retries: int = 3,
        retry_wait_max: float = 5,
    ) -> None:
        assert concurrency > 0
        self._backend = backend
        self._concurrency = concurrency
        self._max_timeout = max_timeout
        self._max_steps = max_steps
        self._provider_retries = provider_retries
        self._retry_wait_max = retry_wait_max

        self._queue: Queue[_Job] = Queue()
        self._workers: List[threading.Thread] = []
        self._status: SchedulerStatus = "stopped"

        self._lock = threading.Lock()
        self._in_flight = 0
        self.max_in_flight = 0

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    def start(self):
        with self._lock:
            if self._status == "running":
                return
            self._status = "running"
        for i in range(self._concurrency):
            worker = threading.Thread(
                target=self._worker_loop, name=f"scheduler-{i}", daemon=True
            )
            worker.start()
            self._workers.append(worker)

    def submit(
        self, task: Task, resolved: ResolvedInput, model: str
    ) -> "concurrent.futures.Future[ComputationResult]":
        job = _Job(task, resolved, model)
        with self._lock:
            # checked under the lock so stop() cannot miss a job put after its drain
            if self._status == "running":
                self._queue.put(job)
                return job.future
            status = self._status
        job.future.set_exception(
            ExecutionCancelled(f"scheduler is {status}, task {task.task_id} not started")
        )
        return job.future

    def stop(self):
        """Cancel queued jobs and wait for started ones to finish or time out."""
        with self._lock:
            if self._status != "running":
                return
            _logger.info("stopping execution scheduler")
            self._status = "cancelled"
            self._cancel_queued()
        for worker in self._workers:
            worker.join()
        self._workers = []
        # a worker may have taken a job and seen the status change before running it
        self._cancel_queued()
        with self._lock:
            self._status = "stopped"

    def _cancel_queued(self):
        while True:
            try:
                job = self._queue.get_nowait()
            except Empty:
                break
            job.future.cancel()

    def _worker_loop(self):
        while self._status == "running":
            try:
                job = self._queue.get(timeout=0.1)
            except Empty:
                continue
            if not job.future.set_running_or_notify_cancel():
                continue

            with self._lock:
                self._in_flight += 1
                self.max_in_flight = max(self.max_in_flight, self._in_flight)
            try:
                result = self._run(job)
            except Exception as e:
                job.future.set_exception(e)
            else:
                job.future.set_result(result)
            finally:
                with self._lock:
                    self._in_flight -= 1

    def timeout_for(self, task: Task) -> float:
        remaining = task.remaining_time()
        if remaining is None:
            return self._max_timeout
        return min(remaining, self._max_timeout)

    def _run(self, job: _Job) -> ComputationResult:
        task = job.task
        timeout = self.timeout_for(task)
        if timeout <= 0:
            raise ExecutionTimeout(f"task {task.task_id} has no time left")
        deadline = time.monotonic() + timeout

        request = ExecutionRequest(
            task_id=task.task_id,
            kind=task.kind,
            workflow=build_workflow(
                task.kind,
                job.resolved.text,
                self._max_steps,
                timeout,
                history=job.resolved.history,
                generations=job.resolved.generations,
            ),
            models=[job.model],
            max_steps=self._max_steps,
            timeout=timeout,
        )

        _logger.info(f"Executing task {task.task_id} with {job.model} (timeout {timeout:.1f}s)")
        try:
            for attempt in Retrying(
                retry=retry_if_exception_type(ProviderError),
                stop=stop_after_attempt(self._provider_retries + 1),
                wait=wait_exponential(multiplier=0.5, max=self._retry_wait_max),
                before_sleep=before_sleep_log(_logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    output = self._invoke(request, deadline)
        except ProviderError as e:
            raise ExecutionError(
                f"provider failed after {self._provider_retries + 1} attempts: {e}"
            ) from e

        return ComputationResult(output=output.encode("utf-8"), model=job.model)

    def _invoke(self, request: ExecutionRequest, deadline: float) -> str:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ExecutionTimeout(f"task {request.task_id} timed out")

        cancel = threading.Event()
        call: concurrent.futures.Future[str] = concurrent.futures.Future()

        def _call():
            try:
                call.set_result(self._backend.execute(request, cancel))
            except BaseException as e:
                call.set_exception(e)

        # daemon thread, an abandoned invocation must not keep the process alive
        threading.Thread(target=_call, name=f"backend-{request.task_id}", daemon=True).start()
        try:
            return call.result(timeout=remaining)
        except concurrent.futures.TimeoutError:
            cancel.set()
            raise ExecutionTimeout(
                f"task {request.task_id} exceeded {request.timeout:.1f}s, invocation abandoned"
            )
