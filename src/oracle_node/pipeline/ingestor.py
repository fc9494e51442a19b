import logging
import threading
from typing import Callable, Iterator, Literal, Set, TypeVar

from pydantic import ValidationError
from tenacity import (Retrying, before_sleep_log, retry_if_exception,
                      stop_after_attempt, wait_exponential)

from oracle_node.chain import ChainClient, EventSubscription
from oracle_node.errors import ConfigurationError, IngestError, OracleError
from oracle_node.model import InputDescriptor, StatusEvent, Task, TaskKey

_logger = logging.getLogger(__name__)

IngestState = Literal["scanning", "live"]

T = TypeVar("T")


class EventIngestor(object):
    """Turns coordinator status events into tasks.

    Each (task id, kind) pair is yielded at most once, so the same task comes
    back for validation after its generation phase.

    ``cursor`` is the next block not yet fully scanned. It survives an
    ``IngestError`` so a later ``continuous`` call on the same ingestor
    resumes where the previous one stopped.
    """

    def __init__(
        self,
        chain: ChainClient,
        chunk_size: int = 1000,
        rpc_retries: int = 5,
        recv_timeout: float = 1,
        retry_wait_max: float = 10,
    ) -> None:
        assert chunk_size > 0
        self._chain = chain
        self._chunk_size = chunk_size
        self._rpc_retries = rpc_retries
        self._recv_timeout = recv_timeout
        self._retry_wait_max = retry_wait_max

        self._seen: Set[TaskKey] = set()
        self.cursor: int | None = None
        self.state: IngestState = "scanning"

    @property
    def seen(self) -> Set[TaskKey]:
        return set(self._seen)

    def bounded(self, from_block: int, to_block: int) -> Iterator[Task]:
        if from_block > to_block:
            raise ConfigurationError(f"empty block range [{from_block}, {to_block}]")
        _logger.info(f"Scanning blocks [{from_block}, {to_block}]")
        self.cursor = from_block
        yield from self._scan_range(from_block, to_block)

    def continuous(self, from_block: int | None, stop: threading.Event) -> Iterator[Task]:
        if self.cursor is None:
            if from_block is None:
                from_block = self._call(self._chain.get_block_number)
            self.cursor = from_block
        self.state = "scanning"
        _logger.info(f"Following coordinator events from block {self.cursor}")

        subscription: EventSubscription | None = None
        try:
            while not stop.is_set():
                if self.state == "scanning":
                    # subscribe before the catch-up scan so no block falls in between
                    subscription = self._call(self._chain.subscribe)
                    head = self._call(self._chain.get_block_number)
                    if head >= self.cursor:
                        yield from self._scan_range(self.cursor, head, stop)
                    if stop.is_set():
                        break
                    self.state = "live"
                    _logger.info(f"Caught up to block {head}, now live")
                    continue

                assert subscription is not None
                try:
                    event = subscription.recv(self._recv_timeout)
                except IngestError as e:
                    _logger.warning(f"Live subscription lost at block {self.cursor}: {e}")
                    subscription.close()
                    subscription = None
                    self.state = "scanning"
                    continue
                if event is None:
                    continue
                # other events of the same block may still follow
                self.cursor = max(self.cursor, event.block_number)
                task = self._to_task(event)
                if task is not None:
                    yield task
        finally:
            if subscription is not None:
                subscription.close()

    def single(self, task_id: int) -> Iterator[Task]:
        request = self._call(self._chain.get_task_request, task_id)
        kind = request.status.to_kind()
        if kind is None:
            _logger.warning(f"Task {task_id} is {request.status.name}, nothing to do")
            return
        head = self._call(self._chain.get_block_number)
        event = StatusEvent(
            task_id=task_id,
            protocol=request.protocol,
            status_before=request.status,
            status_after=request.status,
            block_number=head,
        )
        task = self._to_task(event)
        if task is not None:
            yield task

    def _scan_range(
        self, from_block: int, to_block: int, stop: threading.Event | None = None
    ) -> Iterator[Task]:
        start = from_block
        while start <= to_block:
            if stop is not None and stop.is_set():
                return
            end = min(start + self._chunk_size - 1, to_block)
            events = self._call(self._chain.get_status_events, start, end, cursor=start)
            _logger.debug(f"Blocks [{start}, {end}]: {len(events)} events")
            for event in events:
                task = self._to_task(event)
                if task is not None:
                    yield task
            start = end + 1
            self.cursor = start

    def _to_task(self, event: StatusEvent) -> Task | None:
        kind = event.status_after.to_kind()
        if kind is None:
            _logger.debug(
                f"Ignoring task {event.task_id} status update "
                f"{event.status_before.name} -> {event.status_after.name}"
            )
            return None
        key = (event.task_id, kind)
        if key in self._seen:
            return None

        try:
            request = self._call(self._chain.get_task_request, event.task_id, cursor=self.cursor)
        except IngestError as e:
            cause = e.__cause__
            if isinstance(cause, OracleError) and not cause.retryable:
                _logger.error(f"Cannot read task {event.task_id}, ignoring it: {cause}")
                self._seen.add(key)
                return None
            raise

        try:
            task = Task(
                task_id=event.task_id,
                requester=request.requester,
                kind=kind,
                models=frozenset(request.models),
                input=InputDescriptor.from_bytes(request.input),
                protocol=event.protocol or request.protocol,
                deadline_block=request.deadline_block,
                discovery_block=event.block_number,
            )
        except ValidationError as e:
            _logger.error(f"Task {event.task_id} is malformed, ignoring it: {e}")
            self._seen.add(key)
            return None

        self._seen.add(key)
        return task

    def _call(self, fn: Callable[..., T], *args, cursor: int | None = None) -> T:
        if cursor is None:
            cursor = self.cursor
        try:
            for attempt in Retrying(
                retry=retry_if_exception(_is_transient),
                stop=stop_after_attempt(self._rpc_retries),
                wait=wait_exponential(multiplier=0.5, max=self._retry_wait_max),
                before_sleep=before_sleep_log(_logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    result = fn(*args)
        except OracleError as e:
            raise IngestError(f"{getattr(fn, '__name__', fn)} failed: {e}", cursor=cursor) from e
        return result


def _is_transient(e: BaseException) -> bool:
    return isinstance(e, OracleError) and e.retryable
