import logging
import threading
from collections import Counter, OrderedDict
from typing import Dict, FrozenSet, List, Tuple

from oracle_node.model import (TERMINAL_PHASES, FailureKind, Phase, SkipReason,
                               Task, TaskKey, TaskStatus)

_logger = logging.getLogger(__name__)

# Allowed transitions, anything not listed is illegal.
_ALLOWED: Dict[Phase, FrozenSet[Phase]] = {
    Phase.Discovered: frozenset([Phase.Skipped, Phase.Resolving]),
    Phase.Resolving: frozenset([Phase.Executing, Phase.Failed]),
    Phase.Executing: frozenset([Phase.Encoding, Phase.Failed]),
    Phase.Encoding: frozenset([Phase.Submitting, Phase.Failed]),
    Phase.Submitting: frozenset([Phase.Submitting, Phase.Submitted, Phase.Failed]),
    Phase.Skipped: frozenset(),
    Phase.Submitted: frozenset(),
    Phase.Failed: frozenset(),
}


def label(key: TaskKey) -> str:
    task_id, kind = key
    return f"{task_id} ({kind.value})"


class InvalidTransition(Exception):
    def __init__(self, key: TaskKey, current: Phase, target: Phase) -> None:
        super().__init__(f"task {label(key)}: illegal transition {current.name} -> {target.name}")
        self.key = key
        self.current = current
        self.target = target


class TaskStateTable(object):
    """Status of the tasks of this run, keyed by (task id, kind).

    Active tasks keep their full phase history. A task that ends moves to a
    bounded record of the last ``retain_finished`` finished tasks; ``counts``
    and ``failures`` still cover the evicted ones.
    """

    def __init__(self, retain_finished: int = 1024) -> None:
        self._lock = threading.Lock()
        self._retain_finished = retain_finished
        self._active: Dict[TaskKey, TaskStatus] = {}
        self._history: Dict[TaskKey, List[Phase]] = {}
        self._finished: "OrderedDict[TaskKey, Tuple[TaskStatus, List[Phase]]]" = OrderedDict()
        self._terminal: Counter = Counter()
        self._failures: Dict[TaskKey, FailureKind] = {}

    def discover(self, task: Task) -> TaskStatus:
        key = task.key
        with self._lock:
            current = self._current(key)
            if current is not None:
                raise InvalidTransition(key, current.phase, Phase.Discovered)
            status = TaskStatus(phase=Phase.Discovered)
            self._active[key] = status
            self._history[key] = [Phase.Discovered]
        _logger.info(f"Task {label(key)} discovered (block {task.discovery_block})")
        return status

    def transition(self, key: TaskKey, status: TaskStatus) -> TaskStatus:
        with self._lock:
            current = self._current(key)
            if current is None:
                raise KeyError(key)
            if status.phase not in _ALLOWED[current.phase]:
                raise InvalidTransition(key, current.phase, status.phase)
            self._history[key].append(status.phase)
            if status.phase in TERMINAL_PHASES:
                self._retire(key, status)
            else:
                self._active[key] = status

        if status.phase == Phase.Skipped:
            _logger.debug(f"Task {label(key)} {status}")
        elif status.phase == Phase.Failed:
            _logger.error(f"Task {label(key)} {status}: {status.message}")
        else:
            _logger.info(f"Task {label(key)} {status}")
        return status

    def advance(self, key: TaskKey, phase: Phase) -> TaskStatus:
        return self.transition(key, TaskStatus(phase=phase))

    def skip(self, key: TaskKey, reason: SkipReason) -> TaskStatus:
        return self.transition(key, TaskStatus(phase=Phase.Skipped, reason=reason))

    def fail(self, key: TaskKey, kind: FailureKind, message: str = "") -> TaskStatus:
        return self.transition(key, TaskStatus(phase=Phase.Failed, failure=kind, message=message))

    def submitted(self, key: TaskKey, tx_hash: str) -> TaskStatus:
        return self.transition(key, TaskStatus(phase=Phase.Submitted, tx_hash=tx_hash))

    def get(self, key: TaskKey) -> TaskStatus | None:
        with self._lock:
            return self._current(key)

    def history(self, key: TaskKey) -> List[Phase]:
        with self._lock:
            if key in self._history:
                return list(self._history[key])
            if key in self._finished:
                return list(self._finished[key][1])
            return []

    def counts(self) -> Counter:
        """Tasks per phase, finished ones included even after eviction."""
        with self._lock:
            counts = Counter(status.phase for status in self._active.values())
            counts.update(self._terminal)
            return counts

    def failures(self) -> Dict[TaskKey, FailureKind]:
        with self._lock:
            return dict(self._failures)

    def __len__(self) -> int:
        """Number of tasks still in progress."""
        with self._lock:
            return len(self._active)

    def _current(self, key: TaskKey) -> TaskStatus | None:
        status = self._active.get(key)
        if status is None and key in self._finished:
            status = self._finished[key][0]
        return status

    def _retire(self, key: TaskKey, status: TaskStatus):
        del self._active[key]
        self._finished[key] = (status, self._history.pop(key))
        self._terminal[status.phase] += 1
        if status.phase == Phase.Failed and status.failure is not None:
            self._failures[key] = status.failure
        while len(self._finished) > self._retain_finished:
            self._finished.popitem(last=False)
