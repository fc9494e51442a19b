import threading
from typing import Callable, Dict

from .base import ComputationBackend, ExecutionRequest, NoModelAvailable


class MockBackend(ComputationBackend):
    """Answers from a fixed table, used for dry runs and tests.

    ``responses`` maps a prompt to its answer; ``handler`` overrides the table
    entirely. Unknown prompts are echoed back.
    """

    def __init__(
        self,
        responses: Dict[str, str] | None = None,
        handler: Callable[[ExecutionRequest, threading.Event], str] | None = None,
    ) -> None:
        self.responses = responses or {}
        self.handler = handler
        self.calls: list[ExecutionRequest] = []
        self._lock = threading.Lock()

    def execute(self, request: ExecutionRequest, cancel: threading.Event) -> str:
        with self._lock:
            self.calls.append(request)
        if self.handler is not None:
            return self.handler(request, cancel)
        if len(request.models) == 0:
            raise NoModelAvailable(f"no model for task {request.task_id}")

        prompt = prompt_of(request)
        return self.responses.get(prompt, prompt)


def prompt_of(request: ExecutionRequest) -> str:
    """Last user message of the first task that has one."""
    for task in request.workflow.get("tasks", []):
        users = [m for m in task.get("messages", []) if m.get("role") == "user"]
        if len(users) > 0:
            return users[-1].get("content", "")
    return ""
