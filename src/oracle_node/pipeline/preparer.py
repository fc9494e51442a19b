import json
import logging
from typing import List

from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError

from oracle_node.chain import ChainClient
from oracle_node.errors import FetchError
from oracle_node.model import (ChatMessage, InputDescriptor, OracleKind,
                               ResolvedInput, Task)

from .resolver import InputResolver

_logger = logging.getLogger(__name__)

_MESSAGES = TypeAdapter(List[ChatMessage])


class ChatRequest(BaseModel):
    """A prompt that continues the conversation answered by task ``history_id``."""

    model_config = ConfigDict(extra="forbid")

    history_id: int
    content: str


def parse_chat_request(text: str) -> ChatRequest | None:
    if not text.lstrip().startswith("{"):
        return None
    try:
        return ChatRequest.model_validate_json(text)
    except ValidationError:
        return None


class RequestPreparer(object):
    """Gathers what a computation needs beyond the task input.

    A validation gets the generations it scores, a chat request gets the
    conversation it continues.
    """

    def __init__(self, chain: ChainClient, resolver: InputResolver) -> None:
        self._chain = chain
        self._resolver = resolver

    def prepare(self, task: Task, resolved: ResolvedInput) -> ResolvedInput:
        if task.kind == OracleKind.Validator:
            return resolved.model_copy(update={"generations": self.generations(task.task_id)})

        request = parse_chat_request(resolved.text)
        if request is None:
            return resolved
        return ResolvedInput(
            content=request.content.encode("utf-8"),
            provenance=resolved.provenance,
            history=self.history(request.history_id),
        )

    def downloadable(self, raw: bytes) -> str:
        """Text of an on-chain value, fetched when it points at stored content."""
        return self._resolver.resolve(InputDescriptor.from_bytes(raw)).text

    def generations(self, task_id: int) -> List[str]:
        responses = self._chain.get_responses(task_id)
        if len(responses) == 0:
            raise FetchError(f"task {task_id} has no generations to validate")
        # metadata holds the full answer when the output was post-processed
        return [self.downloadable(r.metadata or r.output) for r in responses]

    def history(self, history_id: int) -> List[ChatMessage]:
        if history_id == 0:
            return []
        best = self._chain.get_best_response(history_id)
        previous = self.downloadable(best.metadata or best.output)
        try:
            return _MESSAGES.validate_json(previous)
        except ValidationError:
            _logger.debug(f"Output of task {history_id} is not a chat transcript")

        # a plain answer: rebuild the exchange from the earlier task's input
        request = self._chain.get_task_request(history_id)
        return [
            ChatMessage(role="user", content=self.downloadable(request.input)),
            ChatMessage(role="assistant", content=previous),
        ]


def transcript(history: List[ChatMessage], prompt: str, answer: str) -> bytes:
    messages = list(history) + [
        ChatMessage(role="user", content=prompt),
        ChatMessage(role="assistant", content=answer),
    ]
    return json.dumps([m.model_dump() for m in messages]).encode("utf-8")
