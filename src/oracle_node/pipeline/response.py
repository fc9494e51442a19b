import json
import logging

from oracle_node.model import (ComputationResult, OracleKind, ResolvedInput,
                               ResponsePayload, Task)

from .encoder import ResponseEncoder
from .postprocess import post_processor_for
from .preparer import transcript
from .validation import parse_validations

_logger = logging.getLogger(__name__)


class ResponseBuilder(object):
    """Turns a computation result into the on-chain response of its task."""

    def __init__(self, encoder: ResponseEncoder) -> None:
        self._encoder = encoder

    def build(
        self, task: Task, resolved: ResolvedInput, result: ComputationResult
    ) -> ResponsePayload:
        if task.kind == OracleKind.Validator:
            return self._validation(resolved, result)
        return self._generation(task, resolved, result)

    def _generation(
        self, task: Task, resolved: ResolvedInput, result: ComputationResult
    ) -> ResponsePayload:
        text = result.output.decode("utf-8", errors="replace")
        if resolved.history is not None:
            text = transcript(resolved.history, resolved.text, text).decode("utf-8")

        processed = post_processor_for(task.protocol).post_process(text)
        if processed.use_storage:
            encoded = self._encoder.encode(processed.output)
        else:
            encoded = self._encoder.raw(processed.output)

        metadata = processed.metadata
        if len(metadata) == 0 and encoded.key is not None:
            # validators read the answer back through this pointer
            metadata = json.dumps({"arweave": encoded.key}).encode("utf-8")
        return ResponsePayload(
            output=encoded.payload, metadata=self._encoder.encode_metadata(metadata)
        )

    def _validation(self, resolved: ResolvedInput, result: ComputationResult) -> ResponsePayload:
        validations = parse_validations(result.output, len(resolved.generations or []))
        scores = [v.solidity_score() for v in validations]
        _logger.debug(f"Validation scores: {scores}")
        metadata = json.dumps([v.model_dump() for v in validations]).encode("utf-8")
        return ResponsePayload(scores=scores, metadata=self._encoder.encode_metadata(metadata))
