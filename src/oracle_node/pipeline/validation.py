import json
from typing import List

from pydantic import BaseModel, Field, ValidationError

from oracle_node.errors import ExecutionError

# final score 1..5 onto the coordinator's uint8 score range
_SCORE_MAP = {1: 1, 2: 64, 3: 85, 4: 127, 5: 255}


class ValidationResult(BaseModel):
    """The validator model's assessment of one generation."""

    helpfulness: float | None = None
    instruction_following: float | None = None
    truthfulness: float | None = None
    rationale: str = ""
    final_score: int = Field(strict=True)

    def solidity_score(self) -> int:
        return _SCORE_MAP[min(max(self.final_score, 1), 5)]


def parse_validations(output: bytes, expected: int) -> List[ValidationResult]:
    """One result per generation, from a JSON array of objects or JSON strings."""
    try:
        items = json.loads(output.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise ExecutionError(f"validation output is not JSON: {e}") from e
    if not isinstance(items, list):
        raise ExecutionError("validation output is not a JSON array")
    if len(items) != expected:
        raise ExecutionError(f"expected {expected} validations, got {len(items)}")

    results = []
    for item in items:
        try:
            if isinstance(item, str):
                results.append(ValidationResult.model_validate_json(item))
            else:
                results.append(ValidationResult.model_validate(item))
        except ValidationError as e:
            raise ExecutionError(f"invalid validation {item!r}: {e}") from e
    return results
