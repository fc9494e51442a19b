import json
import math
from typing import Any, Dict, List, Sequence

from oracle_node.model import ChatMessage, OracleKind

DEFAULT_MAX_TIME = 50
DEFAULT_MAX_STEPS = 10

VALIDATION_PROMPT = (
    "You are given an instruction and a list of responses to it. "
    "Rate every response on its own. Reply with a JSON array holding one object "
    "per response, in the order given, each of the form "
    '{"helpfulness": 1-5, "instruction_following": 1-5, "truthfulness": 1-5, '
    '"rationale": "...", "final_score": 1-5}.'
)


def make_generation_workflow(
    prompt: str, max_steps: int = DEFAULT_MAX_STEPS, max_time: int = DEFAULT_MAX_TIME
) -> Dict[str, Any]:
    return make_chat_workflow([], prompt, max_steps=max_steps, max_time=max_time)


def make_chat_workflow(
    messages: List[Dict[str, str]],
    prompt: str,
    max_steps: int = DEFAULT_MAX_STEPS,
    max_time: int = DEFAULT_MAX_TIME,
) -> Dict[str, Any]:
    messages = list(messages) + [{"role": "user", "content": prompt}]
    return {
        "config": {"max_steps": max_steps, "max_time": max_time, "tools": [""]},
        "tasks": [
            {
                "id": "A",
                "name": "Generate with history",
                "description": "Expects an array of messages for generation",
                "operator": "generation",
                "messages": messages,
                "outputs": [{"type": "write", "key": "result", "value": "__result"}],
            },
            {
                "id": "__end",
                "operator": "end",
                "messages": [{"role": "user", "content": "End of the task"}],
            },
        ],
        "steps": [{"source": "A", "target": "__end"}],
        "return_value": {"input": {"type": "read", "key": "result"}},
    }


def make_validation_workflow(
    instruction: str,
    generations: Sequence[str],
    max_steps: int = DEFAULT_MAX_STEPS,
    max_time: int = DEFAULT_MAX_TIME,
) -> Dict[str, Any]:
    messages = [{"role": "system", "content": VALIDATION_PROMPT}]
    prompt = json.dumps({"instruction": instruction, "responses": list(generations)})
    return make_chat_workflow(messages, prompt, max_steps=max_steps, max_time=max_time)


def parse_workflow(text: str) -> Dict[str, Any] | None:
    """Return ``text`` as a workflow document if it looks like one."""
    if not text.lstrip().startswith("{"):
        return None
    try:
        obj = json.loads(text)
    except ValueError:
        return None
    if isinstance(obj, dict) and "tasks" in obj and "steps" in obj:
        return obj
    return None


def build_workflow(
    kind: OracleKind,
    text: str,
    max_steps: int,
    timeout: float,
    history: List[ChatMessage] | None = None,
    generations: List[str] | None = None,
) -> Dict[str, Any]:
    """Workflow for a task input under the given step and time budget.

    A validation scores ``generations`` against the instruction in ``text``.
    A chat request continues ``history``. Workflow documents keep their own
    limits, clamped to the budget.
    """
    max_time = max(1, math.floor(timeout))

    if kind == OracleKind.Validator:
        return make_validation_workflow(
            text, generations or [], max_steps=max_steps, max_time=max_time
        )

    if history is not None:
        messages = [m.model_dump() for m in history]
        return make_chat_workflow(messages, text, max_steps=max_steps, max_time=max_time)

    workflow = parse_workflow(text)
    if workflow is None:
        return make_generation_workflow(text, max_steps=max_steps, max_time=max_time)

    config = dict(workflow.get("config") or {})
    config["max_steps"] = min(int(config.get("max_steps", max_steps)), max_steps)
    config["max_time"] = min(int(config.get("max_time", max_time)), max_time)
    workflow["config"] = config
    return workflow
