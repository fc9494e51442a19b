import time

from pydantic import BaseModel

from oracle_node.model import NodeIdentity, OracleKind, SkipReason, Task


class Accept(BaseModel):
    model: str


class Skip(BaseModel):
    reason: SkipReason


def eligible(
    task: Task,
    identity: NodeIdentity,
    head_block: int | None = None,
    now: float | None = None,
) -> Accept | Skip:
    """Decide whether this node takes ``task``; rules are checked in order.

    When several configured models are allowed by the task, the first in the
    node's configured order wins.
    """
    if task.kind not in identity.kinds:
        return Skip(reason=SkipReason.WrongKind)

    matching = [model for model in identity.models if task.allows_model(model)]
    if len(matching) == 0:
        return Skip(reason=SkipReason.NoMatchingModel)

    model = matching[0]
    if task.kind == OracleKind.Validator:
        if identity.validator_model not in matching:
            return Skip(reason=SkipReason.ValidatorModelMismatch)
        model = identity.validator_model

    if now is None:
        now = time.time()
    if task.is_expired(head_block, now):
        return Skip(reason=SkipReason.Expired)

    return Accept(model=model)
