import json
import re
import time
from enum import Enum, IntEnum
from typing import FrozenSet, Literal, Tuple

from pydantic import BaseModel, ConfigDict, Field

_HEX64 = re.compile(r"[0-9a-fA-F]{64}")

ANY_MODEL = "*"


def is_hex_id(value: str) -> bool:
    return _HEX64.fullmatch(value) is not None


class OracleKind(str, Enum):
    Generator = "generator"
    Validator = "validator"

    def to_chain(self) -> int:
        return 0 if self == OracleKind.Generator else 1


class ChainTaskStatus(IntEnum):
    NONE = 0
    PendingGeneration = 1
    PendingValidation = 2
    Completed = 3

    def to_kind(self) -> OracleKind | None:
        if self == ChainTaskStatus.PendingGeneration:
            return OracleKind.Generator
        if self == ChainTaskStatus.PendingValidation:
            return OracleKind.Validator
        return None


# a coordinator task is answered once per kind: generation first, then validation
TaskKey = Tuple[int, OracleKind]


class InputDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["inline", "remote"]
    data: bytes = b""
    key: str | None = None

    @classmethod
    def from_bytes(cls, raw: bytes) -> "InputDescriptor":
        """Classify raw on-chain input.

        Remote pointers are either a 64 hex char content-store id or a JSON
        object of the form ``{"arweave": "<base64url id>"}``. Everything else
        is inline.
        """
        try:
            text = raw.decode("utf-8").strip()
        except UnicodeDecodeError:
            return cls(type="inline", data=raw)

        if is_hex_id(text):
            return cls(type="remote", key=text.lower())

        if text.startswith("{"):
            try:
                obj = json.loads(text)
            except ValueError:
                obj = None
            if (
                isinstance(obj, dict)
                and len(obj) == 1
                and isinstance(obj.get("arweave"), str)
            ):
                return cls(type="remote", key=obj["arweave"])

        return cls(type="inline", data=raw)


class Task(BaseModel):
    model_config = ConfigDict(frozen=True)

    task_id: int
    requester: str
    kind: OracleKind
    models: FrozenSet[str] = Field(min_length=1)
    input: InputDescriptor
    protocol: str = ""
    deadline_block: int | None = None
    time_budget: float | None = None
    discovery_block: int
    discovered_at: float = Field(default_factory=time.time)

    @property
    def key(self) -> TaskKey:
        return (self.task_id, self.kind)

    def allows_model(self, model: str) -> bool:
        return ANY_MODEL in self.models or model in self.models

    def remaining_time(self, now: float | None = None) -> float | None:
        if self.time_budget is None:
            return None
        if now is None:
            now = time.time()
        return self.discovered_at + self.time_budget - now

    def is_expired(self, head_block: int | None, now: float | None = None) -> bool:
        if (
            self.deadline_block is not None
            and head_block is not None
            and head_block > self.deadline_block
        ):
            return True
        remaining = self.remaining_time(now)
        return remaining is not None and remaining <= 0


class StatusEvent(BaseModel):
    """A coordinator status update log."""

    task_id: int
    protocol: str = ""
    status_before: ChainTaskStatus
    status_after: ChainTaskStatus
    block_number: int
    tx_hash: str = ""
