from typing import List, Literal

from pydantic import BaseModel, ConfigDict


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ResolvedInput(BaseModel):
    content: bytes
    provenance: Literal["inline", "fetched"]
    # prior conversation of a chat request
    history: List[ChatMessage] | None = None
    # answers a validation task scores, in on-chain order
    generations: List[str] | None = None

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


class ComputationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    output: bytes
    model: str


class EncodedPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    payload: bytes
    uploaded: bool = False
    # content-store id when the payload points at stored content
    key: str | None = None


class ResponsePayload(BaseModel):
    """What goes on-chain: ``output`` for a generation, ``scores`` for a validation."""

    model_config = ConfigDict(frozen=True)

    output: bytes = b""
    metadata: bytes = b""
    scores: List[int] = []
