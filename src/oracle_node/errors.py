"""Error taxonomy shared by the pipeline stages.

Every error raised inside the task pipeline derives from ``OracleError`` and
carries a ``FailureKind``; the engine records that kind against the task and
the retry policies only ever retry ``FailureKind.TransientInfra``.
"""

from dataclasses import dataclass

from oracle_node.model import FailureKind


class OracleError(Exception):
    kind: FailureKind = FailureKind.TransientInfra

    def __init__(self, message: str = "", kind: FailureKind | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.kind == FailureKind.TransientInfra


class ConfigurationError(OracleError):
    kind = FailureKind.FatalConfiguration


class ChainError(OracleError):
    """A chain RPC read failed."""


class IngestError(OracleError):
    """The event ingestor could not continue from its cursor."""

    def __init__(self, message: str, cursor: int | None = None) -> None:
        super().__init__(message)
        self.cursor = cursor


class FetchError(OracleError):
    kind = FailureKind.FatalInput


class StorageError(OracleError):
    """Transient content-store failure (transport error, 5xx)."""


class ExecutionError(OracleError):
    kind = FailureKind.ExecutionError


class ExecutionTimeout(ExecutionError):
    kind = FailureKind.Timeout


class ExecutionCancelled(ExecutionError):
    kind = FailureKind.Cancelled


class EncodeError(OracleError):
    kind = FailureKind.FatalConfiguration


class NoUploadCredential(EncodeError):
    pass


class SubmissionError(OracleError):
    pass


class ContractLogicError(SubmissionError):
    kind = FailureKind.FatalContractLogic


class NonceError(SubmissionError):
    pass


class UnderpricedError(SubmissionError):
    pass


_CONTRACT_LOGIC_PATTERNS: tuple[str, ...] = (
    "alreadyresponded",
    "already responded",
    "invalidtaskstatus",
    "invalid status",
    "notregistered",
    "not registered",
    "insufficientfunds",
    "insufficient funds",
    "insufficient balance",
    "insufficient stake",
    "insufficientrewards",
    "invalidnonce",
    "invalid nonce for task",
    "invalidvalidation",
    "unauthorized",
    "execution reverted",
    "reverted",
)
_NONCE_PATTERNS: tuple[str, ...] = (
    "nonce too low",
    "nonce too high",
    "invalid nonce",
    "replacement transaction",
    "already known",
)
_UNDERPRICED_PATTERNS: tuple[str, ...] = (
    "underpriced",
    "fee too low",
    "max fee per gas less than block base fee",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "timeout",
    "timed out",
    "connection",
    "temporarily unavailable",
    "too many requests",
    "429",
    "500 server error",
    "internal server error",
    "bad gateway",
    "502",
    "503",
    "service unavailable",
    "504",
    "gateway timeout",
    "rate limit",
)


@dataclass(slots=True)
class ChainErrorClassification:
    error_cls: type[SubmissionError]
    matched_rule: str
    matched_pattern: str | None


def classify_chain_error(message: str) -> ChainErrorClassification:
    """Map a chain RPC/contract error message onto the error taxonomy.

    Contract logic patterns are checked first: an ``InvalidNonce`` custom
    error from the coordinator is about the mined task nonce, not the
    account nonce.
    """
    haystack = message.lower()

    pattern = _first_match(haystack, _CONTRACT_LOGIC_PATTERNS)
    if pattern is not None:
        return ChainErrorClassification(ContractLogicError, "contract_logic", pattern)

    pattern = _first_match(haystack, _NONCE_PATTERNS)
    if pattern is not None:
        return ChainErrorClassification(NonceError, "nonce", pattern)

    pattern = _first_match(haystack, _UNDERPRICED_PATTERNS)
    if pattern is not None:
        return ChainErrorClassification(UnderpricedError, "underpriced", pattern)

    pattern = _first_match(haystack, _TRANSIENT_PATTERNS)
    if pattern is not None:
        return ChainErrorClassification(SubmissionError, "transient", pattern)

    return ChainErrorClassification(ContractLogicError, "fallback_contract_logic", None)


def chain_error(message: str) -> SubmissionError:
    classification = classify_chain_error(message)
    return classification.error_cls(message)


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
