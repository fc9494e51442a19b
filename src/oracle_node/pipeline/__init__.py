from .eligibility import Accept, Skip, eligible
from .encoder import EncodeBranch, ResponseEncoder, choose_branch
from .engine import RunReport, TaskProcessingEngine
from .ingestor import EventIngestor
from .postprocess import (IdentityPostProcessor, PostProcessed, PostProcessor,
                          SwanPurchasePostProcessor, post_processor_for)
from .preparer import ChatRequest, RequestPreparer, parse_chat_request
from .resolver import InputResolver
from .response import ResponseBuilder
from .scheduler import ExecutionScheduler
from .state import InvalidTransition, TaskStateTable
from .submission import SubmissionLedger, SubmissionManager
from .validation import ValidationResult, parse_validations

__all__ = [
    "Accept",
    "ChatRequest",
    "EncodeBranch",
    "EventIngestor",
    "ExecutionScheduler",
    "IdentityPostProcessor",
    "InputResolver",
    "InvalidTransition",
    "PostProcessed",
    "PostProcessor",
    "RequestPreparer",
    "ResponseBuilder",
    "ResponseEncoder",
    "RunReport",
    "Skip",
    "SubmissionLedger",
    "SubmissionManager",
    "SwanPurchasePostProcessor",
    "TaskProcessingEngine",
    "TaskStateTable",
    "ValidationResult",
    "choose_branch",
    "eligible",
    "parse_chat_request",
    "parse_validations",
    "post_processor_for",
]
