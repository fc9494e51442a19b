from .base import (BackendError, ComputationBackend, ExecutionRequest,
                   MalformedRequest, NoModelAvailable, ProviderError)
from .http import HTTPBackend
from .mock import MockBackend
from .workflow import build_workflow

__all__ = [
    "BackendError",
    "ComputationBackend",
    "ExecutionRequest",
    "HTTPBackend",
    "MalformedRequest",
    "MockBackend",
    "NoModelAvailable",
    "ProviderError",
    "build_workflow",
]
