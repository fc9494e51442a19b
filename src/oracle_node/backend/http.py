import logging
import threading

import requests

from oracle_node.config import BackendConfig, ProxyConfig
from oracle_node.errors import ExecutionCancelled
from oracle_node.proxy import make_session

from .base import (ComputationBackend, ExecutionRequest, MalformedRequest,
                   NoModelAvailable, ProviderError)

_logger = logging.getLogger(__name__)


class HTTPBackend(ComputationBackend):
    """Runs workflows on a remote executor service.

    The executor answers ``POST /execute`` with ``{"result": str}`` or, on
    failure, ``{"error": "no_model" | "malformed" | "provider", "message": str}``.
    """

    def __init__(self, url: str, timeout: float = 300, session: requests.Session | None = None):
        self.url = url.rstrip("/")
        self.timeout = timeout
        self._session = session if session is not None else requests.Session()

    @classmethod
    def from_config(cls, config: BackendConfig, proxy: ProxyConfig | None = None):
        return cls(config.url, timeout=config.timeout, session=make_session(proxy))

    def execute(self, request: ExecutionRequest, cancel: threading.Event) -> str:
        if cancel.is_set():
            raise ExecutionCancelled(f"task {request.task_id} cancelled before start")

        try:
            resp = self._session.post(
                f"{self.url}/execute",
                data=request.model_dump_json(),
                headers={"Content-Type": "application/json"},
                timeout=min(self.timeout, request.timeout + 5),
            )
        except requests.RequestException as e:
            raise ProviderError(f"executor unreachable: {e}") from e

        if resp.status_code == 200:
            try:
                return resp.json()["result"]
            except (ValueError, KeyError, TypeError) as e:
                raise MalformedRequest("executor returned no result") from e

        try:
            body = resp.json()
            error, message = body.get("error", ""), body.get("message", "")
        except ValueError:
            error, message = "", resp.text

        _logger.debug(f"executor error for task {request.task_id}: {resp.status_code} {error} {message}")
        if error == "no_model":
            raise NoModelAvailable(message or "no model available")
        if error == "malformed":
            raise MalformedRequest(message or "malformed request")
        if error == "provider" or resp.status_code >= 500 or resp.status_code == 429:
            raise ProviderError(message or f"executor status {resp.status_code}")
        raise MalformedRequest(message or f"executor status {resp.status_code}")
