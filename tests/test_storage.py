import allure
import pytest
import requests

from oracle_node.config import ProxyConfig
from oracle_node.errors import FetchError, NoUploadCredential, StorageError
from oracle_node.model import FailureKind
from oracle_node.proxy import get_requests_proxy_url, make_session
from oracle_node.storage import (ArweaveStorage, hex_to_key, key_to_hex,
                                 normalize_key)

pytestmark = [
    allure.epic("Oracle Node"),
    allure.feature("Content Store"),
]


class _Response(object):
    def __init__(self, status_code: int, content: bytes = b"", json_body=None) -> None:
        self.status_code = status_code
        self.content = content
        self._json = json_body

    def json(self):
        if self._json is None:
            raise ValueError("no json")
        return self._json


class _Session(object):
    def __init__(self, response: _Response | None = None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls = []

    def _respond(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response

    def get(self, url, **kwargs):
        return self._respond("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._respond("POST", url, **kwargs)


def _storage(session: _Session, upload_key: str | None = "secret") -> ArweaveStorage:
    return ArweaveStorage(
        "https://arweave.test/", "https://bundler.test", upload_key=upload_key, session=session
    )


def test_key_forms_round_trip() -> None:
    hex_id = "00ff" * 16
    key = hex_to_key(hex_id)
    assert "=" not in key
    assert key_to_hex(key) == hex_id
    assert normalize_key(hex_id) == key
    assert normalize_key(key) == key


def test_get_downloads_by_canonical_key() -> None:
    session = _Session(_Response(200, content=b"data"))
    hex_id = "ab" * 32

    assert _storage(session).get(hex_id) == b"data"
    assert session.calls[0][1] == f"https://arweave.test/{hex_to_key(hex_id)}"


@pytest.mark.parametrize(
    "session",
    [_Session(_Response(404)), _Session(error=requests.ConnectionError("refused"))],
)
def test_get_failure_is_fatal_input(session) -> None:
    with pytest.raises(FetchError) as exc_info:
        _storage(session).get("key")
    assert exc_info.value.kind == FailureKind.FatalInput


def test_put_returns_uploaded_key() -> None:
    session = _Session(_Response(200, json_body={"id": "tx-id"}))

    assert _storage(session).put(b"payload") == "tx-id"
    method, url, kwargs = session.calls[0]
    assert (method, url) == ("POST", "https://bundler.test/tx")
    assert kwargs["headers"]["Authorization"] == "Bearer secret"


def test_put_without_key() -> None:
    session = _Session(_Response(200, json_body={"id": "tx-id"}))
    storage = _storage(session, upload_key=None)
    assert not storage.can_upload
    with pytest.raises(NoUploadCredential):
        storage.put(b"payload")
    assert session.calls == []


def test_put_error_classification() -> None:
    with pytest.raises(StorageError) as exc_info:
        _storage(_Session(_Response(503))).put(b"p")
    assert exc_info.value.retryable

    with pytest.raises(NoUploadCredential):
        _storage(_Session(_Response(401))).put(b"p")

    with pytest.raises(StorageError) as exc_info:
        _storage(_Session(_Response(413))).put(b"p")
    assert not exc_info.value.retryable


def test_proxy_url() -> None:
    assert get_requests_proxy_url(None) is None
    assert get_requests_proxy_url(ProxyConfig(host="")) is None
    proxy = ProxyConfig(host="http://proxy.local", port=3128, username="u", password="p")
    assert get_requests_proxy_url(proxy) == "http://u:p@proxy.local:3128"
    assert make_session(proxy).proxies["https"] == "http://u:p@proxy.local:3128"
