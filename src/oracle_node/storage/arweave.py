import base64
import logging

import requests

from oracle_node.config import ProxyConfig, StorageConfig
from oracle_node.errors import FetchError, NoUploadCredential, StorageError
from oracle_node.model import FailureKind, is_hex_id
from oracle_node.proxy import make_session

_logger = logging.getLogger(__name__)


def hex_to_key(hex_id: str) -> str:
    """Hex content-store id to its canonical unpadded base64url form."""
    raw = bytes.fromhex(hex_id)
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def key_to_hex(key: str) -> str:
    padded = key + "=" * (-len(key) % 4)
    return base64.urlsafe_b64decode(padded).hex()


def normalize_key(key: str) -> str:
    if is_hex_id(key):
        return hex_to_key(key)
    return key


class ArweaveStorage(object):
    """Content store client.

    ``get`` downloads from the gateway, ``put`` uploads through the bundler
    and needs an upload key; a read-only client can still download.
    """

    def __init__(
        self,
        download_base_url: str,
        upload_base_url: str,
        upload_key: str | None = None,
        timeout: float = 30,
        session: requests.Session | None = None,
    ) -> None:
        self.download_base_url = download_base_url.rstrip("/")
        self.upload_base_url = upload_base_url.rstrip("/")
        self.upload_key = upload_key
        self.timeout = timeout
        self._session = session if session is not None else requests.Session()

    @classmethod
    def from_config(
        cls, config: StorageConfig, proxy: ProxyConfig | None = None
    ) -> "ArweaveStorage":
        return cls(
            download_base_url=config.download_base_url,
            upload_base_url=config.upload_base_url,
            upload_key=config.upload_key or None,
            timeout=config.timeout,
            session=make_session(proxy),
        )

    @property
    def can_upload(self) -> bool:
        return bool(self.upload_key)

    def get(self, key: str) -> bytes:
        url = f"{self.download_base_url}/{normalize_key(key)}"
        _logger.debug(f"Fetching from content store: {url}")
        try:
            resp = self._session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise FetchError(f"could not fetch {key}: {e}") from e
        if resp.status_code != 200:
            raise FetchError(f"could not fetch {key}: status {resp.status_code}")
        return resp.content

    def put(self, value: bytes) -> str:
        if not self.can_upload:
            raise NoUploadCredential("content store upload key is not configured")

        url = f"{self.upload_base_url}/tx"
        try:
            resp = self._session.post(
                url,
                data=value,
                headers={
                    "Authorization": f"Bearer {self.upload_key}",
                    "Content-Type": "application/octet-stream",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise StorageError(f"upload failed: {e}") from e

        if resp.status_code >= 500 or resp.status_code == 429:
            raise StorageError(f"upload failed: status {resp.status_code}")
        if resp.status_code in (401, 403):
            raise NoUploadCredential(f"upload key rejected: status {resp.status_code}")
        if resp.status_code not in (200, 201):
            raise StorageError(
                f"upload rejected: status {resp.status_code}",
                kind=FailureKind.FatalInput,
            )

        try:
            tx_id = resp.json()["id"]
        except (ValueError, KeyError, TypeError) as e:
            raise StorageError("upload response has no id") from e

        key = normalize_key(tx_id)
        _logger.info(f"Uploaded {len(value)} bytes at {self.download_base_url}/{key}")
        return key
