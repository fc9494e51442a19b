import json
import logging
from enum import Enum

from tenacity import (Retrying, before_sleep_log, retry_if_exception,
                      stop_after_attempt, wait_exponential)

from oracle_node.errors import EncodeError, NoUploadCredential, OracleError
from oracle_node.model import EncodedPayload, is_hex_id
from oracle_node.storage import ArweaveStorage, hex_to_key

_logger = logging.getLogger(__name__)


class EncodeBranch(str, Enum):
    HexIdentifier = "hex_identifier"
    Inline = "inline"
    Upload = "upload"


def choose_branch(output: bytes, byte_threshold: int, hex_passthrough: bool = True) -> EncodeBranch:
    if hex_passthrough and len(output) == 64:
        try:
            text = output.decode("ascii")
        except UnicodeDecodeError:
            text = ""
        if is_hex_id(text):
            return EncodeBranch.HexIdentifier
    if len(output) <= byte_threshold:
        return EncodeBranch.Inline
    return EncodeBranch.Upload


class ResponseEncoder(object):
    def __init__(
        self,
        storage: ArweaveStorage,
        byte_threshold: int = 1024,
        hex_passthrough: bool = True,
        upload_attempts: int = 3,
    ) -> None:
        self._storage = storage
        self.byte_threshold = byte_threshold
        self.hex_passthrough = hex_passthrough
        self._upload_attempts = upload_attempts

    def encode(self, output: bytes) -> EncodedPayload:
        """Submission form of a generation output.

        Content-store ids pass through as their base64url key, small outputs
        go inline and the rest is uploaded.
        """
        branch = choose_branch(output, self.byte_threshold, self.hex_passthrough)

        if branch == EncodeBranch.HexIdentifier:
            key = hex_to_key(output.decode("ascii"))
            _logger.debug(f"Output is a content-store id, submitting {key}")
            return self._checked(EncodedPayload(payload=key.encode("ascii"), key=key))

        if branch == EncodeBranch.Inline:
            return EncodedPayload(payload=output, uploaded=False)

        if not self._storage.can_upload:
            raise NoUploadCredential(
                f"output of {len(output)}B exceeds {self.byte_threshold}B "
                "and no upload key is configured"
            )

        _logger.info(f"Uploading large ({len(output)}B > {self.byte_threshold}B) output")
        key = self._upload(output)
        return self._checked(EncodedPayload(payload=key.encode("ascii"), uploaded=True, key=key))

    def raw(self, output: bytes) -> EncodedPayload:
        return EncodedPayload(payload=output)

    def encode_metadata(self, metadata: bytes) -> bytes:
        """Inline metadata, or a ``{"arweave": key}`` pointer once it is too large."""
        if len(metadata) <= self.byte_threshold:
            return metadata
        if not self._storage.can_upload:
            raise NoUploadCredential(
                f"metadata of {len(metadata)}B exceeds {self.byte_threshold}B "
                "and no upload key is configured"
            )
        _logger.info(f"Uploading large ({len(metadata)}B) metadata")
        key = self._upload(metadata)
        return json.dumps({"arweave": key}).encode("utf-8")

    def _upload(self, data: bytes) -> str:
        for attempt in Retrying(
            retry=retry_if_exception(_is_retryable),
            stop=stop_after_attempt(self._upload_attempts),
            wait=wait_exponential(multiplier=0.5, max=5),
            before_sleep=before_sleep_log(_logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                key = self._storage.put(data)
        return key

    def _checked(self, payload: EncodedPayload) -> EncodedPayload:
        if len(payload.payload) > self.byte_threshold:
            raise EncodeError(
                f"content-store id of {len(payload.payload)}B exceeds the "
                f"{self.byte_threshold}B threshold"
            )
        return payload


def _is_retryable(e: BaseException) -> bool:
    return isinstance(e, OracleError) and e.retryable
