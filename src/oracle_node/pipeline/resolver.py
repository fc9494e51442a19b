import logging

from oracle_node.errors import FetchError
from oracle_node.model import InputDescriptor, ResolvedInput
from oracle_node.storage import ArweaveStorage

_logger = logging.getLogger(__name__)


class InputResolver(object):
    def __init__(self, storage: ArweaveStorage) -> None:
        self._storage = storage

    def resolve(self, descriptor: InputDescriptor) -> ResolvedInput:
        if descriptor.type == "inline":
            return ResolvedInput(content=descriptor.data, provenance="inline")

        assert descriptor.key is not None
        _logger.debug(f"Resolving remote input {descriptor.key}")
        content = self._storage.get(descriptor.key)
        try:
            content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FetchError(f"remote input {descriptor.key} is not valid utf-8") from e
        return ResolvedInput(content=content, provenance="fetched")
