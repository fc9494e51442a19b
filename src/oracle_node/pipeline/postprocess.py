import json
import logging
import re
from abc import ABC, abstractmethod
from typing import List

from eth_abi import encode
from pydantic import BaseModel, ConfigDict
from web3 import Web3

from oracle_node.errors import ExecutionError

_logger = logging.getLogger(__name__)

_ADDRESS = re.compile(r"(0x)?[0-9a-fA-F]{40}")


class PostProcessed(BaseModel):
    model_config = ConfigDict(frozen=True)

    output: bytes
    metadata: bytes = b""
    # whether a large output may be moved to the content store
    use_storage: bool = True


class PostProcessor(ABC):
    protocol: str = ""

    @abstractmethod
    def post_process(self, output: str) -> PostProcessed: ...


class IdentityPostProcessor(PostProcessor):
    def post_process(self, output: str) -> PostProcessed:
        return PostProcessed(output=output.encode("utf-8"))


class SwanPurchasePostProcessor(PostProcessor):
    """Turns a purchase list into an ABI encoded ``address[]``.

    The list sits between the start and end markers, either as a JSON array
    of strings or one address per line. Entries that are not addresses are
    dropped with a warning. The full output is kept as metadata.
    """

    protocol = "swan-agent-purchase"

    def __init__(self, start_marker: str = "<shop_list>", end_marker: str = "</shop_list>") -> None:
        self.start_marker = start_marker
        self.end_marker = end_marker

    def post_process(self, output: str) -> PostProcessed:
        start = output.find(self.start_marker)
        end = -1
        if start != -1:
            start += len(self.start_marker)
            end = output.find(self.end_marker, start)
        if start == -1 or end == -1:
            raise ExecutionError(
                f"could not find {self.start_marker} ~ {self.end_marker} in output"
            )

        addresses = [Web3.to_checksum_address(a) for a in self.shopping_list(output[start:end])]
        _logger.debug(f"Purchase list holds {len(addresses)} addresses")
        return PostProcessed(
            output=encode(["address[]"], [addresses]),
            metadata=output.encode("utf-8"),
            use_storage=False,
        )

    @staticmethod
    def shopping_list(region: str) -> List[str]:
        try:
            items = json.loads(region)
        except ValueError:
            items = None
        if not (isinstance(items, list) and all(isinstance(i, str) for i in items)):
            items = [line.strip() for line in region.splitlines() if line.strip()]

        addresses = []
        for item in items:
            item = item.strip()
            if _ADDRESS.fullmatch(item) is None:
                _logger.warning(f"Could not parse address from {item!r}")
                continue
            if not item.startswith("0x"):
                item = "0x" + item
            addresses.append(item)
        return addresses


_POST_PROCESSORS = {SwanPurchasePostProcessor.protocol: SwanPurchasePostProcessor}


def post_processor_for(protocol: str) -> PostProcessor:
    """Post-processor keyed by the protocol name before its ``/version``."""
    name = protocol.split("/")[0]
    cls = _POST_PROCESSORS.get(name)
    if cls is None:
        return IdentityPostProcessor()
    return cls()
