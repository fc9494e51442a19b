from .client import ChainClient, ChainResponse, EventSubscription, TaskRequest
from .pow import mine_nonce
from .web3_client import Web3ChainClient

__all__ = [
    "ChainClient",
    "ChainResponse",
    "EventSubscription",
    "TaskRequest",
    "Web3ChainClient",
    "mine_nonce",
]
