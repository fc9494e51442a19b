from web3 import Web3

MAX_UINT256 = 2**256 - 1


def pow_target(difficulty: int) -> int:
    return MAX_UINT256 >> difficulty


def pow_hash(requester: str, responder: str, input_bytes: bytes, task_id: int, nonce: int) -> int:
    digest = Web3.solidity_keccak(
        ["uint256", "bytes", "address", "address", "uint256"],
        [task_id, input_bytes, requester, responder, nonce],
    )
    return int.from_bytes(digest, "big")


def mine_nonce(
    difficulty: int, requester: str, responder: str, input_bytes: bytes, task_id: int
) -> int:
    """Smallest nonce whose hash is under the coordinator's difficulty target."""
    target = pow_target(difficulty)
    nonce = 0
    while pow_hash(requester, responder, input_bytes, task_id, nonce) > target:
        nonce += 1
    return nonce
