import json
import logging
import time
from contextlib import contextmanager
from typing import List

import requests
import websockets.sync.client
from eth_account import Account
from web3 import Web3
from web3.exceptions import (ContractCustomError, ContractLogicError,
                             TimeExhausted, Web3Exception)
from websockets.exceptions import ConnectionClosed

from oracle_node.config import ChainConfig
from oracle_node.errors import (ChainError, ConfigurationError, IngestError,
                                SubmissionError, chain_error)
from oracle_node.errors import ContractLogicError as ContractRejected
from oracle_node.model import (ChainTaskStatus, FailureKind, OracleKind,
                               ResponsePayload, StatusEvent)

from .abi import COORDINATOR_ABI, REGISTRY_ABI
from .client import ChainClient, ChainResponse, EventSubscription, TaskRequest
from .pow import mine_nonce

_logger = logging.getLogger(__name__)

STATUS_UPDATE_TOPIC = Web3.keccak(text="StatusUpdate(uint256,bytes32,uint8,uint8)").hex()


def bytes32_to_string(value: bytes) -> str:
    return value.rstrip(b"\0").decode("utf-8", errors="replace")


def parse_models(value: bytes) -> List[str]:
    return [m.strip() for m in value.decode("utf-8", errors="replace").split(",") if m.strip()]


def _hex_to_int(value) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16)


def _to_response(raw) -> ChainResponse:
    responder, nonce, score, output, metadata = raw
    return ChainResponse(
        responder=responder, nonce=nonce, score=score, output=output, metadata=metadata
    )


def decode_status_log(log: dict) -> StatusEvent:
    """Decode a raw ``eth_subscription`` log of the StatusUpdate event."""
    topics = log["topics"]
    data = bytes.fromhex(log["data"].removeprefix("0x"))
    protocol = bytes.fromhex(topics[2].removeprefix("0x"))
    return StatusEvent(
        task_id=_hex_to_int(topics[1]),
        protocol=bytes32_to_string(protocol),
        status_before=ChainTaskStatus(int.from_bytes(data[0:32], "big")),
        status_after=ChainTaskStatus(int.from_bytes(data[32:64], "big")),
        block_number=_hex_to_int(log["blockNumber"]),
        tx_hash=log.get("transactionHash", ""),
    )


@contextmanager
def _rpc(what: str):
    try:
        yield
    except (ContractLogicError, ContractCustomError) as e:
        raise ChainError(f"{what} reverted: {e}", kind=FailureKind.FatalInput) from e
    except (Web3Exception, OSError, ValueError) as e:
        raise ChainError(f"{what} failed: {e}") from e


class WebsocketSubscription(EventSubscription):
    def __init__(self, ws_url: str, coordinator_address: str) -> None:
        self._ws = websockets.sync.client.connect(ws_url)
        request = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "eth_subscribe",
            "params": [
                "logs",
                {"address": coordinator_address, "topics": [_prefixed(STATUS_UPDATE_TOPIC)]},
            ],
        }
        self._ws.send(json.dumps(request))
        raw = self._ws.recv(10)
        reply = json.loads(raw)
        if "result" not in reply:
            self._ws.close()
            raise IngestError(f"eth_subscribe failed: {reply.get('error')}")
        self._subscription_id = reply["result"]
        _logger.info(f"Subscribed to coordinator events ({self._subscription_id})")

    def recv(self, timeout: float) -> StatusEvent | None:
        try:
            raw = self._ws.recv(timeout)
        except TimeoutError:
            return None
        except ConnectionClosed as e:
            raise IngestError(f"subscription closed: {e}") from e

        message = json.loads(raw)
        params = message.get("params") or {}
        if params.get("subscription") != self._subscription_id:
            return None
        log = params["result"]
        if log.get("removed"):
            _logger.warning(f"Ignoring removed log at block {log.get('blockNumber')}")
            return None
        return decode_status_log(log)

    def close(self):
        self._ws.close()


class PollingSubscription(EventSubscription):
    """Polls new blocks over HTTP when no websocket endpoint is configured."""

    def __init__(self, client: "Web3ChainClient", poll_interval: float) -> None:
        self._client = client
        self._poll_interval = poll_interval
        self._next_block = client.get_block_number() + 1
        self._buffer: List[StatusEvent] = []

    def recv(self, timeout: float) -> StatusEvent | None:
        deadline = time.monotonic() + timeout
        while len(self._buffer) == 0:
            try:
                head = self._client.get_block_number()
                if head >= self._next_block:
                    self._buffer = self._client.get_status_events(self._next_block, head)
                    self._next_block = head + 1
            except ChainError as e:
                raise IngestError(f"polling failed: {e}", cursor=self._next_block) from e
            if len(self._buffer) > 0:
                break
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            time.sleep(min(self._poll_interval, remaining))
        return self._buffer.pop(0)

    def close(self):
        self._buffer = []


def _prefixed(value: str) -> str:
    return value if value.startswith("0x") else f"0x{value}"


class Web3ChainClient(ChainClient):
    def __init__(self, config: ChainConfig) -> None:
        if config.coordinator_address == "":
            raise ConfigurationError("coordinator address is not configured")
        if config.secret_key == "":
            raise ConfigurationError("secret key is not configured")

        self._config = config
        self._w3 = Web3(Web3.HTTPProvider(config.rpc_url))
        self._account = Account.from_key(config.secret_key)
        self._coordinator = self._w3.eth.contract(
            address=Web3.to_checksum_address(config.coordinator_address),
            abi=COORDINATOR_ABI,
        )
        self._registry = None
        self._chain_id: int | None = None

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = self._w3.eth.chain_id
        return self._chain_id

    def _registry_contract(self):
        if self._registry is None:
            registry_address = self._coordinator.functions.registry().call()
            self._registry = self._w3.eth.contract(address=registry_address, abi=REGISTRY_ABI)
        return self._registry

    def get_block_number(self) -> int:
        with _rpc("eth_blockNumber"):
            return self._w3.eth.block_number

    def get_status_events(self, from_block: int, to_block: int) -> List[StatusEvent]:
        with _rpc(f"get_logs [{from_block}, {to_block}]"):
            logs = self._coordinator.events.StatusUpdate.get_logs(
                from_block=from_block, to_block=to_block
            )
        events = []
        for log in logs:
            tx_hash = log["transactionHash"]
            events.append(
                StatusEvent(
                    task_id=log["args"]["taskId"],
                    protocol=bytes32_to_string(log["args"]["protocol"]),
                    status_before=ChainTaskStatus(log["args"]["statusBefore"]),
                    status_after=ChainTaskStatus(log["args"]["statusAfter"]),
                    block_number=log["blockNumber"],
                    tx_hash=tx_hash.hex() if isinstance(tx_hash, bytes) else str(tx_hash),
                )
            )
        return events

    def subscribe(self) -> EventSubscription:
        if self._config.ws_url:
            try:
                return WebsocketSubscription(self._config.ws_url, self._coordinator.address)
            except (OSError, ValueError) as e:
                raise IngestError(f"cannot connect to {self._config.ws_url}: {e}") from e
        with _rpc("eth_blockNumber"):
            return PollingSubscription(self, self._config.poll_interval)

    def get_task_request(self, task_id: int) -> TaskRequest:
        with _rpc(f"requests({task_id})"):
            (
                requester,
                protocol,
                parameters,
                status,
                _generator_fee,
                _validator_fee,
                _platform_fee,
                input_bytes,
                models,
            ) = self._coordinator.functions.requests(task_id).call()
        return TaskRequest(
            task_id=task_id,
            requester=requester,
            status=ChainTaskStatus(status),
            protocol=bytes32_to_string(protocol),
            input=input_bytes,
            models=parse_models(models),
            difficulty=parameters[0],
        )

    def get_responses(self, task_id: int) -> List[ChainResponse]:
        with _rpc(f"getResponses({task_id})"):
            responses = self._coordinator.functions.getResponses(task_id).call()
        return [_to_response(r) for r in responses]

    def get_best_response(self, task_id: int) -> ChainResponse:
        with _rpc(f"getBestResponse({task_id})"):
            return _to_response(self._coordinator.functions.getBestResponse(task_id).call())

    def has_responded(self, task_id: int, kind: OracleKind) -> bool:
        responses = self.get_responses(task_id)
        if any(r.responder == self.address for r in responses):
            return True
        if kind == OracleKind.Validator:
            with _rpc(f"getValidations({task_id})"):
                validations = self._coordinator.functions.getValidations(task_id).call()
            return any(v[0] == self.address for v in validations)
        return False

    def is_registered(self, kind: OracleKind) -> bool:
        with _rpc("isRegistered"):
            return self._registry_contract().functions.isRegistered(
                self.address, kind.to_chain()
            ).call()

    def get_nonce(self) -> int:
        with _rpc("eth_getTransactionCount"):
            return self._w3.eth.get_transaction_count(self.address, "pending")

    def send_response(
        self,
        request: TaskRequest,
        kind: OracleKind,
        response: ResponsePayload,
        nonce: int,
        gas_price_hike: int = 0,
    ) -> str:
        pow_nonce = mine_nonce(
            request.difficulty, request.requester, self.address, request.input, request.task_id
        )
        if kind == OracleKind.Generator:
            call = self._coordinator.functions.respond(
                request.task_id, pow_nonce, response.output, response.metadata
            )
        else:
            call = self._coordinator.functions.validate(
                request.task_id, pow_nonce, list(response.scores), response.metadata
            )

        try:
            gas_price = self._w3.eth.gas_price
            gas_price += (gas_price // 100) * gas_price_hike
            tx = call.build_transaction(
                {
                    "from": self.address,
                    "nonce": nonce,
                    "gasPrice": gas_price,
                    "chainId": self.chain_id,
                }
            )
            signed = self._account.sign_transaction(tx)
            tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
        except (ContractLogicError, ContractCustomError) as e:
            raise ContractRejected(f"execution reverted: {e}") from e
        except requests.RequestException as e:
            raise SubmissionError(f"rpc transport error: {e}") from e
        except (Web3Exception, ValueError, OSError) as e:
            raise chain_error(str(e)) from e

        return _prefixed(tx_hash.hex())

    def wait_for_receipt(self, tx_hash: str, timeout: float) -> None:
        _logger.info(f"Waiting for tx: {tx_hash}")
        try:
            receipt = self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except TimeExhausted as e:
            raise SubmissionError(f"receipt timeout for {tx_hash}") from e
        except requests.RequestException as e:
            raise SubmissionError(f"rpc transport error: {e}") from e
        except (Web3Exception, OSError) as e:
            raise chain_error(str(e)) from e
        if receipt["status"] != 1:
            raise ContractRejected(f"transaction {tx_hash} reverted")
