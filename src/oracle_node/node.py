import logging
import signal
import threading
from typing import List

from oracle_node import version
from oracle_node.backend import ComputationBackend, HTTPBackend, MockBackend
from oracle_node.chain import Web3ChainClient
from oracle_node.config import Config, get_config
from oracle_node.model import OracleKind
from oracle_node.pipeline import RunReport, TaskProcessingEngine
from oracle_node.storage import ArweaveStorage

_logger = logging.getLogger(__name__)


def make_backend(config: Config) -> ComputationBackend:
    if config.backend.url == "":
        _logger.warning("No backend url configured, using the mock backend")
        return MockBackend()
    return HTTPBackend.from_config(config.backend, config.proxy)


def make_engine(
    config: Config | None = None, stop: threading.Event | None = None
) -> TaskProcessingEngine:
    if config is None:
        config = get_config()

    chain = Web3ChainClient(config.chain)
    storage = ArweaveStorage.from_config(config.storage, config.proxy)
    backend = make_backend(config)
    return TaskProcessingEngine(chain, storage, backend, config=config, stop=stop)


def serve(
    kinds: List[OracleKind] | None = None,
    models: List[str] | None = None,
    task_id: int | None = None,
    from_block: int | None = None,
    to_block: int | None = None,
    config: Config | None = None,
) -> RunReport:
    if config is None:
        config = get_config()

    _logger.info(f"Oracle node version: {version()}")

    engine = make_engine(config)

    def _signal_handle(*args):
        _logger.info("terminate oracle node")
        engine.stop()

    signal.signal(signal.SIGTERM, _signal_handle)
    signal.signal(signal.SIGINT, _signal_handle)

    engine.prepare(kinds, models)

    if task_id is not None:
        return engine.run_single(task_id)
    if from_block is not None and to_block is not None:
        return engine.run_bounded(from_block, to_block)
    return engine.run_continuous(from_block)
