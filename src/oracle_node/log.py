import logging
import logging.handlers
import os

_FORMAT = "[{asctime}] [{levelname:<8}] {name}: {message}"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def init(
    log_dir: str,
    log_level: str = "INFO",
    log_filename: str = "oracle-node.log",
    log_stderr: bool = True,
):
    os.makedirs(log_dir, exist_ok=True)

    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT, style="{")

    file_handler = logging.handlers.RotatingFileHandler(
        os.path.join(log_dir, log_filename),
        maxBytes=50 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)

    root = logging.getLogger("oracle_node")
    root.setLevel(log_level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.addHandler(file_handler)

    if log_stderr:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)

    # web3 and urllib3 are chatty at DEBUG
    for name in ("web3", "urllib3", "websockets"):
        logging.getLogger(name).setLevel(logging.WARNING)
