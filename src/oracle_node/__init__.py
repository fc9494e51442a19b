from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _dist_version


def version() -> str:
    try:
        return _dist_version("oracle-node")
    except PackageNotFoundError:
        return "0.0.0"


__version__ = version()
