"""Package index model and snapshot parser."""

from .model import PackageIndex
from .parse import INDEX_FILENAME, INDEX_FORMAT_VERSION, parse_index_payload, parse_snapshot

__all__ = [
    "INDEX_FILENAME",
    "INDEX_FORMAT_VERSION",
    "PackageIndex",
    "parse_index_payload",
    "parse_snapshot",
]
