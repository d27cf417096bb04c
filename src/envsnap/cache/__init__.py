"""Content-addressed cache APIs."""

from .keys import locator_key
from .store import SnapshotCache, sha256_file

__all__ = ["SnapshotCache", "locator_key", "sha256_file"]
