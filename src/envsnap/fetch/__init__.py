"""Snapshot fetching with integrity verification and caching."""

from .http import MutableRevisionWarning, SnapshotFetcher

__all__ = ["MutableRevisionWarning", "SnapshotFetcher"]
