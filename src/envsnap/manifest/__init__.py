"""Environment manifest APIs."""

from .io import (
    ManifestWriter,
    manifest_entries,
    parse_manifest,
    read_manifest,
    serialize_manifest,
    store_path,
    write_manifest,
)

__all__ = [
    "ManifestWriter",
    "manifest_entries",
    "parse_manifest",
    "read_manifest",
    "serialize_manifest",
    "store_path",
    "write_manifest",
]
