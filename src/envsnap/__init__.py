"""Public package entrypoint for the environment snapshot resolver."""

from .cache import SnapshotCache
from .deadline import Deadline
from .descriptor import Descriptor, load_descriptor, parse_descriptor
from .errors import (
    CancelledError,
    ConflictError,
    DescriptorError,
    EnvsnapError,
    ErrorCode,
    FetchError,
    IntegrityError,
    ManifestError,
    NotFoundError,
    OperationTimeoutError,
    ParseError,
    PolicyError,
    ValidationError,
    WriteError,
)
from .fetch import MutableRevisionWarning, SnapshotFetcher
from .index import PackageIndex, parse_snapshot
from .manifest import ManifestWriter, read_manifest, write_manifest
from .models import (
    EnvironmentManifest,
    ManifestEntry,
    PackageMetadata,
    Requirement,
    ResolvedEnvironment,
    Snapshot,
    SourceLocator,
    Stage,
)
from .observability import StructuredLogger
from .pipeline import Pipeline
from .policy import Policy
from .resolver import resolve

__all__ = [
    "CancelledError",
    "ConflictError",
    "Deadline",
    "Descriptor",
    "DescriptorError",
    "EnvironmentManifest",
    "EnvsnapError",
    "ErrorCode",
    "FetchError",
    "IntegrityError",
    "ManifestEntry",
    "ManifestError",
    "ManifestWriter",
    "MutableRevisionWarning",
    "NotFoundError",
    "OperationTimeoutError",
    "PackageIndex",
    "PackageMetadata",
    "ParseError",
    "Pipeline",
    "Policy",
    "PolicyError",
    "Requirement",
    "ResolvedEnvironment",
    "Snapshot",
    "SnapshotCache",
    "SnapshotFetcher",
    "SourceLocator",
    "Stage",
    "StructuredLogger",
    "ValidationError",
    "WriteError",
    "load_descriptor",
    "parse_descriptor",
    "parse_snapshot",
    "read_manifest",
    "resolve",
    "write_manifest",
]
