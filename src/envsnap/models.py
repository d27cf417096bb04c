"""Core typed dataclasses for sources, snapshots, packages, and environments."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from .errors import ValidationError

SHA256_PATTERN = re.compile(r"^[0-9a-f]{64}$")
COMMIT_PATTERN = re.compile(r"^(?:[0-9a-f]{40}|[0-9a-f]{64})$")
PACKAGE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.+-]*$")
# versions become part of store path names
VERSION_PATTERN = re.compile(r"^[^@/\\\s]+$")

REVISION_PLACEHOLDER = "{revision}"


class Stage(StrEnum):
    """Pipeline lifecycle states."""

    IDLE = "idle"
    FETCHING = "fetching"
    INDEXING = "indexing"
    RESOLVING = "resolving"
    WRITING = "writing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class SourceLocator:
    """Pinned location of one immutable package-collection snapshot."""

    url: str
    revision: str
    sha256: str | None = None

    def __post_init__(self) -> None:
        if not self.url:
            raise ValidationError("Source locator requires a url.")
        if not self.revision:
            raise ValidationError(
                "Source locator requires a revision.",
                context={"url": self.url},
            )
        if self.sha256 is not None and not SHA256_PATTERN.fullmatch(self.sha256):
            raise ValidationError(
                "Source locator sha256 must be 64 lower-case hex characters.",
                context={"url": self.url, "sha256": self.sha256},
            )

    @property
    def resolved_url(self) -> str:
        return self.url.replace(REVISION_PLACEHOLDER, self.revision)

    @property
    def mutable_revision(self) -> bool:
        return not COMMIT_PATTERN.fullmatch(self.revision)

    def describe(self) -> str:
        return f"{self.resolved_url}#{self.revision}"


@dataclass(frozen=True, slots=True)
class Snapshot:
    locator: SourceLocator
    path: Path
    sha256: str

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()


@dataclass(frozen=True, slots=True)
class Requirement:
    """A dependency reference written as ``name`` or ``name@version``."""

    name: str
    version: str | None = None

    @classmethod
    def parse(cls, raw: str) -> Requirement:
        name, sep, version = raw.partition("@")
        valid_version = not sep or VERSION_PATTERN.fullmatch(version) is not None
        if not PACKAGE_NAME_PATTERN.fullmatch(name) or not valid_version:
            raise ValidationError(f"Invalid package requirement `{raw}`.")
        return cls(name=name, version=version or None)

    def matches(self, package: PackageMetadata) -> bool:
        if package.name != self.name:
            return False
        return self.version is None or package.version == self.version

    def __str__(self) -> str:
        return self.name if self.version is None else f"{self.name}@{self.version}"


@dataclass(frozen=True, slots=True)
class PackageMetadata:
    name: str
    version: str
    sha256: str
    dependencies: frozenset[str] = frozenset()

    @property
    def identity(self) -> str:
        return f"{self.name}@{self.version}"

    def requirements(self) -> tuple[Requirement, ...]:
        return tuple(Requirement.parse(item) for item in sorted(self.dependencies))


@dataclass(frozen=True, slots=True)
class ResolvedEnvironment:
    """Dependency-closed, conflict-free package set ordered by name."""

    packages: tuple[PackageMetadata, ...] = ()

    def names(self) -> tuple[str, ...]:
        return tuple(package.name for package in self.packages)

    def get(self, name: str) -> PackageMetadata | None:
        for package in self.packages:
            if package.name == name:
                return package
        return None

    def __len__(self) -> int:
        return len(self.packages)


@dataclass(frozen=True, slots=True)
class ManifestEntry:
    name: str
    version: str
    sha256: str
    path: str

    def triple(self) -> tuple[str, str, str]:
        return (self.name, self.version, self.sha256)


@dataclass(frozen=True, slots=True)
class EnvironmentManifest:
    path: Path
    entries: tuple[ManifestEntry, ...] = field(default_factory=tuple)

    def search_paths(self) -> tuple[str, ...]:
        """Return the ``bin`` directory of every entry, in manifest order."""
        return tuple(f"{entry.path}/bin" for entry in self.entries)

    def triples(self) -> tuple[tuple[str, str, str], ...]:
        return tuple(entry.triple() for entry in self.entries)


__all__ = [
    "COMMIT_PATTERN",
    "EnvironmentManifest",
    "ManifestEntry",
    "PACKAGE_NAME_PATTERN",
    "PackageMetadata",
    "Requirement",
    "ResolvedEnvironment",
    "SHA256_PATTERN",
    "Snapshot",
    "SourceLocator",
    "Stage",
    "VERSION_PATTERN",
]
