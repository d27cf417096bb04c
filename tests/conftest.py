"""Shared test fixtures."""

from __future__ import annotations

import hashlib
import io
import json
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest

from envsnap.cache import SnapshotCache
from envsnap.fetch import SnapshotFetcher
from envsnap.models import SourceLocator
from envsnap.observability import StructuredLogger

COMMIT = "3c5ae9be1f18c790ea890ef8decbd0946c0b4c04"


@dataclass
class SnapshotFactory:
    """Write package-collection snapshots to disk and return pinned locators."""

    root: Path

    @staticmethod
    def package(name: str, version: str, *dependencies: str) -> dict[str, Any]:
        digest = hashlib.sha256(f"{name}-{version}".encode()).hexdigest()
        return {
            "name": name,
            "version": version,
            "sha256": digest,
            "dependencies": list(dependencies),
        }

    @staticmethod
    def index_bytes(packages: list[dict[str, Any]]) -> bytes:
        return json.dumps({"version": 1, "packages": packages}, sort_keys=True).encode("utf-8")

    def json_file(
        self,
        packages: list[dict[str, Any]],
        *,
        name: str = "packages.json",
    ) -> SourceLocator:
        return self.raw(self.index_bytes(packages), name=name)

    def archive(
        self,
        packages: list[dict[str, Any]],
        *,
        name: str = "snapshot.tar.gz",
        prefix: str = "collection-release-21.11",
    ) -> SourceLocator:
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
            _add_member(archive, f"{prefix}/README.md", b"package collection\n")
            _add_member(archive, f"{prefix}/packages.json", self.index_bytes(packages))
        return self.raw(buffer.getvalue(), name=name)

    def raw(self, payload: bytes, *, name: str) -> SourceLocator:
        path = self.root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)
        return SourceLocator(
            url=path.as_uri(),
            revision=COMMIT,
            sha256=hashlib.sha256(payload).hexdigest(),
        )


def _add_member(archive: tarfile.TarFile, name: str, payload: bytes) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(payload)
    info.mtime = 0
    archive.addfile(info, io.BytesIO(payload))


@pytest.fixture
def snapshots(tmp_path: Path) -> SnapshotFactory:
    return SnapshotFactory(root=tmp_path / "sources")


@pytest.fixture
def cache(tmp_path: Path) -> SnapshotCache:
    return SnapshotCache(tmp_path / "cache")


@pytest.fixture
def logger() -> StructuredLogger:
    return StructuredLogger()


@pytest.fixture
def fetcher(cache: SnapshotCache, logger: StructuredLogger) -> SnapshotFetcher:
    return SnapshotFetcher(cache, logger=logger)
