"""Append-only content-addressed snapshot store."""

from __future__ import annotations

import hashlib
import json
import os
import shutil
import tempfile
import time
from pathlib import Path

from envsnap.cache.keys import _to_payload, locator_key
from envsnap.errors import IntegrityError
from envsnap.models import SHA256_PATTERN, Snapshot, SourceLocator

_CHUNK_SIZE = 1 << 16
STALE_TEMP_SECONDS = 24 * 60 * 60


class SnapshotCache:
    """Snapshot blobs keyed by sha256, plus locator refs pointing at them.

    Entries are only ever added: a blob is promoted with ``os.replace`` once
    its digest is verified, so two writers racing on identical content both
    leave the same bytes behind. ``tmp/`` holds in-flight downloads and is
    never read as a cache entry.
    """

    def __init__(self, root: str | Path, *, stale_after: float = STALE_TEMP_SECONDS) -> None:
        self.root = Path(root)
        self.blobs = self.root / "blobs"
        self.refs = self.root / "refs"
        self.tmp = self.root / "tmp"
        for directory in (self.blobs, self.refs, self.tmp):
            directory.mkdir(parents=True, exist_ok=True)
        self.sweep_temp(older_than=stale_after)

    def lookup(self, locator: SourceLocator) -> Snapshot | None:
        # a declared hash addresses the blob directly; refs only pin unhashed locators
        digest = locator.sha256 or self._recorded_digest(locator)
        if digest is None:
            return None
        blob = self.blobs / digest
        if not blob.exists():
            return None
        _assert_hash_matches(blob, expected_sha256=digest, locator=locator)
        return Snapshot(locator=locator, path=blob, sha256=digest)

    def temp_file(self) -> Path:
        fd, name = tempfile.mkstemp(prefix="fetch-", suffix=".part", dir=self.tmp)
        os.close(fd)
        return Path(name)

    def promote(self, locator: SourceLocator, temp_path: Path, *, sha256: str) -> Snapshot:
        """Move a verified download into the blob store and record its ref."""
        blob = self.blobs / sha256
        if blob.exists():
            temp_path.unlink(missing_ok=True)
        else:
            os.replace(temp_path, blob)
        self._write_ref(locator, sha256)
        return Snapshot(locator=locator, path=blob, sha256=sha256)

    def sweep_temp(self, *, older_than: float) -> list[Path]:
        """Remove leftovers of interrupted downloads older than *older_than* seconds."""
        cutoff = time.time() - older_than
        removed: list[Path] = []
        for path in self.tmp.iterdir():
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed.append(path)
            except FileNotFoundError:
                # another process promoted or swept it first
                continue
        return removed

    def clear(self) -> None:
        for directory in (self.blobs, self.refs, self.tmp):
            shutil.rmtree(directory, ignore_errors=True)
            directory.mkdir(parents=True, exist_ok=True)

    def entries(self) -> list[str]:
        return sorted(path.name for path in self.blobs.iterdir() if path.is_file())

    def _recorded_digest(self, locator: SourceLocator) -> str | None:
        ref_path = self.refs / f"{locator_key(locator)}.json"
        if not ref_path.exists():
            return None
        try:
            parsed = json.loads(ref_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise IntegrityError(
                "Cache ref is not valid JSON.",
                hint="Clear the cache and refetch.",
                context={"operation": "cache_lookup", "path": str(ref_path)},
            ) from exc
        digest = parsed.get("sha256") if isinstance(parsed, dict) else None
        if not isinstance(digest, str) or not SHA256_PATTERN.fullmatch(digest):
            raise IntegrityError(
                "Cache ref has invalid structure.",
                hint="Clear the cache and refetch.",
                context={"operation": "cache_lookup", "path": str(ref_path)},
            )
        return digest

    def _write_ref(self, locator: SourceLocator, sha256: str) -> None:
        ref_path = self.refs / f"{locator_key(locator)}.json"
        payload = {**_to_payload(locator), "sha256": sha256}
        fd, name = tempfile.mkstemp(prefix="ref-", suffix=".part", dir=self.tmp)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(json.dumps(payload, indent=2, sort_keys=True) + "\n")
        os.replace(name, ref_path)


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _assert_hash_matches(path: Path, *, expected_sha256: str, locator: SourceLocator) -> None:
    actual_sha256 = sha256_file(path)
    if actual_sha256 != expected_sha256:
        raise IntegrityError(
            "Cached snapshot hash mismatch.",
            hint="Clear the cache and refetch with trusted inputs.",
            context={
                "operation": "cache_lookup",
                "source": locator.describe(),
                "path": str(path),
                "expected": expected_sha256,
                "actual": actual_sha256,
            },
        )
