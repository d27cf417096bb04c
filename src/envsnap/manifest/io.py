"""Environment manifest serializer, atomic writer, and parser."""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from envsnap.errors import ManifestError, ValidationError, WriteError
from envsnap.models import (
    SHA256_PATTERN,
    VERSION_PATTERN,
    EnvironmentManifest,
    ManifestEntry,
    PackageMetadata,
    ResolvedEnvironment,
)
from envsnap.resolver import check_closure

MANIFEST_MODE = 0o644


def store_path(package: PackageMetadata, *, store_root: str | Path) -> str:
    if not VERSION_PATTERN.fullmatch(package.version):
        raise ValidationError(
            f"Version `{package.version}` of `{package.name}` cannot be used in a store path.",
            context={"operation": "write_manifest", "package": package.name},
        )
    return str(Path(store_root) / f"{package.sha256}-{package.name}-{package.version}")


def manifest_entries(
    environment: ResolvedEnvironment,
    *,
    store_root: str | Path,
) -> tuple[ManifestEntry, ...]:
    return tuple(
        ManifestEntry(
            name=package.name,
            version=package.version,
            sha256=package.sha256,
            path=store_path(package, store_root=store_root),
        )
        for package in environment.packages
    )


def serialize_manifest(entries: tuple[ManifestEntry, ...]) -> str:
    lines = [
        json.dumps(
            {
                "name": entry.name,
                "version": entry.version,
                "content_hash": entry.sha256,
                "path": entry.path,
            },
            sort_keys=True,
        )
        for entry in entries
    ]
    return "\n".join(lines) + "\n"


def parse_manifest(raw: str, *, path: str | Path = "") -> EnvironmentManifest:
    context = {"path": str(path)}
    entries: list[ManifestEntry] = []
    for number, line in enumerate(raw.splitlines(), start=1):
        if not line.strip():
            continue
        where = {**context, "line": str(number)}
        try:
            record = json.loads(line)
        except json.JSONDecodeError as exc:
            raise ManifestError("Invalid manifest JSON.", hint=str(exc), context=where) from exc
        if not isinstance(record, dict):
            raise ManifestError("Invalid manifest record type.", context=where)
        entry = ManifestEntry(
            name=_required_str(record, "name", context=where),
            version=_required_str(record, "version", context=where),
            sha256=_required_str(record, "content_hash", context=where),
            path=_required_str(record, "path", context=where),
        )
        if not SHA256_PATTERN.fullmatch(entry.sha256):
            raise ManifestError("Invalid manifest `content_hash` value.", context=where)
        entries.append(entry)
    if not entries:
        raise ManifestError("Manifest has no entries.", context=context)
    names = [entry.name for entry in entries]
    if len(set(names)) != len(names):
        raise ManifestError("Manifest lists a package more than once.", context=context)
    return EnvironmentManifest(path=Path(path), entries=tuple(entries))


def read_manifest(path: str | Path) -> EnvironmentManifest:
    manifest_path = Path(path)
    try:
        raw = manifest_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ManifestError(
            "Manifest does not exist.",
            hint="Run `envsnap resolve` to materialize the environment first.",
            context={"path": str(manifest_path)},
        ) from exc
    except OSError as exc:
        raise ManifestError(
            "Manifest is not readable.",
            hint=str(exc),
            context={"path": str(manifest_path)},
        ) from exc
    return parse_manifest(raw, path=manifest_path)


def write_manifest(
    environment: ResolvedEnvironment,
    destination: str | Path,
    *,
    store_root: str | Path,
) -> EnvironmentManifest:
    """Commit the manifest for *environment* to *destination* atomically.

    Content goes to a temporary sibling first and is renamed over the
    destination only after it is flushed to disk, so readers see either the
    previous file or the complete new one.
    """
    if not environment.packages:
        raise ValidationError(
            "Refusing to write a manifest for an empty environment.",
            context={"operation": "write_manifest", "path": str(destination)},
        )
    check_closure(environment)
    manifest_path = Path(destination)
    entries = manifest_entries(environment, store_root=store_root)
    _atomic_write(manifest_path, serialize_manifest(entries))
    return EnvironmentManifest(path=manifest_path, entries=entries)


@dataclass(frozen=True, slots=True)
class ManifestWriter:
    store_root: Path

    def write(
        self,
        environment: ResolvedEnvironment,
        destination: str | Path,
    ) -> EnvironmentManifest:
        return write_manifest(environment, destination, store_root=self.store_root)


def _atomic_write(path: Path, content: str) -> None:
    context = {"operation": "write_manifest", "path": str(path)}
    if path.is_dir():
        raise WriteError("Manifest destination is a directory.", context=context)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    except OSError as exc:
        raise WriteError(
            "Manifest destination is unavailable.",
            hint=str(exc),
            context=context,
        ) from exc

    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(temp_path, MANIFEST_MODE)
        os.replace(temp_path, path)
    except OSError as exc:
        raise WriteError(
            "Failed to commit manifest.",
            hint=str(exc),
            context=context,
        ) from exc
    finally:
        temp_path.unlink(missing_ok=True)


def _required_str(payload: dict[str, Any], key: str, *, context: dict[str, str]) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise ManifestError(f"Invalid manifest `{key}` value.", context=context)
    return value
