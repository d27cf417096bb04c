"""Snapshot parser: JSON documents and tar archives carrying ``packages.json``."""

from __future__ import annotations

import json
import tarfile
from pathlib import Path, PurePosixPath
from typing import Any

from envsnap.deadline import Deadline
from envsnap.errors import EnvsnapError, ParseError, ValidationError
from envsnap.index.model import PackageIndex
from envsnap.models import (
    PACKAGE_NAME_PATTERN,
    SHA256_PATTERN,
    VERSION_PATTERN,
    PackageMetadata,
    Requirement,
    Snapshot,
)

INDEX_FILENAME = "packages.json"
INDEX_FORMAT_VERSION = 1


def parse_snapshot(snapshot: Snapshot, *, deadline: Deadline | None = None) -> PackageIndex:
    """Parse *snapshot* into a :class:`PackageIndex`. Pure and deterministic."""
    deadline = deadline or Deadline()
    context = {
        "operation": "parse",
        "source": snapshot.locator.describe(),
        "sha256": snapshot.sha256,
    }
    deadline.check(operation="parse", context=context)
    raw = _read_index_bytes(snapshot.path, deadline=deadline, context=context)
    deadline.check(operation="parse", context=context)
    return parse_index_payload(raw, source=snapshot.locator.describe(), context=context)


def parse_index_payload(
    raw: bytes,
    *,
    source: str = "",
    context: dict[str, str] | None = None,
) -> PackageIndex:
    context = dict(context or {})
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ParseError("Snapshot index is not valid JSON.", hint=str(exc), context=context) from exc

    if not isinstance(payload, dict):
        raise ParseError("Invalid snapshot index payload type.", context=context)
    version = payload.get("version")
    if not isinstance(version, int) or isinstance(version, bool):
        raise ParseError("Invalid snapshot index `version` value.", context=context)
    if version != INDEX_FORMAT_VERSION:
        raise ParseError(
            f"Unsupported snapshot index version {version}.",
            hint=f"Supported version: {INDEX_FORMAT_VERSION}.",
            context=context,
        )
    packages_raw = payload.get("packages")
    if not isinstance(packages_raw, list):
        raise ParseError("Invalid snapshot index `packages` value.", context=context)

    packages: list[PackageMetadata] = []
    seen: set[str] = set()
    for position, item in enumerate(packages_raw):
        package = _parse_package(item, position=position, context=context)
        if package.identity in seen:
            raise ParseError(
                f"Duplicate package entry `{package.identity}`.",
                context={**context, "position": str(position)},
            )
        seen.add(package.identity)
        packages.append(package)
    return PackageIndex(packages, source=source)


def _read_index_bytes(path: Path, *, deadline: Deadline, context: dict[str, str]) -> bytes:
    try:
        is_archive = tarfile.is_tarfile(path)
    except (tarfile.TarError, EOFError, OSError) as exc:
        raise ParseError("Snapshot is not readable.", hint=str(exc), context=context) from exc
    if not is_archive:
        try:
            return path.read_bytes()
        except OSError as exc:
            raise ParseError("Snapshot is not readable.", hint=str(exc), context=context) from exc

    try:
        with tarfile.open(path, mode="r:*") as archive:
            candidates: list[tarfile.TarInfo] = []
            for member in archive:
                deadline.check(operation="parse", context=context)
                if member.isfile() and PurePosixPath(member.name).name == INDEX_FILENAME:
                    candidates.append(member)
            if not candidates:
                raise ParseError(
                    f"Snapshot archive does not contain `{INDEX_FILENAME}`.",
                    context=context,
                )
            chosen = min(candidates, key=lambda item: (len(PurePosixPath(item.name).parts), item.name))
            handle = archive.extractfile(chosen)
            if handle is None:
                raise ParseError(f"Unable to read `{chosen.name}` from snapshot.", context=context)
            with handle:
                return handle.read()
    except EnvsnapError:
        raise
    except (tarfile.TarError, EOFError, OSError) as exc:
        raise ParseError("Snapshot archive is corrupt.", hint=str(exc), context=context) from exc


def _parse_package(item: Any, *, position: int, context: dict[str, str]) -> PackageMetadata:
    where = {**context, "position": str(position)}
    if not isinstance(item, dict):
        raise ParseError("Invalid package entry in snapshot index.", context=where)
    name = _required_str(item, "name", context=where)
    if not PACKAGE_NAME_PATTERN.fullmatch(name):
        raise ParseError(f"Invalid package name `{name}`.", context=where)
    where["package"] = name
    version = _required_str(item, "version", context=where)
    if not VERSION_PATTERN.fullmatch(version):
        raise ParseError(f"Invalid version `{version}` for `{name}`.", context=where)
    sha256 = _required_str(item, "sha256", context=where)
    if not SHA256_PATTERN.fullmatch(sha256):
        raise ParseError(f"Invalid sha256 for `{name}`.", context=where)

    dependencies_raw = item.get("dependencies", [])
    if not isinstance(dependencies_raw, list) or not all(
        isinstance(dep, str) for dep in dependencies_raw
    ):
        raise ParseError(f"Invalid dependency list for `{name}`.", context=where)
    for dependency in dependencies_raw:
        try:
            Requirement.parse(dependency)
        except ValidationError as exc:
            raise ParseError(exc.message, context=where) from exc
    return PackageMetadata(
        name=name,
        version=version,
        sha256=sha256,
        dependencies=frozenset(dependencies_raw),
    )


def _required_str(payload: dict[str, Any], key: str, *, context: dict[str, str]) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise ParseError(f"Invalid snapshot index `{key}` value.", context=context)
    return value
