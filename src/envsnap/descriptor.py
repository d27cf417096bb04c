"""Environment descriptor loading.

A descriptor names the pinned sources and the packages to provision::

    [[source]]
    url = "https://example.org/archive/{revision}.tar.gz"
    revision = "release-21.11"
    sha256 = "..."

    [environment]
    packages = ["flatbuffers"]
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from envsnap.errors import DescriptorError, ValidationError
from envsnap.models import Requirement, SourceLocator


@dataclass(frozen=True, slots=True)
class Descriptor:
    sources: tuple[SourceLocator, ...]
    packages: tuple[str, ...]
    path: Path | None = None


def parse_descriptor(raw: str, *, path: str | Path | None = None) -> Descriptor:
    context = {"path": str(path) if path is not None else ""}
    try:
        payload = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        raise DescriptorError("Invalid descriptor TOML.", hint=str(exc), context=context) from exc

    sources_raw = payload.get("source")
    if isinstance(sources_raw, dict):
        sources_raw = [sources_raw]
    if not isinstance(sources_raw, list) or not sources_raw:
        raise DescriptorError(
            "Descriptor must declare at least one [[source]] table.",
            context=context,
        )
    sources = tuple(
        _parse_source(item, position=position, context=context)
        for position, item in enumerate(sources_raw)
    )

    environment = payload.get("environment")
    if not isinstance(environment, dict):
        raise DescriptorError("Descriptor is missing the [environment] table.", context=context)
    packages = environment.get("packages")
    if not isinstance(packages, list) or not packages or not all(
        isinstance(item, str) for item in packages
    ):
        raise DescriptorError(
            "Invalid descriptor `environment.packages` value.",
            hint="List the package names to provision, e.g. packages = [\"flatbuffers\"].",
            context=context,
        )
    for item in packages:
        try:
            Requirement.parse(item)
        except ValidationError as exc:
            raise DescriptorError(exc.message, context=context) from exc

    return Descriptor(
        sources=sources,
        packages=tuple(packages),
        path=Path(path) if path is not None else None,
    )


def load_descriptor(path: str | Path) -> Descriptor:
    descriptor_path = Path(path)
    try:
        raw = descriptor_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise DescriptorError(
            "Descriptor is not readable.",
            hint=str(exc),
            context={"path": str(descriptor_path)},
        ) from exc
    return parse_descriptor(raw, path=descriptor_path)


def _parse_source(item: Any, *, position: int, context: dict[str, str]) -> SourceLocator:
    where = {**context, "source": str(position)}
    if not isinstance(item, dict):
        raise DescriptorError("Invalid [[source]] entry.", context=where)
    url = item.get("url")
    revision = item.get("revision")
    sha256 = item.get("sha256")
    if not isinstance(url, str) or not isinstance(revision, str):
        raise DescriptorError("Each [[source]] needs string `url` and `revision`.", context=where)
    if sha256 is not None and not isinstance(sha256, str):
        raise DescriptorError("Invalid [[source]] `sha256` value.", context=where)
    try:
        return SourceLocator(url=url, revision=revision, sha256=sha256 or None)
    except ValidationError as exc:
        raise DescriptorError(exc.message, hint=exc.hint, context={**where, **exc.context}) from exc


__all__ = ["Descriptor", "load_descriptor", "parse_descriptor"]
