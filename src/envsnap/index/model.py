"""In-memory package index built from one or more snapshots."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from envsnap.errors import ConflictError, NotFoundError
from envsnap.models import PackageMetadata


class PackageIndex:
    """Mapping from package name to the versions a snapshot provides."""

    def __init__(self, packages: Iterable[PackageMetadata] = (), *, source: str = "") -> None:
        self.source = source
        self._packages: dict[str, dict[str, PackageMetadata]] = {}
        for package in packages:
            self._add(package)

    @classmethod
    def merge(cls, *indexes: PackageIndex) -> PackageIndex:
        """Combine indexes; an identical ``name@version`` appearing twice collapses."""
        sources = [index.source for index in indexes if index.source]
        merged = cls(source=", ".join(sources))
        for index in indexes:
            for package in index:
                merged._add(package)
        return merged

    def lookup(self, name: str, version: str | None = None) -> PackageMetadata:
        candidates = self._packages.get(name)
        if not candidates:
            raise NotFoundError(name, context={"index": self.source})
        if version is not None:
            package = candidates.get(version)
            if package is None:
                raise NotFoundError(
                    name,
                    message=f"Package `{name}@{version}` was not found in the package index.",
                    hint=f"Available versions: {', '.join(sorted(candidates))}.",
                    context={"version": version, "index": self.source},
                )
            return package
        if len(candidates) > 1:
            raise ConflictError(
                name,
                tuple(sorted(candidates)),
                message=f"Package `{name}` is ambiguous; the index provides several versions.",
                hint=f"Request a specific version, e.g. `{name}@{min(candidates)}`.",
                context={"index": self.source},
            )
        return next(iter(candidates.values()))

    def versions(self, name: str) -> tuple[str, ...]:
        return tuple(sorted(self._packages.get(name, {})))

    def names(self) -> tuple[str, ...]:
        return tuple(sorted(self._packages))

    def packages(self) -> tuple[PackageMetadata, ...]:
        return tuple(self)

    def __iter__(self) -> Iterator[PackageMetadata]:
        for name in sorted(self._packages):
            versions = self._packages[name]
            for version in sorted(versions):
                yield versions[version]

    def __contains__(self, name: object) -> bool:
        return name in self._packages

    def __len__(self) -> int:
        return sum(len(versions) for versions in self._packages.values())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PackageIndex):
            return NotImplemented
        return self.packages() == other.packages()

    def __repr__(self) -> str:
        return f"PackageIndex(packages={len(self)}, source={self.source!r})"

    def _add(self, package: PackageMetadata) -> None:
        versions = self._packages.setdefault(package.name, {})
        existing = versions.get(package.version)
        if existing is None:
            versions[package.version] = package
            return
        if existing != package:
            raise ConflictError(
                package.name,
                (package.version,),
                message=f"Package `{package.identity}` is provided with different contents.",
                hint="Drop one of the sources or pin matching snapshots.",
                context={"expected": existing.sha256, "actual": package.sha256},
            )


__all__ = ["PackageIndex"]
