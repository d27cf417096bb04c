"""Dependency closure resolution against a package index."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable

from envsnap.errors import ConflictError, NotFoundError, ValidationError
from envsnap.index import PackageIndex
from envsnap.models import PackageMetadata, Requirement, ResolvedEnvironment
from envsnap.observability import StructuredLogger

REQUESTED_BY = "<request>"


def resolve(
    index: PackageIndex,
    requested: Iterable[str],
    *,
    logger: StructuredLogger | None = None,
) -> ResolvedEnvironment:
    """Resolve the transitive closure of *requested* breadth-first.

    A name reached twice at different versions fails with ``ConflictError``
    instead of picking one. An unpinned requirement on a name the index
    provides at several versions waits until the traversal is done; if no
    pinned requirement selected a version by then it is ambiguous and fails.
    """
    requirements = parse_requested(requested)
    selected: dict[str, PackageMetadata] = {}
    selected_by: dict[str, str] = {}
    deferred: list[tuple[Requirement, str]] = []
    queue: deque[tuple[Requirement, str]] = deque((item, REQUESTED_BY) for item in requirements)

    while queue:
        requirement, parent = queue.popleft()
        chosen = selected.get(requirement.name)
        if chosen is not None:
            if requirement.version is not None and requirement.version != chosen.version:
                if requirement.version not in index.versions(requirement.name):
                    try:
                        index.lookup(requirement.name, requirement.version)
                    except NotFoundError as exc:
                        exc.context.setdefault("required_by", parent)
                        raise
                raise ConflictError(
                    requirement.name,
                    (chosen.version, requirement.version),
                    hint="Pin a single version of the package across the environment.",
                    context={
                        "selected_by": selected_by[requirement.name],
                        "required_by": parent,
                    },
                )
            continue
        if requirement.version is None and len(index.versions(requirement.name)) > 1:
            deferred.append((requirement, parent))
            continue

        try:
            package = index.lookup(requirement.name, requirement.version)
        except NotFoundError as exc:
            exc.context.setdefault("required_by", parent)
            raise
        selected[package.name] = package
        selected_by[package.name] = parent
        if logger is not None:
            logger.log(
                operation="resolve",
                stage="resolving",
                package=package.identity,
                message="Selected package.",
                extra={"required_by": parent},
            )
        for dependency in package.requirements():
            queue.append((dependency, package.identity))

    for requirement, parent in deferred:
        if requirement.name not in selected:
            try:
                index.lookup(requirement.name)
            except ConflictError as exc:
                exc.context.setdefault("required_by", parent)
                raise

    environment = ResolvedEnvironment(packages=tuple(selected[name] for name in sorted(selected)))
    check_closure(environment)
    return environment


def parse_requested(requested: Iterable[str]) -> tuple[Requirement, ...]:
    if isinstance(requested, str):
        requested = [requested]
    items = sorted(set(requested))
    if not items:
        raise ValidationError(
            "At least one package must be requested.",
            context={"operation": "resolve"},
        )
    return tuple(Requirement.parse(item) for item in items)


def check_closure(environment: ResolvedEnvironment) -> None:
    """Verify that names are unique and every requirement is satisfied."""
    by_name: dict[str, PackageMetadata] = {}
    for package in environment.packages:
        if package.name in by_name:
            raise ValidationError(
                f"Resolved environment lists `{package.name}` more than once.",
                context={"operation": "check_closure", "package": package.name},
            )
        by_name[package.name] = package

    for package in environment.packages:
        for requirement in package.requirements():
            provided = by_name.get(requirement.name)
            if provided is None or not requirement.matches(provided):
                raise ValidationError(
                    f"Resolved environment is missing `{requirement}`.",
                    hint="Resolve the environment from the index instead of building it by hand.",
                    context={
                        "operation": "check_closure",
                        "package": package.identity,
                        "requirement": str(requirement),
                    },
                )


__all__ = ["check_closure", "parse_requested", "resolve"]
