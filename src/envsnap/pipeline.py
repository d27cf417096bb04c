"""Single-pass provisioning pipeline: fetch, index, resolve, write."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Sequence
from pathlib import Path

from envsnap.deadline import Deadline
from envsnap.errors import EnvsnapError, ValidationError
from envsnap.fetch import SnapshotFetcher
from envsnap.index import PackageIndex, parse_snapshot
from envsnap.manifest import ManifestWriter
from envsnap.models import EnvironmentManifest, ResolvedEnvironment, SourceLocator, Stage
from envsnap.observability import StructuredLogger
from envsnap.resolver import resolve

_TRANSITIONS: dict[Stage, frozenset[Stage]] = {
    Stage.IDLE: frozenset({Stage.FETCHING, Stage.FAILED}),
    Stage.FETCHING: frozenset({Stage.INDEXING, Stage.FAILED}),
    Stage.INDEXING: frozenset({Stage.RESOLVING, Stage.FAILED}),
    Stage.RESOLVING: frozenset({Stage.WRITING, Stage.FAILED}),
    Stage.WRITING: frozenset({Stage.DONE, Stage.FAILED}),
    Stage.DONE: frozenset(),
    Stage.FAILED: frozenset(),
}


class Pipeline:
    """Explicit state machine over the four provisioning stages.

    ``run`` walks ``idle -> fetching -> indexing -> resolving -> writing ->
    done`` exactly once. The first error moves the pipeline to ``failed``,
    tags the error with the stage it happened in, and propagates it; the
    manifest destination is only touched by the final write.
    """

    def __init__(
        self,
        fetcher: SnapshotFetcher,
        *,
        store_root: str | Path,
        logger: StructuredLogger | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.writer = ManifestWriter(store_root=Path(store_root))
        self.logger = logger or fetcher.logger
        self.stage = Stage.IDLE
        self.history: list[Stage] = [Stage.IDLE]
        self.failed_stage: Stage | None = None
        self.index: PackageIndex | None = None
        self.environment: ResolvedEnvironment | None = None

    def run(
        self,
        locators: Sequence[SourceLocator],
        requested: Iterable[str],
        destination: str | Path,
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> EnvironmentManifest:
        if self.stage is not Stage.IDLE:
            raise ValidationError(
                "Pipeline has already run.",
                hint="Create a new Pipeline for each provisioning pass.",
                context={"stage": self.stage.value},
            )
        deadline = Deadline.after(timeout, cancel=cancel)
        try:
            if not locators:
                raise ValidationError("At least one source locator is required.")

            self._advance(Stage.FETCHING)
            snapshots = self.fetcher.fetch_many(locators, deadline=deadline)

            self._advance(Stage.INDEXING)
            indexes = [parse_snapshot(snapshot, deadline=deadline) for snapshot in snapshots]
            self.index = PackageIndex.merge(*indexes)

            self._advance(Stage.RESOLVING)
            deadline.check(operation="resolve")
            self.environment = resolve(self.index, requested, logger=self.logger)

            self._advance(Stage.WRITING)
            deadline.check(operation="write_manifest", context={"path": str(destination)})
            manifest = self.writer.write(self.environment, destination)
        except BaseException as exc:
            self._fail(exc)
            raise

        self._advance(Stage.DONE)
        return manifest

    def _advance(self, target: Stage) -> None:
        if target not in _TRANSITIONS[self.stage]:
            raise ValidationError(
                f"Illegal pipeline transition {self.stage.value} -> {target.value}.",
                context={"operation": "pipeline"},
            )
        self.stage = target
        self.history.append(target)
        self.logger.log(operation="pipeline", stage=target.value, message=f"Entered {target.value}.")

    def _fail(self, exc: BaseException) -> None:
        failed_in = self.stage
        self.failed_stage = failed_in
        self.stage = Stage.FAILED
        self.history.append(Stage.FAILED)
        extra: dict[str, str] = {"error": type(exc).__name__, "detail": str(exc)}
        if isinstance(exc, EnvsnapError):
            exc.context.setdefault("stage", failed_in.value)
            extra["code"] = exc.code
            extra["detail"] = exc.message
        self.logger.log(
            operation="pipeline",
            stage=Stage.FAILED.value,
            level="error",
            message=f"Failed while {failed_in.value}.",
            extra=extra,
        )


__all__ = ["Pipeline"]
