"""Integrity-enforced snapshot fetcher over HTTP(S) and file URLs."""

from __future__ import annotations

import hashlib
import warnings
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any
from urllib.error import URLError
from urllib.request import urlopen

from envsnap.cache import SnapshotCache
from envsnap.deadline import Deadline
from envsnap.errors import (
    EnvsnapError,
    FetchError,
    IntegrityError,
    OperationTimeoutError,
    PolicyError,
    ValidationError,
)
from envsnap.models import Snapshot, SourceLocator
from envsnap.observability import StructuredLogger
from envsnap.policy import (
    MutableRevisionPolicy,
    Policy,
    ensure_network_allowed,
    mutable_revision_policy_from,
)

_CHUNK_SIZE = 1 << 16
_MIN_SOCKET_TIMEOUT = 0.001


class MutableRevisionWarning(UserWarning):
    """Warning raised when a snapshot is pinned to a branch or tag name."""


class SnapshotFetcher:
    """Fetch snapshots into an injected :class:`SnapshotCache`.

    A locator that is already cached is served from disk without touching the
    network. Downloads stream into ``cache.tmp`` and are promoted only after
    the digest check passes; nothing is retried here.
    """

    def __init__(
        self,
        cache: SnapshotCache,
        *,
        policy: Policy | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        self.cache = cache
        self.policy = policy or Policy()
        self.logger = logger or StructuredLogger()

    def fetch(self, locator: SourceLocator, *, deadline: Deadline | None = None) -> Snapshot:
        """Return the snapshot for *locator*, downloading it on a cache miss."""
        deadline = deadline or Deadline()
        source = locator.describe()
        _enforce_mutable_revision_policy(
            locator=locator,
            policy=mutable_revision_policy_from(self.policy),
        )
        if locator.sha256 is None and self.policy.require_integrity:
            raise ValidationError(
                "fetch() requires a sha256 value.",
                hint="Pin the snapshot hash or relax policy.require_integrity.",
                context={"operation": "fetch", "source": source},
            )
        deadline.check(operation="fetch", context={"source": source})

        cached = self.cache.lookup(locator)
        if cached is not None:
            self.logger.log(
                operation="fetch",
                stage="fetching",
                source=source,
                message="Served snapshot from cache.",
                level="debug",
                extra={"sha256": cached.sha256},
            )
            return cached

        ensure_network_allowed(policy=self.policy, operation="fetch", source=source)
        temp_path = self.cache.temp_file()
        try:
            actual_sha256 = self._download(locator, target=temp_path, deadline=deadline)
            if locator.sha256 is not None and actual_sha256 != locator.sha256:
                raise IntegrityError(
                    "Fetched content hash mismatch.",
                    hint="Update the expected hash or source URL to a trusted immutable artifact.",
                    context={
                        "operation": "fetch",
                        "source": source,
                        "expected": locator.sha256,
                        "actual": actual_sha256,
                    },
                )
            snapshot = self.cache.promote(locator, temp_path, sha256=actual_sha256)
        finally:
            temp_path.unlink(missing_ok=True)

        self.logger.log(
            operation="fetch",
            stage="fetching",
            source=source,
            message="Fetched snapshot.",
            extra={"sha256": snapshot.sha256},
        )
        return snapshot

    def fetch_many(
        self,
        locators: Sequence[SourceLocator],
        *,
        deadline: Deadline | None = None,
    ) -> list[Snapshot]:
        """Fetch independent locators concurrently, bounded by the policy.

        Results come back in input order. The first failure cancels a
        child of *deadline* so in-flight downloads stop, then re-raises; the
        caller's own cancel event is never set here.
        """
        scope = (deadline or Deadline()).child()
        unique = list(dict.fromkeys(locators))
        if not unique:
            return []

        results: dict[SourceLocator, Snapshot] = {}
        workers = min(self.policy.max_concurrency, len(unique))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="envsnap-fetch") as executor:
            futures: dict[Future[Snapshot], SourceLocator] = {
                executor.submit(self.fetch, locator, deadline=scope): locator
                for locator in unique
            }
            try:
                for future in as_completed(futures):
                    results[futures[future]] = future.result()
            except BaseException:
                scope.cancel.set()
                for future in futures:
                    future.cancel()
                raise
        return [results[locator] for locator in locators]

    def _download(self, locator: SourceLocator, *, target: Path, deadline: Deadline) -> str:
        url = locator.resolved_url
        context = {"operation": "fetch", "source": locator.describe(), "url": url}
        digest = hashlib.sha256()
        try:
            with urlopen(url, **_socket_options(deadline)) as response, target.open("wb") as handle:  # noqa: S310 - integrity check follows
                while True:
                    deadline.check(operation="fetch", context=context)
                    chunk = response.read(_CHUNK_SIZE)
                    if not chunk:
                        break
                    digest.update(chunk)
                    handle.write(chunk)
        except EnvsnapError:
            raise
        except TimeoutError as exc:
            raise _timeout_error(context) from exc
        except URLError as exc:
            if isinstance(exc.reason, TimeoutError):
                raise _timeout_error(context) from exc
            raise FetchError(
                "Snapshot download failed.",
                hint="Check the source URL and network connectivity, then retry.",
                context={**context, "reason": str(exc.reason)},
            ) from exc
        except OSError as exc:
            raise FetchError(
                "Snapshot download failed.",
                hint="Check the source URL and network connectivity, then retry.",
                context={**context, "reason": str(exc)},
            ) from exc
        return digest.hexdigest()


def _socket_options(deadline: Deadline) -> dict[str, Any]:
    remaining = deadline.remaining()
    if remaining is None:
        return {}
    return {"timeout": max(remaining, _MIN_SOCKET_TIMEOUT)}


def _timeout_error(context: dict[str, str]) -> OperationTimeoutError:
    return OperationTimeoutError(
        "Snapshot download timed out.",
        hint="Raise the timeout or retry once the source responds.",
        context=context,
    )


def _enforce_mutable_revision_policy(
    *,
    locator: SourceLocator,
    policy: MutableRevisionPolicy,
) -> None:
    if not locator.mutable_revision:
        return
    if policy == "allow":
        return
    if policy == "warn":
        warnings.warn(
            f"Mutable revision `{locator.revision}` was requested; "
            "the source may serve different content later.",
            MutableRevisionWarning,
            stacklevel=3,
        )
        return
    if policy == "error":
        raise PolicyError(
            "Mutable revisions are not allowed by policy.",
            hint="Pin a full commit id or relax mutable_revision_policy.",
            context={"operation": "fetch", "source": locator.describe(), "policy": policy},
        )
    raise ValidationError(f"Unsupported mutable_revision_policy value: {policy}")
