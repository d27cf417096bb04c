import dataclasses
import threading
import time
from pathlib import Path
from typing import Any

import pytest
from conftest import COMMIT, SnapshotFactory

from envsnap.cache import SnapshotCache
from envsnap.deadline import Deadline
from envsnap.errors import (
    CancelledError,
    FetchError,
    IntegrityError,
    OperationTimeoutError,
    PolicyError,
    ValidationError,
)
from envsnap.fetch import MutableRevisionWarning, SnapshotFetcher
from envsnap.fetch import http as http_module
from envsnap.models import SourceLocator
from envsnap.policy import Policy


def test_fetch_requires_sha256(snapshots: SnapshotFactory, fetcher: SnapshotFetcher) -> None:
    locator = snapshots.json_file([snapshots.package("flatbuffers", "2.0")])
    unpinned = dataclasses.replace(locator, sha256=None)

    with pytest.raises(ValidationError):
        fetcher.fetch(unpinned)


def test_fetch_caches_by_content_hash(snapshots: SnapshotFactory, fetcher: SnapshotFetcher) -> None:
    locator = snapshots.json_file([snapshots.package("flatbuffers", "2.0")])
    source = snapshots.root / "packages.json"
    original = source.read_bytes()

    first = fetcher.fetch(locator)
    source.write_bytes(b"mutated source content")
    second = fetcher.fetch(locator)

    assert first == second
    assert second.read_bytes() == original
    assert second.sha256 == locator.sha256


def test_repeated_fetch_does_not_hit_the_network(
    snapshots: SnapshotFactory,
    fetcher: SnapshotFetcher,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    locator = snapshots.archive([snapshots.package("flatbuffers", "2.0")])
    calls: list[str] = []
    real_urlopen = http_module.urlopen

    def counting_urlopen(url: str, **kwargs: Any) -> Any:
        calls.append(url)
        return real_urlopen(url, **kwargs)

    monkeypatch.setattr("envsnap.fetch.http.urlopen", counting_urlopen)

    results = [fetcher.fetch(locator) for _ in range(3)]

    assert calls == [locator.resolved_url]
    assert len({result.read_bytes() for result in results}) == 1


def test_fetch_raises_on_hash_mismatch_and_leaves_cache_empty(
    snapshots: SnapshotFactory,
    cache: SnapshotCache,
    fetcher: SnapshotFetcher,
) -> None:
    locator = snapshots.json_file([snapshots.package("flatbuffers", "2.0")])
    tampered = dataclasses.replace(locator, sha256="0" * 64)

    with pytest.raises(IntegrityError) as excinfo:
        fetcher.fetch(tampered)

    assert excinfo.value.context["expected"] == "0" * 64
    assert excinfo.value.context["actual"] == locator.sha256
    assert cache.entries() == []
    assert list(cache.tmp.iterdir()) == []


def test_fetch_reports_transport_failure_with_source(
    tmp_path: Path,
    fetcher: SnapshotFetcher,
) -> None:
    missing = tmp_path / "does-not-exist.json"
    locator = SourceLocator(
        url=missing.as_uri(),
        revision=COMMIT,
        sha256="1" * 64,
    )

    with pytest.raises(FetchError) as excinfo:
        fetcher.fetch(locator)

    assert excinfo.value.context["url"] == missing.as_uri()
    assert "source" in excinfo.value.context


def test_fetch_maps_socket_timeout_to_timeout_error(
    snapshots: SnapshotFactory,
    fetcher: SnapshotFetcher,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    locator = snapshots.json_file([snapshots.package("flatbuffers", "2.0")])

    def stalled_urlopen(url: str, **kwargs: Any) -> Any:
        raise TimeoutError("timed out")

    monkeypatch.setattr("envsnap.fetch.http.urlopen", stalled_urlopen)

    with pytest.raises(OperationTimeoutError) as excinfo:
        fetcher.fetch(locator)

    assert isinstance(excinfo.value, TimeoutError)
    assert excinfo.value.code == "E_TIMEOUT"


def test_fetch_passes_remaining_deadline_to_socket(
    snapshots: SnapshotFactory,
    fetcher: SnapshotFetcher,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    locator = snapshots.json_file([snapshots.package("flatbuffers", "2.0")])
    seen: dict[str, Any] = {}
    real_urlopen = http_module.urlopen

    def recording_urlopen(url: str, **kwargs: Any) -> Any:
        seen.update(kwargs)
        return real_urlopen(url, **kwargs)

    monkeypatch.setattr("envsnap.fetch.http.urlopen", recording_urlopen)

    fetcher.fetch(locator, deadline=Deadline.after(30.0))

    assert 0 < seen["timeout"] <= 30.0


def test_fetch_with_expired_deadline_times_out_without_caching(
    snapshots: SnapshotFactory,
    cache: SnapshotCache,
    fetcher: SnapshotFetcher,
) -> None:
    locator = snapshots.json_file([snapshots.package("flatbuffers", "2.0")])
    expired = Deadline(expires_at=time.monotonic() - 1.0)

    with pytest.raises(OperationTimeoutError):
        fetcher.fetch(locator, deadline=expired)

    assert cache.entries() == []


def test_cancellation_mid_download_discards_partial_file(
    snapshots: SnapshotFactory,
    cache: SnapshotCache,
    fetcher: SnapshotFetcher,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    locator = snapshots.json_file([snapshots.package("flatbuffers", "2.0")])
    deadline = Deadline.after(None)
    response = _ChunkedResponse([b"first chunk", b"second chunk"], after_first=deadline.cancel.set)
    monkeypatch.setattr("envsnap.fetch.http.urlopen", lambda url, **kwargs: response)

    with pytest.raises(CancelledError):
        fetcher.fetch(locator, deadline=deadline)

    assert response.reads == 1
    assert cache.entries() == []
    assert list(cache.tmp.iterdir()) == []


def test_offline_policy_blocks_cache_miss_but_serves_cache_hit(
    snapshots: SnapshotFactory,
    cache: SnapshotCache,
) -> None:
    locator = snapshots.json_file([snapshots.package("flatbuffers", "2.0")])
    offline = SnapshotFetcher(cache, policy=Policy(network_mode="offline"))

    with pytest.raises(PolicyError):
        offline.fetch(locator)

    SnapshotFetcher(cache).fetch(locator)
    snapshot = offline.fetch(locator)

    assert snapshot.sha256 == locator.sha256


def test_unpinned_fetch_records_hash_and_reuses_it(
    snapshots: SnapshotFactory,
    cache: SnapshotCache,
) -> None:
    pinned = snapshots.json_file([snapshots.package("flatbuffers", "2.0")])
    unpinned = dataclasses.replace(pinned, sha256=None)
    fetcher = SnapshotFetcher(cache, policy=Policy(require_integrity=False))

    first = fetcher.fetch(unpinned)
    (snapshots.root / "packages.json").write_bytes(b"upstream moved on")
    second = fetcher.fetch(unpinned)

    assert first.sha256 == pinned.sha256
    assert second.sha256 == first.sha256


def test_mutable_revision_warns_by_default(
    snapshots: SnapshotFactory,
    fetcher: SnapshotFetcher,
) -> None:
    locator = snapshots.json_file([snapshots.package("flatbuffers", "2.0")])
    branch = dataclasses.replace(locator, revision="release-21.11")

    with pytest.warns(MutableRevisionWarning):
        fetcher.fetch(branch)


def test_mutable_revision_can_be_escalated_to_error(
    snapshots: SnapshotFactory,
    cache: SnapshotCache,
) -> None:
    locator = snapshots.json_file([snapshots.package("flatbuffers", "2.0")])
    branch = dataclasses.replace(locator, revision="release-21.11")
    fetcher = SnapshotFetcher(cache, policy=Policy(mutable_revision_policy="error"))

    with pytest.raises(PolicyError) as excinfo:
        fetcher.fetch(branch)

    assert "not allowed" in str(excinfo.value)


def test_fetch_many_returns_input_order_and_bounds_concurrency(
    snapshots: SnapshotFactory,
    cache: SnapshotCache,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    locators = [
        snapshots.json_file([snapshots.package(f"pkg{i}", "1.0")], name=f"source-{i}.json")
        for i in range(5)
    ]
    lock = threading.Lock()
    state = {"active": 0, "peak": 0}
    real_urlopen = http_module.urlopen

    def tracking_urlopen(url: str, **kwargs: Any) -> Any:
        with lock:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
        time.sleep(0.05)
        with lock:
            state["active"] -= 1
        return real_urlopen(url, **kwargs)

    monkeypatch.setattr("envsnap.fetch.http.urlopen", tracking_urlopen)
    fetcher = SnapshotFetcher(cache, policy=Policy(max_concurrency=2))

    results = fetcher.fetch_many([*locators, locators[0]])

    assert [result.locator for result in results] == [*locators, locators[0]]
    assert state["peak"] <= 2
    assert len(cache.entries()) == 5


def test_fetch_many_propagates_first_failure(
    snapshots: SnapshotFactory,
    fetcher: SnapshotFetcher,
) -> None:
    good = snapshots.json_file([snapshots.package("flatbuffers", "2.0")])
    bad = dataclasses.replace(good, sha256="f" * 64)

    with pytest.raises(IntegrityError):
        fetcher.fetch_many([good, bad])


def test_fetch_many_failure_leaves_callers_cancel_event_clear(
    snapshots: SnapshotFactory,
    fetcher: SnapshotFetcher,
) -> None:
    good = snapshots.json_file([snapshots.package("flatbuffers", "2.0")])
    bad = dataclasses.replace(good, sha256="f" * 64)
    shared = threading.Event()

    with pytest.raises(IntegrityError):
        fetcher.fetch_many([good, bad], deadline=Deadline.after(None, cancel=shared))

    assert not shared.is_set()


def test_fetch_many_honours_callers_cancel_event(
    snapshots: SnapshotFactory,
    fetcher: SnapshotFetcher,
) -> None:
    locator = snapshots.json_file([snapshots.package("flatbuffers", "2.0")])
    shared = threading.Event()
    shared.set()

    with pytest.raises(CancelledError):
        fetcher.fetch_many([locator], deadline=Deadline.after(None, cancel=shared))


def test_fetch_logs_download_records(
    snapshots: SnapshotFactory,
    fetcher: SnapshotFetcher,
) -> None:
    locator = snapshots.json_file([snapshots.package("flatbuffers", "2.0")])

    fetcher.fetch(locator)
    fetcher.fetch(locator)

    records = fetcher.logger.records_for_operation("fetch")
    assert [record["level"] for record in records] == ["info", "debug"]
    assert all(record["source"] == locator.describe() for record in records)


class _ChunkedResponse:
    def __init__(self, chunks: list[bytes], *, after_first: Any) -> None:
        self._chunks = list(chunks)
        self._after_first = after_first
        self.reads = 0

    def __enter__(self) -> "_ChunkedResponse":
        return self

    def __exit__(self, *exc: object) -> None:
        return None

    def read(self, size: int = -1) -> bytes:
        _ = size
        self.reads += 1
        if self.reads == 1:
            self._after_first()
        return self._chunks.pop(0) if self._chunks else b""
