from __future__ import annotations

import threading
from datetime import datetime
from typing import Iterator

import pytest

from survey_benchmarks.cache.computation import ComputationCache
from survey_benchmarks.cache.freshness import (
    FreshnessCache,
    RefreshCancelled,
    RefreshToken,
    survey_fingerprint,
)
from survey_benchmarks.models import SurveyMeta

MINUTE = 60.0


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingLoader:
    def __init__(self) -> None:
        self.calls = 0

    def __call__(self, token: RefreshToken) -> str:
        self.calls += 1
        return f"v{self.calls}"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> Iterator[FreshnessCache]:
    c = FreshnessCache(
        freshness_seconds=30 * MINUTE,
        staleness_seconds=5 * MINUTE,
        refresh_timeout=120,
        computation=ComputationCache(),
        clock=clock,
    )
    yield c
    c.close()


def test_empty_cache_computes_synchronously(cache: FreshnessCache) -> None:
    loader = CountingLoader()
    assert cache.get(loader) == "v1"
    assert cache.get(loader) == "v1"
    assert loader.calls == 1
    assert cache.version is not None


def test_stale_snapshot_is_served_and_refreshed_in_background(cache: FreshnessCache, clock: FakeClock) -> None:
    loader = CountingLoader()
    cache.get(loader)
    first_version = cache.version

    clock.advance(10 * MINUTE)
    assert cache.get(loader) == "v1"
    assert cache.wait_for_refresh(timeout=5)
    assert cache.get(loader) == "v2"
    assert cache.version != first_version
    assert loader.calls == 2


def test_expired_snapshot_is_recomputed_synchronously(cache: FreshnessCache, clock: FakeClock) -> None:
    loader = CountingLoader()
    cache.get(loader)
    clock.advance(31 * MINUTE)
    assert cache.get(loader) == "v2"
    assert not cache.refresh_in_flight


def test_only_one_background_refresh_in_flight(cache: FreshnessCache, clock: FakeClock) -> None:
    release = threading.Event()
    calls: list[int] = []

    def slow(token: RefreshToken) -> str:
        calls.append(1)
        if len(calls) > 1:
            release.wait(5)
        return f"v{len(calls)}"

    cache.get(slow)
    clock.advance(10 * MINUTE)
    cache.get(slow)
    cache.get(slow)
    cache.get(slow)
    release.set()
    assert cache.wait_for_refresh(timeout=5)
    assert len(calls) == 2


def test_clear_during_refresh_discards_result(cache: FreshnessCache, clock: FakeClock) -> None:
    started = threading.Event()
    release = threading.Event()

    def loader(token: RefreshToken) -> str:
        if cache.snapshot is not None:
            started.set()
            release.wait(5)
        return "value"

    cache.get(loader)
    clock.advance(10 * MINUTE)
    cache.get(loader)
    assert started.wait(5)
    cache.clear_cache()
    release.set()
    assert cache.wait_for_refresh(timeout=5)
    assert cache.snapshot is None


def test_refresh_past_deadline_is_discarded(cache: FreshnessCache, clock: FakeClock) -> None:
    def loader(token: RefreshToken) -> str:
        if cache.snapshot is not None:
            clock.advance(cache.refresh_timeout + 1)
            return "late"
        return "first"

    cache.get(loader)
    clock.advance(10 * MINUTE)
    cache.get(loader)
    assert cache.wait_for_refresh(timeout=5)
    assert cache.snapshot is not None
    assert cache.snapshot.value == "first"


def test_failed_refresh_keeps_current_snapshot(cache: FreshnessCache, clock: FakeClock) -> None:
    def loader(token: RefreshToken) -> str:
        if cache.snapshot is not None:
            raise ConnectionError("store down")
        return "first"

    cache.get(loader)
    clock.advance(10 * MINUTE)
    cache.get(loader)
    assert cache.wait_for_refresh(timeout=5)
    assert cache.get(loader) == "first"


def test_upstream_change_invalidates_everything(cache: FreshnessCache) -> None:
    loader = CountingLoader()
    cache.computation.set("normalized:a:b", [1])
    assert cache.check_upstream("fp1") is False
    cache.get(loader)
    assert cache.check_upstream("fp1") is False
    assert cache.check_upstream("fp2") is True
    assert cache.snapshot is None
    assert len(cache.computation) == 0
    assert cache.get(loader) == "v2"


def test_token_cancellation() -> None:
    token = RefreshToken()
    token.raise_if_cancelled()
    token.cancel()
    assert token.cancelled
    with pytest.raises(RefreshCancelled):
        token.raise_if_cancelled()


def test_windows_must_be_ordered() -> None:
    with pytest.raises(ValueError):
        FreshnessCache(freshness_seconds=60, staleness_seconds=60)


def test_survey_fingerprint_tracks_upload_facts() -> None:
    base = dict(id="s1", upload_date=datetime(2024, 1, 1), row_count=10, specialty_count=3)
    a = [SurveyMeta(**base), SurveyMeta(id="s2")]
    b = [SurveyMeta(id="s2"), SurveyMeta(**base)]
    c = [SurveyMeta(**{**base, "row_count": 11}), SurveyMeta(id="s2")]
    assert survey_fingerprint(a) == survey_fingerprint(b)
    assert survey_fingerprint(a) != survey_fingerprint(c)
