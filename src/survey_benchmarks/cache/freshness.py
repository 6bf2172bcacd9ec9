"""Freshness-aware cache for the top-level aggregation output.

Two windows govern a cached snapshot:

- younger than `staleness`: served as-is.
- between `staleness` and `freshness`: served immediately, and one
  background refresh is scheduled (at most one in flight).
- older than `freshness`, or nothing cached: computed synchronously.

Refreshes run on a single worker thread and get a `RefreshToken` carrying a
cancellation flag and a deadline. `clear_cache()` bumps a generation counter,
so a refresh that started before the clear can never repopulate the cache.
"""
from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from survey_benchmarks.cache.computation import ComputationCache
from survey_benchmarks.models import SurveyMeta

log = logging.getLogger(__name__)

DEFAULT_FRESHNESS_SECONDS = 30 * 60
DEFAULT_STALENESS_SECONDS = 5 * 60
DEFAULT_REFRESH_TIMEOUT_SECONDS = 120.0


class RefreshCancelled(RuntimeError):
    """Raised inside a loader when its refresh was cancelled or timed out."""


class RefreshToken:
    """Cancellation flag plus optional deadline handed to a loader."""

    def __init__(self, timeout: float | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self._event = threading.Event()
        self._clock = clock
        self.deadline = clock() + timeout if timeout else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def timed_out(self) -> bool:
        return self.deadline is not None and self._clock() >= self.deadline

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self.timed_out

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RefreshCancelled("refresh cancelled")
        if self.timed_out:
            raise RefreshCancelled("refresh timed out")


Loader = Callable[[RefreshToken], Any]


@dataclass(frozen=True)
class Snapshot:
    value: Any
    created_at: float
    version: str


def survey_fingerprint(surveys: Iterable[SurveyMeta]) -> str:
    """Hash of the survey-level facts that change when upstream data changes."""
    facts = sorted(
        (
            {
                "id": s.id,
                "upload_date": s.upload_date.isoformat() if s.upload_date else None,
                "row_count": s.row_count,
                "specialty_count": s.specialty_count,
            }
            for s in surveys
        ),
        key=lambda d: str(d["id"]),
    )
    payload = json.dumps(facts, sort_keys=True)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class FreshnessCache:
    """Single-slot cache with staleness-triggered background refresh.

    Args:
        freshness_seconds: Age at which a snapshot is no longer served.
        staleness_seconds: Age at which a served snapshot triggers a refresh.
        refresh_timeout: Deadline, in seconds, for one background refresh.
        computation: Computation cache cleared together with the snapshot.
        clock: Monotonic clock; injectable for tests.
    """

    def __init__(
        self,
        freshness_seconds: float = DEFAULT_FRESHNESS_SECONDS,
        staleness_seconds: float = DEFAULT_STALENESS_SECONDS,
        refresh_timeout: float | None = DEFAULT_REFRESH_TIMEOUT_SECONDS,
        computation: ComputationCache | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if staleness_seconds >= freshness_seconds:
            raise ValueError("staleness window must be shorter than the freshness window")
        self.freshness_seconds = freshness_seconds
        self.staleness_seconds = staleness_seconds
        self.refresh_timeout = refresh_timeout
        self.computation = computation if computation is not None else ComputationCache()
        self._clock = clock
        self._lock = threading.RLock()
        self._snapshot: Snapshot | None = None
        self._generation = 0
        self._fingerprint: str | None = None
        self._refresh_future: Future[None] | None = None
        self._refresh_token: RefreshToken | None = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="freshness-refresh")

    # ---- introspection ----
    @property
    def snapshot(self) -> Snapshot | None:
        with self._lock:
            return self._snapshot

    @property
    def version(self) -> str | None:
        snap = self.snapshot
        return snap.version if snap else None

    def age(self) -> float | None:
        snap = self.snapshot
        return self._clock() - snap.created_at if snap else None

    @property
    def refresh_in_flight(self) -> bool:
        with self._lock:
            return self._refresh_future is not None and not self._refresh_future.done()

    # ---- read path ----
    def get(self, loader: Loader) -> Any:
        """Return the cached value, refreshing it according to its age.

        Args:
            loader: `loader(token) -> value`; must check `token` at safe points.

        Returns:
            The cached or freshly computed value.
        """
        with self._lock:
            snap = self._snapshot
            if snap is not None:
                age = self._clock() - snap.created_at
                if age < self.staleness_seconds:
                    return snap.value
                if age < self.freshness_seconds:
                    self._schedule_refresh(loader)
                    return snap.value
                log.info("Cached snapshot %s expired (age %.0fs); recomputing", snap.version, age)
            generation = self._generation

        value = loader(RefreshToken())
        if not self._store(value, generation):
            log.info("Cache cleared during computation; result returned but not cached")
        return value

    def set(self, value: Any) -> Snapshot:
        """Store `value` as the current snapshot under a new version."""
        with self._lock:
            self._snapshot = Snapshot(value=value, created_at=self._clock(), version=uuid.uuid4().hex)
            return self._snapshot

    def _store(self, value: Any, generation: int) -> bool:
        with self._lock:
            if generation != self._generation:
                return False
            self.set(value)
            return True

    # ---- background refresh ----
    def _schedule_refresh(self, loader: Loader) -> None:
        # caller holds self._lock
        if self._refresh_future is not None and not self._refresh_future.done():
            return
        token = RefreshToken(self.refresh_timeout, clock=self._clock)
        self._refresh_token = token
        self._refresh_future = self._executor.submit(self._run_refresh, loader, token, self._generation)
        log.info("Scheduled background refresh of snapshot %s", self._snapshot.version if self._snapshot else None)

    def _run_refresh(self, loader: Loader, token: RefreshToken, generation: int) -> None:
        try:
            value = loader(token)
        except RefreshCancelled as e:
            log.info("Background refresh discarded: %s", e)
            return
        except Exception as e:
            log.warning("Background refresh failed; keeping current snapshot: %s", e)
            return

        if token.cancelled:
            log.info("Background refresh discarded: cancelled or past its deadline")
            return
        if not self._store(value, generation):
            log.info("Background refresh discarded: cache was cleared while it ran")
            return
        log.info("Background refresh stored snapshot %s", self.version)

    def wait_for_refresh(self, timeout: float | None = None) -> bool:
        """Block until the in-flight refresh (if any) finishes.

        Returns:
            False if the wait timed out, True otherwise.
        """
        with self._lock:
            future = self._refresh_future
        if future is None:
            return True
        try:
            future.result(timeout=timeout)
        except FutureTimeoutError:
            return False
        return True

    # ---- invalidation ----
    def clear_cache(self) -> None:
        """Drop the snapshot and every intermediate result, cancelling refreshes."""
        with self._lock:
            self._generation += 1
            self._snapshot = None
            if self._refresh_token is not None:
                self._refresh_token.cancel()
            removed = self.computation.clear()
        log.info("Cleared cached analytics (%d intermediate entries)", removed)

    def check_upstream(self, fingerprint: str) -> bool:
        """Invalidate everything if the upstream fingerprint changed.

        The first fingerprint seen is only recorded.

        Returns:
            True if the caches were invalidated.
        """
        with self._lock:
            previous = self._fingerprint
            self._fingerprint = fingerprint
            if previous is None or previous == fingerprint:
                return False
            log.info("Upstream survey data changed; invalidating caches")
            self.clear_cache()
            return True

    def close(self) -> None:
        with self._lock:
            if self._refresh_token is not None:
                self._refresh_token.cancel()
        self._executor.shutdown(wait=False, cancel_futures=True)
