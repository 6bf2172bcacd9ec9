"""Orchestration: store → normalize → aggregate → cache → (blend).

`BenchmarkService` is the single entry point callers use. It owns the two
caches and wires the pure layers (normalization, aggregation, blending)
together.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Sequence

from survey_benchmarks.aggregate.build_records import aggregate
from survey_benchmarks.aggregate.summary import ALL_VALUES, filter_records
from survey_benchmarks.blend import blend, validate_blend_config
from survey_benchmarks.cache.computation import NS_NORMALIZED, ComputationCache
from survey_benchmarks.cache.freshness import FreshnessCache, RefreshToken, survey_fingerprint
from survey_benchmarks.config import Settings, get_settings
from survey_benchmarks.ingest.fetch import fetch_normalized
from survey_benchmarks.models import (
    AggregatedRecord,
    AnalyticsFilters,
    BlendConfig,
    BlendResult,
    MappingTables,
    NormalizedRow,
    SurveyMeta,
)
from survey_benchmarks.store import DataStore, load_mapping_tables_by_provider

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalyticsSnapshot:
    """Everything one load produces; the unit stored in the freshness cache."""
    records: list[AggregatedRecord]
    year_records: list[AggregatedRecord]
    fingerprint: str
    survey_ids: list[str]
    build_id: str = field(default_factory=lambda: uuid.uuid4().hex)


class BenchmarkService:
    """Serves aggregated and blended benchmarks from a data store.

    Args:
        store: Where surveys, rows and mapping tables live.
        settings: Engine settings; read from the environment when omitted.
        computation: Optional pre-built computation cache.
        freshness: Optional pre-built freshness cache. When given, its
            computation cache is used instead of `computation`.
    """

    def __init__(
        self,
        store: DataStore,
        settings: Settings | None = None,
        computation: ComputationCache | None = None,
        freshness: FreshnessCache | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        if freshness is None:
            computation = computation or ComputationCache(
                max_entries=self.settings.cache_max_entries,
                max_memory_bytes=int(self.settings.cache_max_mb * 1024 * 1024),
            )
            freshness = FreshnessCache(
                freshness_seconds=self.settings.freshness_minutes * 60,
                staleness_seconds=self.settings.staleness_minutes * 60,
                refresh_timeout=self.settings.refresh_timeout_seconds,
                computation=computation,
            )
        self.freshness = freshness
        self.computation = freshness.computation

    # ---------------------------------------------------------
    # Public API
    # ---------------------------------------------------------
    def get_analytics_data(self, filters: AnalyticsFilters | None = None) -> list[AggregatedRecord]:
        """Aggregated records across all surveys, optionally filtered.

        A year filter is answered from the year-split records, so a group
        that spans several years still shows up under each of them.
        """
        snapshot = self._snapshot()
        if filters is not None and (filters.year or "").strip().lower() not in ALL_VALUES:
            return self._filtered(snapshot, snapshot.year_records, filters, "by_year")
        return self._filtered(snapshot, snapshot.records, filters, "all")

    def get_year_records(self, filters: AnalyticsFilters | None = None) -> list[AggregatedRecord]:
        """Aggregated records split by survey year (the input to blending)."""
        snapshot = self._snapshot()
        return self._filtered(snapshot, snapshot.year_records, filters, "by_year")

    def blend(self, config: BlendConfig, filters: AnalyticsFilters | None = None) -> BlendResult:
        """Blend year records across the configured years.

        The year filter is ignored: the config decides which years take part.

        Raises:
            BlendConfigError: for an invalid config, before any data is loaded.
        """
        validate_blend_config(config)
        if filters is not None and filters.year:
            filters = filters.model_copy(update={"year": None})
        return blend(self.get_year_records(filters), config)

    def clear_cache(self) -> None:
        self.freshness.clear_cache()

    def close(self) -> None:
        self.freshness.close()

    # ---------------------------------------------------------
    # Loading
    # ---------------------------------------------------------
    def _snapshot(self) -> AnalyticsSnapshot:
        surveys = self.store.get_all_surveys()
        self.freshness.check_upstream(survey_fingerprint(surveys))
        return self.freshness.get(self._load)

    def _load(self, token: RefreshToken) -> AnalyticsSnapshot:
        """Full load; runs synchronously or as a background refresh."""
        surveys = self.store.get_all_surveys()
        fingerprint = survey_fingerprint(surveys)
        tables = load_mapping_tables_by_provider(self.store, {s.provider_type for s in surveys})
        tables_digest = ComputationCache.generate_key("tables", {str(k): v for k, v in tables.items()})
        token.raise_if_cancelled()

        per_survey = self._normalized_rows(surveys, tables, tables_digest, token)
        rows = [row for s in surveys for row in per_survey.get(s.id, [])]
        token.raise_if_cancelled()

        ids = [s.id for s in surveys]
        upstream = f"{fingerprint}:{tables_digest}"
        records = self._aggregated(rows, upstream, ids, by_year=False)
        year_records = self._aggregated(rows, upstream, ids, by_year=True)
        log.info("Loaded %d surveys: %d rows, %d records", len(surveys), len(rows), len(records))
        return AnalyticsSnapshot(records, year_records, fingerprint, ids)

    def _normalized_rows(
        self,
        surveys: Sequence[SurveyMeta],
        tables: dict[str | None, MappingTables],
        tables_digest: str,
        token: RefreshToken,
    ) -> dict[str, list[NormalizedRow]]:
        out: dict[str, list[NormalizedRow]] = {}
        missing: list[SurveyMeta] = []
        keys: dict[str, str] = {}
        for s in surveys:
            keys[s.id] = ComputationCache.generate_key(
                NS_NORMALIZED,
                s,
                {"tables": tables_digest},
            )
            cached = self.computation.get(keys[s.id])
            if cached is None:
                missing.append(s)
            else:
                out[s.id] = cached

        if missing:
            fetched = fetch_normalized(
                self.store,
                missing,
                tables[None],
                concurrency=self.settings.survey_concurrency,
                page_size=self.settings.page_size,
                token=token,
                tables_by_provider=tables,
            )
            for survey_id, rows in fetched.items():
                out[survey_id] = rows
                # empty results are not cached so failed surveys are retried
                if rows:
                    self.computation.set(keys[survey_id], rows)
        return out

    def _aggregated(
        self,
        rows: list[NormalizedRow],
        upstream: str,
        survey_ids: list[str],
        by_year: bool,
    ) -> list[AggregatedRecord]:
        key = ComputationCache.aggregation_key(upstream, survey_ids, by_year=by_year)
        cached = self.computation.get(key)
        if cached is not None:
            return cached
        records = aggregate(rows, by_year=by_year, chunk_size=self.settings.aggregation_chunk_size)
        self.computation.set(key, records)
        return records

    def _filtered(
        self,
        snapshot: AnalyticsSnapshot,
        records: list[AggregatedRecord],
        filters: AnalyticsFilters | None,
        view: str,
    ) -> list[AggregatedRecord]:
        if filters is None or filters == AnalyticsFilters():
            return list(records)
        key = f"{ComputationCache.filter_key(records, filters)}:{view}:{snapshot.build_id}"
        cached = self.computation.get(key)
        if cached is not None:
            return list(cached)
        result = filter_records(records, filters)
        self.computation.set(key, result)
        return result
