"""Summary rows, grouping and filtering over aggregated records."""
from __future__ import annotations

import math
from collections import OrderedDict
from typing import Iterable, Sequence

import numpy as np
from pydantic import BaseModel, Field

from survey_benchmarks.clean.resolve import fuzzy_key
from survey_benchmarks.models import (
    FAMILIES,
    PERCENTILES,
    AggregatedRecord,
    AnalyticsFilters,
    FamilyStats,
    MetricFamily,
)

# Filter values that mean "no filter" in the analytics views.
ALL_VALUES = frozenset({"", "all", "all sources", "all types", "all regions", "all years", "all specialties"})


def round_count(value: float) -> int:
    """Round a blended or averaged sample size half-up (2.5 -> 3)."""
    return int(math.floor(value + 0.5))


class SummaryCalculation(BaseModel):
    """Simple (arithmetic mean) and incumbent-weighted summaries of a record set."""
    simple: dict[MetricFamily, FamilyStats] = Field(default_factory=dict)
    weighted: dict[MetricFamily, FamilyStats] = Field(default_factory=dict)


def _empty_families() -> dict[MetricFamily, FamilyStats]:
    return {fam: FamilyStats() for fam in FAMILIES}


def _family_matrix(records: Sequence[AggregatedRecord], family: MetricFamily) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Return (n_orgs, n_incumbents, percentiles[n, 4]) arrays for one family."""
    stats = [rec.family(family) for rec in records]
    orgs = np.array([s.n_orgs for s in stats], dtype=float)
    incumbents = np.array([s.n_incumbents for s in stats], dtype=float)
    values = np.array([[getattr(s, p) for p in PERCENTILES] for s in stats], dtype=float)
    return orgs, incumbents, values


def summarize(records: Sequence[AggregatedRecord]) -> SummaryCalculation:
    """Compute simple and weighted summary rows.

    Simple: per-field arithmetic mean, counts rounded to int.
    Weighted: per family, percentiles weighted by that family's incumbents;
    counts are summed. A family with zero total incumbents is all zeros.

    Args:
        records: Records to summarize (typically one specialty's rows).

    Returns:
        SummaryCalculation; both sides are zero-valued for an empty input.
    """
    if not records:
        return SummaryCalculation(simple=_empty_families(), weighted=_empty_families())

    simple: dict[MetricFamily, FamilyStats] = {}
    weighted: dict[MetricFamily, FamilyStats] = {}
    for fam in FAMILIES:
        orgs, incumbents, values = _family_matrix(records, fam)

        means = values.mean(axis=0)
        simple[fam] = FamilyStats(
            n_orgs=round_count(orgs.mean()),
            n_incumbents=round_count(incumbents.mean()),
            **{p: float(v) for p, v in zip(PERCENTILES, means)},
        )

        total = float(incumbents.sum())
        if total > 0:
            wmeans = (values * incumbents[:, None]).sum(axis=0) / total
        else:
            wmeans = np.zeros(len(PERCENTILES))
        weighted[fam] = FamilyStats(
            n_orgs=int(orgs.sum()),
            n_incumbents=int(total),
            **{p: float(v) for p, v in zip(PERCENTILES, wmeans)},
        )

    return SummaryCalculation(simple=simple, weighted=weighted)


def group_by_specialty(records: Iterable[AggregatedRecord]) -> "OrderedDict[str, list[AggregatedRecord]]":
    """Group records by specialty, preserving first-seen order."""
    groups: OrderedDict[str, list[AggregatedRecord]] = OrderedDict()
    for rec in records:
        groups.setdefault(rec.specialty, []).append(rec)
    return groups


def _is_set(value: str | None) -> bool:
    return value is not None and value.strip().lower() not in ALL_VALUES


def _same(a: str, b: str) -> bool:
    return a.strip().lower() == b.strip().lower()


def filter_records(records: Iterable[AggregatedRecord], filters: AnalyticsFilters | None) -> list[AggregatedRecord]:
    """Keep records matching every set filter field.

    Comparison is case-insensitive; specialties also ignore punctuation and
    the word "and". Values such as "All Sources" count as unset.
    """
    recs = list(records)
    if filters is None:
        return recs

    out = []
    for rec in recs:
        if _is_set(filters.specialty) and fuzzy_key(rec.specialty) != fuzzy_key(filters.specialty or ""):
            continue
        if _is_set(filters.survey_source) and not _same(rec.survey_source, filters.survey_source or ""):
            continue
        if _is_set(filters.region) and not _same(rec.region, filters.region or ""):
            continue
        if _is_set(filters.provider_type) and not _same(rec.provider_type, filters.provider_type or ""):
            continue
        if _is_set(filters.year) and not _same(rec.survey_year, filters.year or ""):
            continue
        out.append(rec)
    return out


def distinct_values(records: Iterable[AggregatedRecord]) -> dict[str, list[str]]:
    """Sorted distinct dimension values, for populating filter choices."""
    fields = {
        "specialties": "specialty",
        "survey_sources": "survey_source",
        "regions": "region",
        "provider_types": "provider_type",
        "years": "survey_year",
    }
    seen: dict[str, set[str]] = {name: set() for name in fields}
    for rec in records:
        for name, attr in fields.items():
            value = getattr(rec, attr)
            if value:
                seen[name].add(value)
    return {name: sorted(values) for name, values in seen.items()}
