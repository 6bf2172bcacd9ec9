"""Multi-year blending of aggregated benchmark records.

Blending runs in two stages:

1. Within each configured year, every record of a specialty is collapsed
   into one incumbent-weighted row (`summarize(...).weighted`).
2. Across years, those per-year rows are combined with per-year weights:
   `percentage` uses the configured shares, `weighted` uses each year's
   share of TCC incumbents, and `equal` gives every configured year
   `1 / len(years)`.

A specialty absent from a year contributes nothing for that year's weight,
so its blended values are scaled down by the missing share. Such
specialties are listed in the quality warnings.
"""
from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Sequence

from survey_benchmarks.aggregate.summary import group_by_specialty, round_count, summarize
from survey_benchmarks.models import (
    FAMILIES,
    PERCENTILES,
    AggregatedRecord,
    BlendConfig,
    BlendMethod,
    BlendResult,
    FamilyStats,
    MetricFamily,
    YearBreakdown,
)

log = logging.getLogger(__name__)

PERCENTAGE_TOLERANCE = 0.1
FULL_CONFIDENCE_SAMPLE = 1000
YEAR_PENALTY = 0.05
LOW_CONFIDENCE = 0.5
IMBALANCE_RATIO = 0.3

BLEND_REGION = "Multi-Year Blend"
BLEND_PROVIDER_TYPE = "Multi-Year Blend"
BLEND_SOURCES: dict[str, str] = {
    "percentage": "Multi-Year Blended",
    "weighted": "Multi-Year Weighted",
    "equal": "Multi-Year Equal",
}


class BlendConfigError(ValueError):
    """Raised for a blend request that cannot be honored."""


def validate_blend_config(config: BlendConfig) -> None:
    """Reject configs with no years or percentages that do not sum to 100.

    Raises:
        BlendConfigError: with a message suitable for showing to the user.
    """
    if not config.years:
        raise BlendConfigError("At least one year is required for blending")
    if config.method == "percentage":
        total = sum(y.percentage for y in config.years)
        if abs(total - 100) > PERCENTAGE_TOLERANCE:
            raise BlendConfigError(f"Total percentage must equal 100%, got {total:.1f}%")


def _year_label(config: BlendConfig) -> str:
    if config.method == "percentage":
        return " + ".join(f"{y.percentage:g}% {y.year}" for y in config.years)
    return " + ".join(y.year for y in config.years)


def _tcc_sample(records: Sequence[AggregatedRecord]) -> int:
    return sum(r.tcc.n_incumbents for r in records)


def _collapse_year(year: str, records: Sequence[AggregatedRecord]) -> list[AggregatedRecord]:
    """Stage 1: one incumbent-weighted record per specialty for a single year."""
    out = []
    for specialty, rows in group_by_specialty(records).items():
        weighted = summarize(rows).weighted
        out.append(
            AggregatedRecord(
                specialty=specialty,
                provider_type=rows[0].provider_type or "Multiple",
                region=rows[0].region or "Multiple",
                survey_source=f"{year} - Blended",
                survey_year=year,
                **{fam.value: weighted[fam] for fam in FAMILIES},
            )
        )
    return out


def _year_weights(config: BlendConfig, per_year: dict[str, list[AggregatedRecord]]) -> dict[str, float]:
    if config.method == "percentage":
        return {y.year: y.percentage / 100 for y in config.years}
    if config.method == "weighted":
        samples = {y.year: _tcc_sample(per_year.get(y.year, [])) for y in config.years}
        total = sum(samples.values())
        return {year: (size / total if total > 0 else 0.0) for year, size in samples.items()}
    share = 1 / len(config.years)
    return {y.year: share for y in config.years}


def _combine(parts: list[tuple[FamilyStats, float]]) -> FamilyStats:
    """Weighted sum of family stats; counts are rounded after summation."""
    orgs = sum(s.n_orgs * w for s, w in parts)
    incumbents = sum(s.n_incumbents * w for s, w in parts)
    values = {p: sum(getattr(s, p) * w for s, w in parts) for p in PERCENTILES}
    return FamilyStats(n_orgs=round_count(orgs), n_incumbents=round_count(incumbents), **values)


def _blend_across_years(
    config: BlendConfig,
    per_year: dict[str, list[AggregatedRecord]],
) -> tuple[list[AggregatedRecord], list[str]]:
    """Stage 2. Returns the blended records and the specialties missing from some year."""
    weights = _year_weights(config, per_year)
    by_specialty = {
        year: {r.specialty: r for r in records} for year, records in per_year.items()
    }

    specialties: OrderedDict[str, None] = OrderedDict()
    for records in per_year.values():
        for r in records:
            specialties.setdefault(r.specialty, None)

    label = _year_label(config)
    source = BLEND_SOURCES[config.method]
    blended: list[AggregatedRecord] = []
    incomplete: list[str] = []
    for specialty in specialties:
        present = [
            (by_specialty[y.year][specialty], weights.get(y.year, 0.0))
            for y in config.years
            if specialty in by_specialty.get(y.year, {})
        ]
        if len(present) < len(config.years):
            incomplete.append(specialty)
        families: dict[MetricFamily, FamilyStats] = {
            fam: _combine([(rec.family(fam), w) for rec, w in present]) for fam in FAMILIES
        }
        blended.append(
            AggregatedRecord(
                specialty=specialty,
                provider_type=BLEND_PROVIDER_TYPE,
                region=BLEND_REGION,
                survey_source=source,
                survey_year=label,
                **{fam.value: stats for fam, stats in families.items()},
            )
        )
    return blended, incomplete


def blend_confidence(total_sample: int, year_count: int) -> float:
    """Sample-size confidence, penalized for each extra year and clamped to [0, 1]."""
    confidence = min(total_sample / FULL_CONFIDENCE_SAMPLE, 1.0)
    confidence *= 1 - (year_count - 1) * YEAR_PENALTY
    return max(0.0, min(1.0, confidence))


def _quality_warnings(
    config: BlendConfig,
    per_year: dict[str, list[AggregatedRecord]],
    confidence: float,
    incomplete: list[str],
) -> list[str]:
    warnings: list[str] = []
    if confidence < LOW_CONFIDENCE:
        warnings.append("Low confidence: Limited sample size across years")

    for y in config.years:
        if not per_year.get(y.year):
            warnings.append(f"No data available for year {y.year}")

    samples = [_tcc_sample(per_year.get(y.year, [])) for y in config.years]
    largest, smallest = max(samples), min(samples)
    if largest > 0 and smallest / largest < IMBALANCE_RATIO:
        warnings.append("Imbalanced sample sizes across years - consider using weighted blending")

    if incomplete:
        warnings.append(
            f"{len(incomplete)} specialties are missing from at least one year "
            f"and are under-weighted: {', '.join(incomplete)}"
        )
    return warnings


def blend(records: Sequence[AggregatedRecord], config: BlendConfig) -> BlendResult:
    """Blend year-partitioned records according to `config`.

    Args:
        records: Aggregated records carrying a `survey_year`
            (from `aggregate(..., by_year=True)`).
        config: Method and years to blend.

    Returns:
        BlendResult with one blended record per specialty.

    Raises:
        BlendConfigError: if the config has no years or, for the percentage
            method, the percentages do not sum to 100.
    """
    validate_blend_config(config)
    method: BlendMethod = config.method

    raw_by_year: dict[str, list[AggregatedRecord]] = {
        y.year: [r for r in records if r.survey_year == y.year] for y in config.years
    }
    per_year: dict[str, list[AggregatedRecord]] = {}
    for year, year_records in raw_by_year.items():
        if not year_records:
            log.warning("No records for blend year %s", year)
            continue
        per_year[year] = _collapse_year(year, year_records)

    blended, incomplete = _blend_across_years(config, per_year)

    total_sample = sum(_tcc_sample(rs) for rs in per_year.values())
    confidence = blend_confidence(total_sample, len(config.years))
    warnings = _quality_warnings(config, per_year, confidence, incomplete)

    breakdown = {
        y.year: YearBreakdown(
            records=per_year.get(y.year, []),
            sample_size=_tcc_sample(per_year.get(y.year, [])),
            survey_count=len({r.survey_source for r in raw_by_year[y.year]}),
            contribution=y.percentage or 0.0,
        )
        for y in config.years
    }
    total_surveys = sum(len({r.survey_source for r in rs}) for rs in raw_by_year.values())

    log.info(
        "Blended %d specialties over %d years (%s): confidence=%.2f, %d warnings",
        len(blended),
        len(config.years),
        method,
        confidence,
        len(warnings),
    )
    return BlendResult(
        blended_data=blended,
        year_breakdown=breakdown,
        confidence=confidence,
        quality_warnings=warnings,
        total_sample_size=total_sample,
        total_survey_count=total_surveys,
        years_included=[y.year for y in config.years],
        blending_method=method,
    )
