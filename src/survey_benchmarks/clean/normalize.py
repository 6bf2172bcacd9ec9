"""Row normalization: one heterogeneous raw row → one `NormalizedRow`.

Two raw layouts are supported:

- long format: the row has a `variable` column and carries one metric
  family in generic `p25`..`p90` columns;
- wide format: the row carries every family in its own columns
  (`tcc_p50`, `wRVU P75`, `CF Median` ...).

Normalization is a pure function of (row, survey, mapping tables) and never
fails: unreadable values become 0.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from survey_benchmarks.clean.classify import classify_variable
from survey_benchmarks.clean.columns import (
    LONG_PERCENTILE_KEYS,
    N_INCUMBENTS_KEYS,
    N_ORGS_KEYS,
    PROVIDER_TYPE_KEYS,
    REGION_KEYS,
    SPECIALTY_KEYS,
    VARIABLE_KEYS,
    WIDE_METRIC_KEYS,
    first_present,
    scan_columns,
    to_count,
    to_number,
)
from survey_benchmarks.clean.resolve import CategoricalResolver
from survey_benchmarks.models import (
    FAMILIES,
    PERCENTILES,
    MappingKind,
    MappingTables,
    MetricFamily,
    NormalizedRow,
    Percentiles,
    SurveyMeta,
    lift_flat_metrics,
)

log = logging.getLogger(__name__)


def _long_format_metrics(
    row: Mapping[str, Any],
    variable: Any,
    resolver: CategoricalResolver,
) -> dict[MetricFamily, Percentiles]:
    """Read the generic percentile columns and file them under one family."""
    values = {p: to_number(first_present(row, LONG_PERCENTILE_KEYS[p])) for p in PERCENTILES}
    name = resolver.learned(MappingKind.VARIABLE, variable) or str(variable)
    family = classify_variable(name, values["p50"])

    metrics = {fam: Percentiles() for fam in FAMILIES}
    if family is None:
        log.debug("Unclassified variable %r; row carries no metrics", name)
    else:
        metrics[family] = Percentiles(**values)
    return metrics


def _wide_format_metrics(
    row: Mapping[str, Any],
    survey_source: str,
    resolver: CategoricalResolver,
) -> dict[MetricFamily, Percentiles]:
    """Probe mapped columns, then aliases, then a substring scan per field."""
    mapped: dict[str, Any] = {}
    for column, value in row.items():
        target = resolver.column_target(str(column), survey_source)
        if target in WIDE_METRIC_KEYS:
            mapped.setdefault(target, value)

    flat: dict[str, float] = {}
    for field, aliases in WIDE_METRIC_KEYS.items():
        value = mapped.get(field)
        if value is None:
            value = first_present(row, aliases)
        if value is None:
            family, pct = field.split("_", 1)
            value = scan_columns(row, MetricFamily(family), pct)
        flat[field] = to_number(value)
    return lift_flat_metrics(flat)


def normalize_row(
    raw_row: Mapping[str, Any],
    survey: SurveyMeta,
    tables: MappingTables,
    resolver: CategoricalResolver | None = None,
) -> NormalizedRow:
    """Normalize one raw survey row.

    Args:
        raw_row: The row as stored, any layout.
        survey: Metadata of the survey the row belongs to.
        tables: Mapping tables used for dimension and column resolution.
        resolver: Prebuilt resolver for `tables`; built on the fly when omitted.

    Returns:
        A frozen `NormalizedRow` with all twelve percentile fields populated.
    """
    resolver = resolver or CategoricalResolver(tables)
    source = survey.source

    specialty = resolver.resolve(MappingKind.SPECIALTY, first_present(raw_row, SPECIALTY_KEYS), source)
    provider_type = resolver.resolve(
        MappingKind.PROVIDER_TYPE,
        first_present(raw_row, PROVIDER_TYPE_KEYS) or survey.provider_type,
        source,
    )
    region = resolver.resolve(MappingKind.REGION, first_present(raw_row, REGION_KEYS), source)

    variable = first_present(raw_row, VARIABLE_KEYS)
    if variable is not None:
        variables = _long_format_metrics(raw_row, variable, resolver)
    else:
        variables = _wide_format_metrics(raw_row, source, resolver)

    return NormalizedRow(
        specialty=specialty,
        provider_type=provider_type,
        region=region,
        survey_source=source,
        survey_year=survey.year or "Unknown",
        n_orgs=to_count(first_present(raw_row, N_ORGS_KEYS)),
        n_incumbents=to_count(first_present(raw_row, N_INCUMBENTS_KEYS)),
        variables=variables,
        raw_data=dict(raw_row),
    )


def normalize_rows(
    rows: Iterable[Mapping[str, Any]],
    survey: SurveyMeta,
    tables: MappingTables,
) -> list[NormalizedRow]:
    """Normalize every row of one survey with a single shared resolver."""
    resolver = CategoricalResolver(tables)
    out = [normalize_row(r, survey, tables, resolver) for r in rows]
    log.debug("Normalized %d rows for survey %s", len(out), survey.id)
    return out
