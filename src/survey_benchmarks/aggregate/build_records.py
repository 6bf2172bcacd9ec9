"""Group normalized rows into aggregated benchmark records.

Expectations:
- Input: `NormalizedRow` objects, in the order the surveys delivered them.
- Output: one `AggregatedRecord` per group, in first-appearance order.

Surveys already publish percentiles, so nothing is recomputed here. For each
group and each metric family the first row whose family median is positive
is the representative: its sample sizes and four percentiles are copied
verbatim. Families are resolved independently, so a group's TCC and wRVU
numbers may come from different rows.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, Sequence

import pandas as pd

from survey_benchmarks.models import FAMILIES, PERCENTILES, AggregatedRecord, MetricFamily, NormalizedRow

log = logging.getLogger(__name__)

GROUP_COLUMNS: list[str] = ["specialty", "provider_type", "region", "survey_source"]
COUNT_COLUMNS: tuple[str, ...] = ("n_orgs", "n_incumbents")
CHUNK_SIZE = 1000


def _chunks(data: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    """Yield slices of `data` in batches of `size`."""
    for i in range(0, len(data), size):
        yield data[i : i + size]


def group_columns(by_year: bool = False) -> list[str]:
    return GROUP_COLUMNS + ["survey_year"] if by_year else list(GROUP_COLUMNS)


def rows_to_frame(rows: Sequence[NormalizedRow], chunk_size: int = CHUNK_SIZE) -> pd.DataFrame:
    """Flatten normalized rows into one DataFrame, building it chunk by chunk.

    Args:
        rows: Normalized rows.
        chunk_size: Rows flattened per chunk; has no effect on the result.

    Returns:
        DataFrame with the dimension columns, `n_orgs`, `n_incumbents` and
        `tcc_p25` ... `cf_p90`, indexed by input position.
    """
    if not rows:
        return pd.DataFrame(columns=group_columns(True) + list(COUNT_COLUMNS))
    frames = [
        pd.DataFrame.from_records([r.to_flat() for r in chunk])
        for chunk in _chunks(rows, max(1, chunk_size))
    ]
    return pd.concat(frames, ignore_index=True)


def _family_representatives(df: pd.DataFrame, family: MetricFamily, keys: list[str]) -> pd.DataFrame:
    """First row per group with a positive family median, renamed to family columns."""
    fam = family.value
    value_cols = [f"{fam}_{p}" for p in PERCENTILES]
    reps = df[df[f"{fam}_p50"] > 0].drop_duplicates(subset=keys, keep="first")
    reps = reps[keys + list(COUNT_COLUMNS) + value_cols]
    return reps.rename(columns={c: f"{fam}_{c}" for c in COUNT_COLUMNS})


def aggregate(
    rows: Sequence[NormalizedRow],
    by_year: bool = False,
    chunk_size: int = CHUNK_SIZE,
) -> list[AggregatedRecord]:
    """Aggregate normalized rows into one record per group.

    Args:
        rows: Normalized rows.
        by_year: Also split groups by `survey_year` (used for blending).
        chunk_size: Rows per chunk while building the frame.

    Returns:
        Aggregated records in first-appearance order. Families with no
        representative row are all zeros. When `by_year` is False each
        record carries the `survey_year` of its group's first row.
    """
    if not rows:
        return []

    keys = group_columns(by_year)
    df = rows_to_frame(rows, chunk_size)

    head_cols = keys if by_year else keys + ["survey_year"]
    out = df[head_cols].drop_duplicates(subset=keys, keep="first").reset_index(drop=True)
    for family in FAMILIES:
        out = out.merge(_family_representatives(df, family, keys), on=keys, how="left", sort=False)

    metric_cols = [c for c in out.columns if c not in head_cols]
    out[metric_cols] = out[metric_cols].fillna(0)

    records = [AggregatedRecord.from_flat(flat) for flat in out.to_dict("records")]

    inverted = sum(
        1 for rec in records for fam in FAMILIES
        if rec.family(fam).has_data and not rec.family(fam).is_monotonic
    )
    if inverted:
        log.warning("%d family percentile sets are not monotonic (kept as published)", inverted)

    log.info("Aggregated %d rows into %d records (by_year=%s)", len(rows), len(records), by_year)
    return records
