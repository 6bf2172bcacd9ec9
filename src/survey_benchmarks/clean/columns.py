"""Column alias tables and the small helpers that probe raw rows with them.

Survey vendors spell the same field many ways (`tcc_p50`, `TCC P50`,
`TCC Median` ...). Every field the normalizer reads is described here as an
ordered tuple of candidate keys; `first_present` evaluates them in order.
"""
from __future__ import annotations

import math
import re
from typing import Any, Mapping, Sequence

from survey_benchmarks.models import FAMILIES, PERCENTILES, MetricFamily

# -----------------------------
# Dimension aliases
# -----------------------------
SPECIALTY_KEYS: tuple[str, ...] = (
    "specialty", "Specialty", "SPECIALTY",
    "survey_specialty", "surveySpecialty", "Survey Specialty",
    "normalized_specialty", "normalizedSpecialty",
)
PROVIDER_TYPE_KEYS: tuple[str, ...] = (
    "provider_type", "providerType", "Provider Type", "PROVIDER_TYPE",
    "provider type", "ProviderType",
)
REGION_KEYS: tuple[str, ...] = (
    "geographic_region", "geographicRegion", "Geographic Region",
    "region", "Region", "REGION",
)
VARIABLE_KEYS: tuple[str, ...] = ("variable", "Variable", "VARIABLE")

N_ORGS_KEYS: tuple[str, ...] = (
    "n_orgs", "N_orgs", "n_org", "N_org", "N Orgs", "# Orgs",
    "num_orgs", "Number of Organizations",
)
N_INCUMBENTS_KEYS: tuple[str, ...] = (
    "n_incumbents", "N_incumbents", "n_incumbent", "N_incumbent",
    "N Incumbents", "# Incumbents", "num_incumbents", "Number of Incumbents",
)

# -----------------------------
# Long format percentile aliases
# -----------------------------
_ORDINAL = {"p25": "25th", "p50": "50th", "p75": "75th", "p90": "90th"}

LONG_PERCENTILE_KEYS: dict[str, tuple[str, ...]] = {
    p: (p, p.upper(), f"p_{p[1:]}", f"P_{p[1:]}", _ORDINAL[p], f"{_ORDINAL[p]} Percentile")
    for p in PERCENTILES
}
LONG_PERCENTILE_KEYS["p50"] += ("median", "Median")

# -----------------------------
# Wide format aliases
# -----------------------------
_FAMILY_LABELS: dict[MetricFamily, tuple[str, ...]] = {
    MetricFamily.TCC: ("tcc", "TCC"),
    MetricFamily.WRVU: ("wrvu", "wRVU", "WRVU"),
    MetricFamily.CF: ("cf", "CF"),
}


def _wide_aliases(family: MetricFamily, pct: str) -> tuple[str, ...]:
    keys: list[str] = []
    for label in _FAMILY_LABELS[family]:
        keys += [f"{label}_{pct}", f"{label} {pct.upper()}", f"{label}_{pct.upper()}", f"{label} {pct}"]
    if pct == "p50":
        keys += [f"{label} Median" for label in _FAMILY_LABELS[family]]
    return tuple(dict.fromkeys(keys))


WIDE_METRIC_KEYS: dict[str, tuple[str, ...]] = {
    f"{fam.value}_{p}": _wide_aliases(fam, p) for fam in FAMILIES for p in PERCENTILES
}

# Substring cues for the last-resort column scan, in priority order.
# Ratio columns ("TCC per wRVU") mention rvu too, so CF is checked first.
FAMILY_CUES: tuple[tuple[MetricFamily, tuple[str, ...]], ...] = (
    (MetricFamily.CF, ("per rvu", "per wrvu", "per work rvu", "cf", "conversion", "factor")),
    (MetricFamily.WRVU, ("wrvu", "rvu", "work")),
    (MetricFamily.TCC, ("tcc", "compensation", "cash")),
)
PERCENTILE_CUES: dict[str, str] = {"p25": "25", "p50": "50", "p75": "75", "p90": "90"}

MISSING_TOKENS = frozenset({"", "***", "null", "undefined", "nan", "n/a", "na", "-", "--"})

_STRIP_RE = re.compile(r"[,$\s]")


def to_number(value: Any) -> float:
    """Coerce a survey cell into a float; anything unusable becomes 0.

    Never raises: suppressed cells (`***`), blanks and parse failures all
    read as 0, which downstream code treats as "no data".
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        f = float(value)
        return f if math.isfinite(f) else 0.0
    text = str(value).strip()
    if text.lower() in MISSING_TOKENS:
        return 0.0
    try:
        f = float(_STRIP_RE.sub("", text))
    except ValueError:
        return 0.0
    return f if math.isfinite(f) else 0.0


def to_count(value: Any) -> int:
    """Like `to_number` but rounded and clamped at zero, for sample sizes."""
    return max(0, int(round(to_number(value))))


def first_present(row: Mapping[str, Any], keys: Sequence[str]) -> Any:
    """Return the value under the first candidate key that holds something.

    A key "holds something" when present and not None / blank string.
    Returns None when no candidate matches.
    """
    for key in keys:
        if key not in row:
            continue
        value = row[key]
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        if isinstance(value, float) and math.isnan(value):
            continue
        return value
    return None


def scan_columns(row: Mapping[str, Any], family: MetricFamily, pct: str) -> Any:
    """Recover a value from an idiosyncratically named column.

    A column qualifies when its lower-cased name carries the percentile
    number and its highest-priority family cue is `family`.
    """
    number = PERCENTILE_CUES[pct]
    for column, value in row.items():
        name = str(column).lower()
        if number not in name:
            continue
        if cue_family(name) is family and to_number(value) != 0:
            return value
    return None


def cue_family(column_name: str) -> MetricFamily | None:
    """Return the family whose substring cue matches first, or None."""
    name = column_name.lower()
    for family, cues in FAMILY_CUES:
        if any(cue in name for cue in cues):
            return family
    return None
