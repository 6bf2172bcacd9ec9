"""Metric-family classification for long-format survey rows.

A long-format row names its metric in a free-text `variable` column
("Total Cash Compensation", "Work RVUs", "TCC per Work RVU" ...). The names
overlap ("TCC per Work RVU" contains "work rvu"), so classification is an
ordered rule table: the first matching rule decides.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

from survey_benchmarks.models import MetricFamily

# A "wRVU" p50 at or below this is almost always a conversion factor
# mislabeled by the vendor.
# TODO: use an explicit unit column once vendors supply one.
WRVU_MAGNITUDE_THRESHOLD = 1000.0

_WS_RE = re.compile(r"\s+")


def classify_by_magnitude(p50: float) -> MetricFamily:
    """Split an ambiguous wRVU-labelled row into wRVU or CF by its median."""
    return MetricFamily.WRVU if p50 > WRVU_MAGNITUDE_THRESHOLD else MetricFamily.CF


def _work_rvu_family(text: str, p50: float) -> MetricFamily:
    if "per" in text or "conversion" in text:
        return MetricFamily.CF
    return classify_by_magnitude(p50)


@dataclass(frozen=True)
class ClassificationRule:
    """One row of the rule table.

    Attributes:
        name: Short identifier, used in logs and tests.
        contains: Substrings; any one matching triggers the rule.
        equals: Whole-text matches; any one matching triggers the rule.
        family: Family assigned when `refine` is not set.
        refine: Optional `(text, p50) -> family` for rules that need the value.
    """
    name: str
    contains: tuple[str, ...] = ()
    equals: tuple[str, ...] = ()
    family: MetricFamily | None = None
    refine: Callable[[str, float], MetricFamily] | None = None

    def matches(self, text: str) -> bool:
        return text in self.equals or any(s in text for s in self.contains)

    def decide(self, text: str, p50: float) -> MetricFamily | None:
        if self.refine is not None:
            return self.refine(text, p50)
        return self.family


VARIABLE_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(
        name="cf_ratio",
        contains=("per work rvu", "per wrvu", "conversion factor"),
        family=MetricFamily.CF,
    ),
    ClassificationRule(
        name="tcc",
        equals=("tcc",),
        contains=("total cash compensation", "total compensation", "cash compensation", "total comp"),
        family=MetricFamily.TCC,
    ),
    ClassificationRule(
        name="work_rvu",
        contains=("work rvu", "wrvu"),
        refine=_work_rvu_family,
    ),
    ClassificationRule(
        name="cf",
        contains=("cf", "conversion"),
        family=MetricFamily.CF,
    ),
)


def normalize_variable(variable: str) -> str:
    return _WS_RE.sub(" ", str(variable).strip().lower())


def classify_variable(variable: str, p50: float) -> MetricFamily | None:
    """Return the metric family for a long-format variable name.

    Args:
        variable: Raw `variable` text from the row.
        p50: The row's median, consulted only by the wRVU magnitude rule.

    Returns:
        The family, or None when no rule matches (the row carries no metrics).
    """
    text = normalize_variable(variable)
    for rule in VARIABLE_RULES:
        if rule.matches(text):
            return rule.decide(text, p50)
    return None
