from __future__ import annotations

import math

import pytest

from survey_benchmarks.clean.columns import (
    SPECIALTY_KEYS,
    cue_family,
    first_present,
    scan_columns,
    to_count,
    to_number,
)
from survey_benchmarks.models import MetricFamily


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("$1,234.50", 1234.5),
        (" 42 ", 42.0),
        (7, 7.0),
        ("***", 0.0),
        ("n/a", 0.0),
        ("", 0.0),
        (None, 0.0),
        ("abc", 0.0),
        (math.nan, 0.0),
        (math.inf, 0.0),
        (True, 0.0),
    ],
)
def test_to_number(raw: object, expected: float) -> None:
    assert to_number(raw) == expected


def test_to_count_rounds_and_clamps() -> None:
    assert to_count("12.6") == 13
    assert to_count(-4) == 0


def test_first_present_skips_blank_and_nan() -> None:
    row = {"specialty": "  ", "Specialty": math.nan, "Survey Specialty": "Cardiology"}
    assert first_present(row, SPECIALTY_KEYS) == "Cardiology"
    assert first_present({}, SPECIALTY_KEYS) is None


def test_cue_family_checks_ratio_cues_first() -> None:
    assert cue_family("TCC per wRVU 50th") is MetricFamily.CF
    assert cue_family("Work RVUs 50th") is MetricFamily.WRVU
    assert cue_family("Total Cash Comp 50th") is MetricFamily.TCC
    assert cue_family("Call Pay 50th") is None


def test_scan_columns_matches_percentile_and_family() -> None:
    row = {"Total Cash Comp 50th": "310,000", "Work RVUs 50th": 6100, "Total Cash Comp 75th": ""}
    assert scan_columns(row, MetricFamily.TCC, "p50") == "310,000"
    assert scan_columns(row, MetricFamily.WRVU, "p50") == 6100
    assert scan_columns(row, MetricFamily.TCC, "p75") is None
