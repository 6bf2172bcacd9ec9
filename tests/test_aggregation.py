from __future__ import annotations

import logging

import pytest
from conftest import make_row

from survey_benchmarks.aggregate.build_records import aggregate, rows_to_frame
from survey_benchmarks.models import FamilyStats, Percentiles

TCC = Percentiles(p25=250000, p50=300000, p75=350000, p90=400000)
WRVU = Percentiles(p25=4000, p50=5000, p75=6000, p90=7000)


def test_families_keep_their_own_provenance() -> None:
    rows = [
        make_row("Cardiology", n_orgs=3, n_incumbents=10, tcc=TCC),
        make_row("Cardiology", n_orgs=2, n_incumbents=8, wrvu=WRVU),
    ]
    [rec] = aggregate(rows)
    assert rec.tcc == FamilyStats(n_orgs=3, n_incumbents=10, **TCC.model_dump())
    assert rec.wrvu == FamilyStats(n_orgs=2, n_incumbents=8, **WRVU.model_dump())
    assert rec.cf == FamilyStats()
    assert rec.survey_year == "2024"


def test_cross_year_record_keeps_first_row_year() -> None:
    rows = [
        make_row("Cardiology", year="2023", tcc=Percentiles(p25=1.0)),
        make_row("Cardiology", year="2024", tcc=TCC),
    ]
    [rec] = aggregate(rows)
    assert rec.survey_year == "2023"
    assert rec.tcc.p50 == 300000
    assert rec.key == "Cardiology|Physician|National|SullivanCotter"
    assert rec.year_key == "Cardiology|Physician|National|SullivanCotter|2023"


def test_first_row_with_positive_median_is_representative() -> None:
    rows = [
        make_row("Cardiology", n_incumbents=99, tcc=Percentiles(p25=1.0)),
        make_row("Cardiology", n_incumbents=10, tcc=TCC),
        make_row("Cardiology", n_incumbents=50, tcc=Percentiles(p50=999999)),
    ]
    [rec] = aggregate(rows)
    assert rec.tcc.n_incumbents == 10
    assert rec.tcc.p50 == 300000


def test_groups_emitted_in_first_appearance_order() -> None:
    rows = [
        make_row("Urology", tcc=TCC),
        make_row("Cardiology", source="MGMA", tcc=TCC),
        make_row("Cardiology", tcc=TCC),
        make_row("Urology", region="West", tcc=TCC),
    ]
    keys = [r.key for r in aggregate(rows)]
    assert keys == [
        "Urology|Physician|National|SullivanCotter",
        "Cardiology|Physician|National|MGMA",
        "Cardiology|Physician|National|SullivanCotter",
        "Urology|Physician|West|SullivanCotter",
    ]


def test_by_year_splits_groups() -> None:
    rows = [make_row(year="2023", tcc=TCC), make_row(year="2024", tcc=TCC)]
    assert len(aggregate(rows)) == 1
    by_year = aggregate(rows, by_year=True)
    assert [r.survey_year for r in by_year] == ["2023", "2024"]


def test_chunk_size_does_not_change_result() -> None:
    rows = [make_row(s, tcc=TCC, wrvu=WRVU) for s in ("A", "B", "C", "A", "D")]
    assert aggregate(rows, chunk_size=1) == aggregate(rows, chunk_size=1000)
    assert len(rows_to_frame(rows, chunk_size=2)) == 5


def test_inverted_percentiles_are_logged_not_fixed(caplog: pytest.LogCaptureFixture) -> None:
    inverted = Percentiles(p25=500, p50=400, p75=300, p90=200)
    with caplog.at_level(logging.WARNING):
        [rec] = aggregate([make_row(tcc=inverted)])
    assert rec.tcc.p25 == 500
    assert "not monotonic" in caplog.text


def test_empty_input() -> None:
    assert aggregate([]) == []
