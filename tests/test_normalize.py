from __future__ import annotations

from conftest import long_row

from survey_benchmarks.clean.normalize import normalize_row, normalize_rows
from survey_benchmarks.models import (
    ColumnMapping,
    MappingKind,
    MappingTables,
    MetricFamily,
    Percentiles,
    SourceColumn,
    SurveyMeta,
)

SURVEY = SurveyMeta(id="s1", name="MGMA 2024", type="MGMA", year="2024", provider_type="Physician")


def test_long_format_row_fills_one_family() -> None:
    row = normalize_row(long_row("Cardiology", "Total Cash Compensation", 500000), SURVEY, MappingTables())
    assert row.family(MetricFamily.TCC).p50 == 500000
    assert row.family(MetricFamily.TCC).p90 == 500000 * 1.4
    assert row.family(MetricFamily.WRVU) == Percentiles()
    assert row.family(MetricFamily.CF) == Percentiles()
    assert (row.n_orgs, row.n_incumbents) == (4, 10)
    assert row.survey_source == "MGMA"
    assert row.survey_year == "2024"


def test_long_format_ratio_is_cf_even_with_large_median() -> None:
    row = normalize_row(long_row("Cardiology", "TCC per Work RVU", 5000), SURVEY, MappingTables())
    assert row.family(MetricFamily.CF).p50 == 5000
    assert row.family(MetricFamily.WRVU).p50 == 0


def test_learned_variable_mapping_is_applied_before_classification() -> None:
    tables = MappingTables(learned={MappingKind.VARIABLE: {"prod": "Work RVUs"}})
    row = normalize_row(long_row("Cardiology", "Prod", 7200), SURVEY, tables)
    assert row.family(MetricFamily.WRVU).p50 == 7200


def test_wide_format_aliases() -> None:
    raw = {
        "Specialty": "Dermatology",
        "Region": "Northeast",
        "n_incumbents": "1,200",
        "TCC P25": "$300,000",
        "TCC P50": "$350,000",
        "wRVU_p50": 6200,
        "CF Median": "55.10",
    }
    row = normalize_row(raw, SURVEY, MappingTables())
    assert row.specialty == "dermatology"
    assert row.region == "Northeast"
    assert row.n_incumbents == 1200
    assert row.family(MetricFamily.TCC).p25 == 300000
    assert row.family(MetricFamily.TCC).p50 == 350000
    assert row.family(MetricFamily.WRVU).p50 == 6200
    assert row.family(MetricFamily.CF).p50 == 55.10


def test_wide_format_mapped_columns_and_scan_fallback() -> None:
    tables = MappingTables(
        column_mappings=[
            ColumnMapping(standardized_name="tcc_p50", source_columns=[SourceColumn(name="Comp Median")]),
        ]
    )
    raw = {
        "specialty": "Urology",
        "Comp Median": 410000,
        "Total Cash Comp 90th": "620000",
        "Work RVUs 50th": "7,100",
    }
    row = normalize_row(raw, SURVEY, tables)
    assert row.family(MetricFamily.TCC).p50 == 410000
    assert row.family(MetricFamily.TCC).p90 == 620000
    assert row.family(MetricFamily.WRVU).p50 == 7100


def test_suppressed_and_missing_values_read_as_zero() -> None:
    raw = long_row("Cardiology", "Total Cash Compensation", 0, p25="***", p50="", p75=None, p90="n/a")
    row = normalize_row(raw, SURVEY, MappingTables())
    assert row.family(MetricFamily.TCC) == Percentiles()


def test_missing_dimensions_use_defaults() -> None:
    survey = SurveyMeta(id="s9", type="Gallagher", provider_type="APP")
    row = normalize_row({"tcc_p50": 100000}, survey, MappingTables())
    assert row.specialty == "Unknown"
    assert row.region == "National"
    assert row.provider_type == "Advanced Practice Provider"
    assert row.survey_year == "Unknown"


def test_normalize_is_idempotent() -> None:
    raw = long_row("Pulmonary and Critical Care", "Work RVUs", 800)
    first = normalize_rows([raw, raw], SURVEY, MappingTables())
    second = normalize_rows([raw, raw], SURVEY, MappingTables())
    assert first == second
    assert first[0] == first[1]
    assert first[0].family(MetricFamily.CF).p50 == 800
