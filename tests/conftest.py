from __future__ import annotations

from typing import Any, Iterator

import pytest

from survey_benchmarks.config import Settings
from survey_benchmarks.models import (
    FAMILIES,
    AggregatedRecord,
    FamilyStats,
    NormalizedRow,
    Percentiles,
    SurveyMeta,
)
from survey_benchmarks.service import BenchmarkService
from survey_benchmarks.store import InMemoryDataStore


def make_row(
    specialty: str = "Cardiology",
    *,
    source: str = "SullivanCotter",
    year: str = "2024",
    region: str = "National",
    provider_type: str = "Physician",
    n_orgs: int = 5,
    n_incumbents: int = 10,
    **families: Percentiles,
) -> NormalizedRow:
    variables = {fam: families.get(fam.value, Percentiles()) for fam in FAMILIES}
    return NormalizedRow(
        specialty=specialty,
        provider_type=provider_type,
        region=region,
        survey_source=source,
        survey_year=year,
        n_orgs=n_orgs,
        n_incumbents=n_incumbents,
        variables=variables,
    )


def make_record(
    specialty: str = "Cardiology",
    *,
    source: str = "SullivanCotter",
    year: str = "2024",
    tcc_p50: float = 0.0,
    tcc_incumbents: int = 0,
    **extra: Any,
) -> AggregatedRecord:
    tcc = FamilyStats(
        n_orgs=extra.pop("tcc_orgs", 1),
        n_incumbents=tcc_incumbents,
        p25=tcc_p50 * 0.8,
        p50=tcc_p50,
        p75=tcc_p50 * 1.2,
        p90=tcc_p50 * 1.4,
    )
    return AggregatedRecord(
        specialty=specialty,
        provider_type=extra.pop("provider_type", "Physician"),
        region=extra.pop("region", "National"),
        survey_source=source,
        survey_year=year,
        tcc=tcc,
        **extra,
    )


def long_row(specialty: str, variable: str, p50: float, /, n_incumbents: int = 10, **extra: Any) -> dict[str, Any]:
    return {
        "specialty": specialty,
        "provider_type": "Physician",
        "geographic_region": "National",
        "variable": variable,
        "n_orgs": 4,
        "n_incumbents": n_incumbents,
        "p25": p50 * 0.8,
        "p50": p50,
        "p75": p50 * 1.2,
        "p90": p50 * 1.4,
        **extra,
    }


@pytest.fixture
def settings() -> Settings:
    return Settings(mongo_uri="mongodb://unused", mongo_db="test", survey_concurrency=2)


@pytest.fixture
def store() -> InMemoryDataStore:
    s = InMemoryDataStore()
    s.add_survey(
        SurveyMeta(id="s1", name="SullivanCotter 2023", type="SullivanCotter", year=2023, row_count=3),
        [
            long_row("Cardiology", "Total Cash Compensation", 500000, n_incumbents=300),
            long_row("Cardiology", "Work RVUs", 9000, n_incumbents=280),
            long_row("Dermatology", "Total Cash Compensation", 400000, n_incumbents=100),
        ],
    )
    s.add_survey(
        SurveyMeta(id="s2", name="Gallagher 2024", type="Gallagher", year=2024, row_count=2),
        [
            long_row("Cardiology", "Total Cash Compensation", 600000, n_incumbents=100),
            long_row("Cardiology", "TCC per Work RVU", 65, n_incumbents=90),
        ],
    )
    return s


@pytest.fixture
def service(store: InMemoryDataStore, settings: Settings) -> Iterator[BenchmarkService]:
    svc = BenchmarkService(store, settings)
    yield svc
    svc.close()

