from __future__ import annotations

from typing import Any, Mapping

import pytest
from conftest import long_row

from survey_benchmarks.blend import BlendConfigError
from survey_benchmarks.config import Settings
from survey_benchmarks.models import (
    AnalyticsFilters,
    BlendConfig,
    BlendYear,
    MappingKind,
    SurveyMeta,
    SurveyPage,
)
from survey_benchmarks.service import BenchmarkService
from survey_benchmarks.store import DEFAULT_PAGE_SIZE, InMemoryDataStore


class CountingStore(InMemoryDataStore):
    def __init__(self) -> None:
        super().__init__()
        self.page_requests = 0
        self.broken: set[str] = set()

    def get_survey_data(
        self,
        survey_id: str,
        filters: Mapping[str, Any] | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> SurveyPage:
        self.page_requests += 1
        if survey_id in self.broken:
            raise ConnectionError("vendor feed unavailable")
        return super().get_survey_data(survey_id, filters, limit, offset)


@pytest.fixture
def counting_store(store: InMemoryDataStore) -> CountingStore:
    s = CountingStore()
    for survey in store.get_all_surveys():
        s.add_survey(survey, store.get_survey_data(survey.id).rows)
    return s


def test_analytics_data_end_to_end(service: BenchmarkService) -> None:
    records = service.get_analytics_data()
    by_key = {r.key: r for r in records}
    cardio = by_key["cardiology|Physician|National|SullivanCotter"]
    assert cardio.tcc.p50 == 500000
    assert cardio.tcc.n_incumbents == 300
    assert cardio.wrvu.p50 == 9000
    assert cardio.wrvu.n_incumbents == 280
    assert cardio.cf.p50 == 0

    gallagher = by_key["cardiology|Physician|National|Gallagher"]
    assert gallagher.cf.p50 == 65
    assert len(records) == 3


def test_filters_are_applied(service: BenchmarkService) -> None:
    only = service.get_analytics_data(AnalyticsFilters(survey_source="gallagher"))
    assert [r.survey_source for r in only] == ["Gallagher"]
    assert service.get_analytics_data(AnalyticsFilters(survey_source="gallagher")) == only


def test_records_carry_their_survey_year(service: BenchmarkService) -> None:
    records = service.get_analytics_data()
    assert [r.survey_year for r in records] == ["2023", "2023", "2024"]

    only_2024 = service.get_analytics_data(AnalyticsFilters(year="2024"))
    assert [(r.survey_source, r.tcc.p50) for r in only_2024] == [("Gallagher", 600000)]
    assert len(service.get_analytics_data(AnalyticsFilters(year="All Years"))) == 3


def test_year_filter_finds_later_years_of_a_multi_year_group(
    counting_store: CountingStore, settings: Settings
) -> None:
    counting_store.add_survey(
        SurveyMeta(id="s3", name="SullivanCotter 2024", type="SullivanCotter", year=2024, row_count=1),
        [long_row("Cardiology", "Total Cash Compensation", 520000, n_incumbents=310)],
    )
    service = BenchmarkService(counting_store, settings)
    try:
        filters = AnalyticsFilters(year="2024", survey_source="SullivanCotter")
        [cardio] = service.get_analytics_data(filters)
        assert cardio.survey_year == "2024"
        assert cardio.tcc.p50 == 520000
        assert cardio.tcc.n_incumbents == 310
    finally:
        service.close()


def test_results_are_cached_until_cleared(counting_store: CountingStore, settings: Settings) -> None:
    service = BenchmarkService(counting_store, settings)
    try:
        first = service.get_analytics_data()
        baseline = counting_store.page_requests
        assert service.get_analytics_data() == first
        assert counting_store.page_requests == baseline

        service.clear_cache()
        service.get_analytics_data()
        assert counting_store.page_requests == baseline * 2
    finally:
        service.close()


def test_upstream_change_is_picked_up(counting_store: CountingStore, settings: Settings) -> None:
    service = BenchmarkService(counting_store, settings)
    try:
        assert len(service.get_analytics_data()) == 3
        counting_store.add_survey(
            SurveyMeta(id="s3", type="MGMA", year=2024, row_count=1),
            [long_row("Urology", "Total Cash Compensation", 450000)],
        )
        records = service.get_analytics_data()
        assert len(records) == 4
        assert any(r.survey_source == "MGMA" for r in records)
    finally:
        service.close()


def test_failing_survey_does_not_block_others(counting_store: CountingStore, settings: Settings) -> None:
    counting_store.broken.add("s2")
    service = BenchmarkService(counting_store, settings)
    try:
        records = service.get_analytics_data()
        assert {r.survey_source for r in records} == {"SullivanCotter"}
    finally:
        service.close()


def test_year_records_and_blend(service: BenchmarkService) -> None:
    years = {r.survey_year for r in service.get_year_records()}
    assert years == {"2023", "2024"}

    config = BlendConfig(
        method="percentage",
        years=[BlendYear(year="2023", percentage=50), BlendYear(year="2024", percentage=50)],
    )
    result = service.blend(config, AnalyticsFilters(specialty="Cardiology", year="2023"))
    [cardio] = result.blended_data
    # 2023: SullivanCotter 500000; 2024: Gallagher 600000
    assert cardio.tcc.p50 == pytest.approx(550000)
    assert result.total_sample_size == 400


def test_invalid_blend_fails_before_loading(counting_store: CountingStore, settings: Settings) -> None:
    service = BenchmarkService(counting_store, settings)
    try:
        config = BlendConfig(method="percentage", years=[BlendYear(year="2023", percentage=90)])
        with pytest.raises(BlendConfigError, match="90.0%"):
            service.blend(config)
        assert counting_store.page_requests == 0
    finally:
        service.close()


def test_learned_mappings_follow_the_survey_provider_type(settings: Settings) -> None:
    store = InMemoryDataStore()
    store.set_learned_mapping(MappingKind.SPECIALTY, "cards", "Cardiology", provider_type="Physician")
    store.add_survey(
        SurveyMeta(id="phys", type="MGMA", year=2024, provider_type="Physician"),
        [long_row("Cards", "Total Cash Compensation", 500000)],
    )
    store.add_survey(
        SurveyMeta(id="app", type="MGMA", year=2024, provider_type="APP"),
        [long_row("Cards", "Total Cash Compensation", 150000)],
    )
    service = BenchmarkService(store, settings)
    try:
        specialty_by_p50 = {r.tcc.p50: r.specialty for r in service.get_analytics_data()}
        assert specialty_by_p50 == {500000: "Cardiology", 150000: "cards"}
    finally:
        service.close()


def test_float_survey_years_blend_like_integer_years(settings: Settings) -> None:
    store = InMemoryDataStore()
    store.add_survey(
        SurveyMeta.model_validate({"id": "s1", "type": "MGMA", "year": 2023.0}),
        [long_row("Urology", "Total Cash Compensation", 400000, n_incumbents=50)],
    )
    store.add_survey(
        SurveyMeta.model_validate({"id": "s2", "type": "MGMA", "year": 2024.0}),
        [long_row("Urology", "Total Cash Compensation", 500000, n_incumbents=50)],
    )
    service = BenchmarkService(store, settings)
    try:
        result = service.blend(BlendConfig(method="equal", years=[BlendYear(year="2023"), BlendYear(year="2024")]))
        [urology] = result.blended_data
        assert urology.tcc.p50 == pytest.approx(450000)
        assert not any("No data" in w for w in result.quality_warnings)
    finally:
        service.close()
