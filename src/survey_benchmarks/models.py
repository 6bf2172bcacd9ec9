"""Pydantic models shared by every layer of the engine.

Raw survey rows stay plain dicts; everything from the normalized layer on is
described here. Metric values are always carried per family
(`MetricFamily` → `Percentiles`/`FamilyStats`); the flat `tcc_p50`-style
shape only exists at the edges via `lift_flat_metrics` and `to_flat`.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

PERCENTILES: tuple[str, ...] = ("p25", "p50", "p75", "p90")

RawRow = dict[str, Any]


class MetricFamily(str, Enum):
    """The three independent percentile families reported by surveys."""
    TCC = "tcc"
    WRVU = "wrvu"
    CF = "cf"


FAMILIES: tuple[MetricFamily, ...] = (MetricFamily.TCC, MetricFamily.WRVU, MetricFamily.CF)


class MappingKind(str, Enum):
    """Kinds of learned (human-curated) mapping tables."""
    SPECIALTY = "specialty"
    COLUMN = "column"
    REGION = "region"
    VARIABLE = "variable"
    PROVIDER_TYPE = "provider_type"


# =========================================================
# METRICS
# =========================================================

class Percentiles(BaseModel):
    """p25/p50/p75/p90 for one metric family of one row."""
    model_config = ConfigDict(frozen=True)
    p25: float = 0.0
    p50: float = 0.0
    p75: float = 0.0
    p90: float = 0.0


class FamilyStats(BaseModel):
    """Percentiles plus the sample sizes that produced them.

    `p25 <= p50 <= p75 <= p90` is expected but not enforced: survey
    vendors occasionally publish inverted values and those are reported as-is.
    """
    model_config = ConfigDict(frozen=True)
    n_orgs: int = 0
    n_incumbents: int = 0
    p25: float = 0.0
    p50: float = 0.0
    p75: float = 0.0
    p90: float = 0.0

    @property
    def has_data(self) -> bool:
        return self.p50 > 0

    @property
    def is_monotonic(self) -> bool:
        return self.p25 <= self.p50 <= self.p75 <= self.p90


def as_text(value: Any) -> str:
    """Text form of an id or year; integral floats (`2024.0`) lose the `.0`."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def lift_flat_metrics(flat: Mapping[str, Any]) -> dict[MetricFamily, Percentiles]:
    """Lift flat `tcc_p25`..`cf_p90` fields into the per-family shape.

    Missing fields become 0. Values are expected to be numeric already.
    """
    return {
        family: Percentiles(**{p: float(flat.get(f"{family.value}_{p}") or 0) for p in PERCENTILES})
        for family in FAMILIES
    }


# =========================================================
# NORMALIZED LAYER
# =========================================================

class NormalizedRow(BaseModel):
    """One raw survey row after dimension resolution and metric extraction.

    `variables` always holds all three families; families the row does not
    report are zero-valued.
    """
    model_config = ConfigDict(frozen=True)
    specialty: str
    provider_type: str
    region: str
    survey_source: str
    survey_year: str
    n_orgs: int = Field(0, ge=0)
    n_incumbents: int = Field(0, ge=0)
    variables: dict[MetricFamily, Percentiles]
    raw_data: dict[str, Any] = Field(default_factory=dict)

    def family(self, family: MetricFamily) -> Percentiles:
        return self.variables.get(family) or Percentiles()

    def to_flat(self) -> dict[str, Any]:
        """Return the flat shape (`tcc_p25` ... `cf_p90`) without raw data."""
        out: dict[str, Any] = {
            "specialty": self.specialty,
            "provider_type": self.provider_type,
            "region": self.region,
            "survey_source": self.survey_source,
            "survey_year": self.survey_year,
            "n_orgs": self.n_orgs,
            "n_incumbents": self.n_incumbents,
        }
        for fam in FAMILIES:
            pct = self.family(fam)
            for p in PERCENTILES:
                out[f"{fam.value}_{p}"] = getattr(pct, p)
        return out


# =========================================================
# AGGREGATED LAYER
# =========================================================

class AggregatedRecord(BaseModel):
    """Percentile benchmarks for one specialty/provider-type/region/source group."""
    model_config = ConfigDict(frozen=True)
    specialty: str
    provider_type: str
    region: str
    survey_source: str
    survey_year: str = ""
    tcc: FamilyStats = Field(default_factory=FamilyStats)
    wrvu: FamilyStats = Field(default_factory=FamilyStats)
    cf: FamilyStats = Field(default_factory=FamilyStats)

    @property
    def key(self) -> str:
        """Cross-year group key; `survey_year` is not part of it."""
        return "|".join([self.specialty, self.provider_type, self.region, self.survey_source])

    @property
    def year_key(self) -> str:
        return f"{self.key}|{self.survey_year}"

    def family(self, family: MetricFamily) -> FamilyStats:
        return getattr(self, family.value)

    def to_flat(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "specialty": self.specialty,
            "provider_type": self.provider_type,
            "region": self.region,
            "survey_source": self.survey_source,
            "survey_year": self.survey_year,
        }
        for fam in FAMILIES:
            for field, value in self.family(fam).model_dump().items():
                out[f"{fam.value}_{field}"] = value
        return out

    @classmethod
    def from_flat(cls, flat: Mapping[str, Any]) -> "AggregatedRecord":
        """Build a record from the flat `tcc_n_orgs` ... `cf_p90` shape."""
        families = {
            fam.value: FamilyStats(
                n_orgs=int(flat.get(f"{fam.value}_n_orgs") or 0),
                n_incumbents=int(flat.get(f"{fam.value}_n_incumbents") or 0),
                **lift_flat_metrics(flat)[fam].model_dump(),
            )
            for fam in FAMILIES
        }
        return cls(
            specialty=str(flat.get("specialty", "")),
            provider_type=str(flat.get("provider_type", "")),
            region=str(flat.get("region", "")),
            survey_source=str(flat.get("survey_source", "")),
            survey_year=as_text(flat.get("survey_year")),
            **families,
        )


class AnalyticsFilters(BaseModel):
    """Optional equality filters applied to aggregated records."""
    model_config = ConfigDict(frozen=True)
    specialty: str | None = None
    survey_source: str | None = None
    region: str | None = None
    provider_type: str | None = None
    year: str | None = None


# =========================================================
# DATA STORE SHAPES
# =========================================================

class SurveyMeta(BaseModel):
    """Survey-level metadata as supplied by the data store."""
    model_config = ConfigDict(extra="ignore")
    id: str
    name: str = ""
    type: str = ""
    year: str = ""
    row_count: int = Field(0, ge=0)
    specialty_count: int = Field(0, ge=0)
    upload_date: datetime | None = None
    provider_type: str | None = None

    @field_validator("id", "year", mode="before")
    @classmethod
    def _stringify(cls, v: Any) -> Any:
        # Mongo ObjectIds and numeric years both arrive here.
        return as_text(v)

    @property
    def source(self) -> str:
        return self.type or self.name or "Unknown"


class SurveyPage(BaseModel):
    """One page of raw rows returned by `get_survey_data`."""
    rows: list[dict[str, Any]] = Field(default_factory=list)
    total: int = 0
    offset: int = 0


class SourceSpecialty(BaseModel):
    specialty: str
    survey_source: str


class SpecialtyMapping(BaseModel):
    model_config = ConfigDict(extra="ignore")
    standardized_name: str
    source_specialties: list[SourceSpecialty] = Field(default_factory=list)


class SourceColumn(BaseModel):
    name: str
    survey_source: str | None = None


class ColumnMapping(BaseModel):
    """Maps vendor column names onto a canonical field such as `tcc_p50`."""
    model_config = ConfigDict(extra="ignore")
    standardized_name: str
    source_columns: list[SourceColumn] = Field(default_factory=list)


class RegionMapping(BaseModel):
    model_config = ConfigDict(extra="ignore")
    standardized_region: str
    variants: list[str] = Field(default_factory=list)


class MappingTables(BaseModel):
    """Every mapping table the normalizer consults, fetched once per load."""
    specialty_mappings: list[SpecialtyMapping] = Field(default_factory=list)
    column_mappings: list[ColumnMapping] = Field(default_factory=list)
    region_mappings: list[RegionMapping] = Field(default_factory=list)
    learned: dict[MappingKind, dict[str, str]] = Field(default_factory=dict)


# =========================================================
# BLENDING
# =========================================================

BlendMethod = Literal["percentage", "weighted", "equal"]


class BlendYear(BaseModel):
    """One year of a blend request.

    `percentage` is read by the `percentage` method only. `weight` is
    informational, like `BlendConfig.total_percentage`: effective year
    weights always come from the blend method.
    """
    year: str
    percentage: float = 0.0
    weight: float = 0.0

    @field_validator("year", mode="before")
    @classmethod
    def _stringify_year(cls, v: Any) -> Any:
        return as_text(v)


class BlendConfig(BaseModel):
    """Multi-year blend request.

    `total_percentage` is informational; validation always re-sums the
    per-year percentages.
    """
    method: BlendMethod
    years: list[BlendYear] = Field(default_factory=list)
    total_percentage: float | None = None


class YearBreakdown(BaseModel):
    records: list[AggregatedRecord] = Field(default_factory=list)
    sample_size: int = 0
    survey_count: int = 0
    contribution: float = 0.0


class BlendResult(BaseModel):
    blended_data: list[AggregatedRecord]
    year_breakdown: dict[str, YearBreakdown]
    confidence: float = Field(..., ge=0.0, le=1.0)
    quality_warnings: list[str] = Field(default_factory=list)
    total_sample_size: int = 0
    total_survey_count: int = 0
    years_included: list[str] = Field(default_factory=list)
    blending_method: BlendMethod
