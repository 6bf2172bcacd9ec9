"""Data store interface and its MongoDB / in-memory implementations.

The engine only reads from the store: survey metadata, paginated raw rows,
and the mapping tables (static and learned). `load_mapping_tables` and
`iter_survey_rows` are the two helpers the rest of the package uses.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Iterable, Iterator, Mapping, Protocol

from pymongo.database import Database

from survey_benchmarks.models import (
    ColumnMapping,
    MappingKind,
    MappingTables,
    RegionMapping,
    SpecialtyMapping,
    SurveyMeta,
    SurveyPage,
)

log = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 5000


class DataStore(Protocol):
    """What the engine needs from wherever surveys live."""

    def get_all_surveys(self) -> list[SurveyMeta]: ...

    def get_survey_data(
        self,
        survey_id: str,
        filters: Mapping[str, Any] | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> SurveyPage: ...

    def get_all_specialty_mappings(self) -> list[SpecialtyMapping]: ...

    def get_all_column_mappings(self) -> list[ColumnMapping]: ...

    def get_region_mappings(self) -> list[RegionMapping]: ...

    def get_learned_mappings(self, kind: MappingKind, provider_type: str | None = None) -> dict[str, str]: ...


def load_mapping_tables(store: DataStore, provider_type: str | None = None) -> MappingTables:
    """Fetch every mapping table the normalizer needs in one go."""
    return MappingTables(
        specialty_mappings=store.get_all_specialty_mappings(),
        column_mappings=store.get_all_column_mappings(),
        region_mappings=store.get_region_mappings(),
        learned={kind: store.get_learned_mappings(kind, provider_type) for kind in MappingKind},
    )


def load_mapping_tables_by_provider(
    store: DataStore,
    provider_types: Iterable[str | None],
) -> dict[str | None, MappingTables]:
    """Mapping tables per provider type.

    Static tables are fetched once and shared; only the learned overrides
    differ. The `None` entry holds the global learned mappings.

    Args:
        store: Data store to read from.
        provider_types: Provider types of the surveys about to be normalized.

    Returns:
        `{provider_type: MappingTables}`, always including `None`.
    """
    base = load_mapping_tables(store)
    out: dict[str | None, MappingTables] = {None: base}
    for provider_type in provider_types:
        if not provider_type or provider_type in out:
            continue
        learned = {kind: store.get_learned_mappings(kind, provider_type) for kind in MappingKind}
        out[provider_type] = base.model_copy(update={"learned": learned})
    log.debug("Loaded mapping tables for provider types %s", sorted(k for k in out if k))
    return out


def iter_survey_rows(
    store: DataStore,
    survey_id: str,
    page_size: int = DEFAULT_PAGE_SIZE,
    filters: Mapping[str, Any] | None = None,
) -> Iterator[dict[str, Any]]:
    """Yield every raw row of a survey, following pagination to the end."""
    offset = 0
    while True:
        page = store.get_survey_data(survey_id, filters, limit=page_size, offset=offset)
        yield from page.rows
        offset += len(page.rows)
        if not page.rows or len(page.rows) < page_size or offset >= page.total:
            break
    log.debug("Survey %s: read %d rows", survey_id, offset)


# =========================================================
# MONGODB
# =========================================================

class MongoDataStore:
    """Reads surveys and mappings from a MongoDB database.

    Collections:
        surveys: one document per survey (`_id` or `id`, name, type, year ...).
        survey_rows: raw rows, each tagged with `survey_id`.
        specialty_mappings / column_mappings / region_mappings: static tables.
        learned_mappings: `{kind, original, corrected, provider_type?}`.
    """

    def __init__(self, db: Database[dict[str, Any]]) -> None:
        self.db = db

    def get_all_surveys(self) -> list[SurveyMeta]:
        out = []
        for doc in self.db["surveys"].find({}):
            doc.setdefault("id", doc.get("_id"))
            out.append(SurveyMeta.model_validate(doc))
        return out

    def get_survey_data(
        self,
        survey_id: str,
        filters: Mapping[str, Any] | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> SurveyPage:
        query: dict[str, Any] = {"survey_id": survey_id, **(filters or {})}
        coll = self.db["survey_rows"]
        cursor = (
            coll.find(query, {"_id": False, "survey_id": False})
            .sort("_id", 1)
            .skip(offset)
            .limit(limit)
        )
        return SurveyPage(rows=list(cursor), total=coll.count_documents(query), offset=offset)

    def get_all_specialty_mappings(self) -> list[SpecialtyMapping]:
        return [SpecialtyMapping.model_validate(d) for d in self.db["specialty_mappings"].find({}, {"_id": False})]

    def get_all_column_mappings(self) -> list[ColumnMapping]:
        return [ColumnMapping.model_validate(d) for d in self.db["column_mappings"].find({}, {"_id": False})]

    def get_region_mappings(self) -> list[RegionMapping]:
        return [RegionMapping.model_validate(d) for d in self.db["region_mappings"].find({}, {"_id": False})]

    def get_learned_mappings(self, kind: MappingKind, provider_type: str | None = None) -> dict[str, str]:
        """Global learned mappings, overlaid with `provider_type`'s own when given.

        `provider_type: None` matches documents where the field is null or absent.
        """
        query: dict[str, Any] = {
            "kind": MappingKind(kind).value,
            "provider_type": {"$in": [provider_type, None]} if provider_type else None,
        }
        docs = list(self.db["learned_mappings"].find(query, {"_id": False}))
        # global entries first so scoped ones override them
        docs.sort(key=lambda d: d.get("provider_type") is not None)
        return {
            str(d["original"]).strip().lower(): str(d["corrected"])
            for d in docs
            if d.get("original") and d.get("corrected")
        }


# =========================================================
# IN-MEMORY
# =========================================================

class InMemoryDataStore:
    """Dict-backed store for tests, demos and ad-hoc notebooks.

    Mutations take a lock; reads copy what they return so concurrent
    fetches never observe a half-applied change.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._surveys: dict[str, SurveyMeta] = {}
        self._rows: dict[str, list[dict[str, Any]]] = {}
        self.specialty_mappings: list[SpecialtyMapping] = []
        self.column_mappings: list[ColumnMapping] = []
        self.region_mappings: list[RegionMapping] = []
        self._learned: dict[tuple[MappingKind, str | None], dict[str, str]] = {}

    # ---- mutation ----
    def add_survey(self, survey: SurveyMeta, rows: list[dict[str, Any]]) -> None:
        with self._lock:
            self._surveys[survey.id] = survey
            self._rows[survey.id] = [dict(r) for r in rows]

    def delete_survey(self, survey_id: str) -> bool:
        with self._lock:
            self._rows.pop(survey_id, None)
            return self._surveys.pop(survey_id, None) is not None

    def set_learned_mapping(
        self,
        kind: MappingKind,
        original: str,
        corrected: str,
        provider_type: str | None = None,
    ) -> None:
        with self._lock:
            table = self._learned.setdefault((MappingKind(kind), provider_type), {})
            table[original.strip().lower()] = corrected

    # ---- DataStore ----
    def get_all_surveys(self) -> list[SurveyMeta]:
        with self._lock:
            return list(self._surveys.values())

    def get_survey_data(
        self,
        survey_id: str,
        filters: Mapping[str, Any] | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> SurveyPage:
        with self._lock:
            if survey_id not in self._surveys:
                raise KeyError(f"Unknown survey {survey_id!r}")
            rows = self._rows.get(survey_id, [])
            if filters:
                rows = [r for r in rows if all(r.get(k) == v for k, v in filters.items())]
            page = [dict(r) for r in rows[offset : offset + limit]]
            return SurveyPage(rows=page, total=len(rows), offset=offset)

    def get_all_specialty_mappings(self) -> list[SpecialtyMapping]:
        return list(self.specialty_mappings)

    def get_all_column_mappings(self) -> list[ColumnMapping]:
        return list(self.column_mappings)

    def get_region_mappings(self) -> list[RegionMapping]:
        return list(self.region_mappings)

    def get_learned_mappings(self, kind: MappingKind, provider_type: str | None = None) -> dict[str, str]:
        kind = MappingKind(kind)
        with self._lock:
            merged = dict(self._learned.get((kind, None), {}))
            if provider_type:
                merged.update(self._learned.get((kind, provider_type), {}))
            return merged
