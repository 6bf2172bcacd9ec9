"""Resolve raw specialty / provider-type / region labels to canonical names.

Resolution order, first hit wins:

1. learned mapping (human-curated overrides, all kinds)
2. specialty: exact `(survey_source, specialty)` match in the mapping table
3. specialty: fuzzy match on a normalized form of every known name
   region: exact variant match in the region mapping table
4. provider type / region: ordered keyword rules
5. fallback: lower-cased, whitespace-collapsed input

`CategoricalResolver.resolve` never raises.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from survey_benchmarks.models import MappingKind, MappingTables

log = logging.getLogger(__name__)

DEFAULTS: dict[MappingKind, str] = {
    MappingKind.SPECIALTY: "Unknown",
    MappingKind.PROVIDER_TYPE: "Physician",
    MappingKind.REGION: "National",
}

_WS_RE = re.compile(r"\s+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class KeywordRule:
    """Maps any phrase (substring) or token (whole word) hit to `canonical`.

    Short abbreviations such as `np` or `ne` are tokens so that they do not
    fire inside longer words.
    """
    canonical: str
    phrases: tuple[str, ...] = ()
    tokens: tuple[str, ...] = ()

    def matches(self, text: str, words: set[str]) -> bool:
        return any(p in text for p in self.phrases) or any(t in words for t in self.tokens)


# Order matters: "physician assistant" must be tested before "physician".
PROVIDER_TYPE_RULES: tuple[KeywordRule, ...] = (
    KeywordRule("Nurse Practitioner", phrases=("nurse practitioner",), tokens=("np", "aprn")),
    KeywordRule("Physician Assistant", phrases=("physician assistant",), tokens=("pa",)),
    KeywordRule("CRNA", phrases=("crna", "nurse anesthetist")),
    KeywordRule("Advanced Practice Provider", phrases=("advanced practice",), tokens=("app", "apc")),
    KeywordRule("Physician", phrases=("physician",), tokens=("md", "do")),
)

REGION_RULES: tuple[KeywordRule, ...] = (
    KeywordRule("Northeast", phrases=("northeast", "north east"), tokens=("ne",)),
    KeywordRule("Southeast", phrases=("southeast", "south east"), tokens=("se",)),
    KeywordRule("Midwest", phrases=("midwest", "north central"), tokens=("nc", "mw")),
    KeywordRule("West", phrases=("west",)),
    KeywordRule("National", phrases=("national",)),
)


def collapse(value: Any) -> str:
    """Strip and collapse internal whitespace to single spaces."""
    return _WS_RE.sub(" ", str(value)).strip()


def fuzzy_key(value: str) -> str:
    """Normalized comparison form for specialty names.

    Lower-cases, turns punctuation into spaces, drops the token `and` and
    collapses whitespace: "Pulmonary & Critical Care" and
    "Pulmonary and Critical  Care" share a key.
    """
    words = _NON_ALNUM_RE.sub(" ", value.lower()).split()
    return " ".join(w for w in words if w != "and")


def apply_keyword_rules(rules: tuple[KeywordRule, ...], value: str) -> str | None:
    text = collapse(value).lower()
    words = set(_NON_ALNUM_RE.sub(" ", text).split())
    for rule in rules:
        if rule.matches(text, words):
            return rule.canonical
    return None


class CategoricalResolver:
    """Resolver bound to one snapshot of the mapping tables.

    Index construction is done once here; build one resolver per load and
    share it across every row of that load.
    """

    def __init__(self, tables: MappingTables) -> None:
        self._learned: dict[MappingKind, dict[str, str]] = {
            MappingKind(kind): {collapse(k).lower(): v for k, v in table.items()}
            for kind, table in tables.learned.items()
        }

        self._specialty_exact: dict[tuple[str, str], str] = {}
        self._specialty_fuzzy: dict[str, str] = {}
        for mapping in tables.specialty_mappings:
            name = mapping.standardized_name
            self._specialty_fuzzy.setdefault(fuzzy_key(name), name)
            for src in mapping.source_specialties:
                key = (collapse(src.survey_source).lower(), collapse(src.specialty).lower())
                self._specialty_exact.setdefault(key, name)
                self._specialty_fuzzy.setdefault(fuzzy_key(src.specialty), name)

        self._region_variants: dict[str, str] = {}
        for region in tables.region_mappings:
            self._region_variants.setdefault(collapse(region.standardized_region).lower(), region.standardized_region)
            for variant in region.variants:
                self._region_variants.setdefault(collapse(variant).lower(), region.standardized_region)

        # ("" , column) entries apply to every survey source.
        self._columns: dict[tuple[str, str], str] = {}
        for cm in tables.column_mappings:
            for col in cm.source_columns:
                key = (collapse(col.survey_source or "").lower(), collapse(col.name).lower())
                self._columns.setdefault(key, cm.standardized_name)

    def column_target(self, column: str, survey_source: str | None = None) -> str | None:
        """Canonical field for a raw column name: learned first, then the table."""
        learned = self.learned(MappingKind.COLUMN, column)
        if learned:
            return learned
        name = collapse(column).lower()
        source = collapse(survey_source or "").lower()
        return self._columns.get((source, name)) or self._columns.get(("", name))

    def learned(self, kind: MappingKind, raw_value: Any) -> str | None:
        """Return the learned override for `raw_value`, if one exists."""
        if raw_value is None:
            return None
        return self._learned.get(kind, {}).get(collapse(raw_value).lower())

    def resolve(self, kind: MappingKind, raw_value: Any, survey_source: str | None = None) -> str:
        """Resolve `raw_value` to a canonical name of the given kind.

        Args:
            kind: Which dimension is being resolved.
            raw_value: The label exactly as it appeared in the raw row.
            survey_source: Vendor name, used for the exact specialty lookup.

        Returns:
            Canonical name, or the normalized input when nothing matched.
        """
        text = collapse(raw_value) if raw_value is not None else ""
        if not text:
            return DEFAULTS.get(kind, "Unknown")

        learned = self.learned(kind, text)
        if learned:
            return learned

        lowered = text.lower()
        if kind is MappingKind.SPECIALTY:
            source = collapse(survey_source or "").lower()
            hit = self._specialty_exact.get((source, lowered))
            if not hit and fuzzy_key(text):
                hit = self._specialty_fuzzy.get(fuzzy_key(text))
            if hit:
                return hit
        elif kind is MappingKind.REGION:
            hit = self._region_variants.get(lowered) or apply_keyword_rules(REGION_RULES, text)
            if hit:
                return hit
        elif kind is MappingKind.PROVIDER_TYPE:
            hit = apply_keyword_rules(PROVIDER_TYPE_RULES, text)
            if hit:
                return hit

        log.debug("No %s mapping for %r; using normalized value", kind.value, text)
        return lowered or str(raw_value)
