"""Bounded-parallel fetch + normalization of every survey in the store.

Each survey becomes one `dask.delayed` task; the threaded scheduler runs at
most `concurrency` of them at once so the store is not flooded. Results are
merged only after every task has finished.
"""
from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence, cast
from typing import Any as TypingAny

from dask import compute, delayed  # type: ignore[attr-defined]

from survey_benchmarks.cache.freshness import RefreshCancelled, RefreshToken
from survey_benchmarks.clean.normalize import normalize_rows
from survey_benchmarks.models import MappingTables, NormalizedRow, SurveyMeta
from survey_benchmarks.store import DEFAULT_PAGE_SIZE, DataStore, iter_survey_rows

log = logging.getLogger(__name__)


def _fetch_survey(
    store: DataStore,
    survey: SurveyMeta,
    tables: MappingTables,
    page_size: int,
    token: RefreshToken | None,
) -> list[NormalizedRow]:
    """Runs inside a worker thread.

    Fetches every page of one survey and normalizes it. Any failure other
    than cancellation is logged and turns into an empty contribution.
    """
    if token is not None:
        token.raise_if_cancelled()
    try:
        rows = list(iter_survey_rows(store, survey.id, page_size))
        normalized = normalize_rows(rows, survey, tables)
    except RefreshCancelled:
        raise
    except Exception as e:
        log.warning("Survey %s (%s) failed; skipping its rows: %s", survey.id, survey.source, e)
        return []
    log.info("Survey %s (%s): %d rows normalized", survey.id, survey.source, len(normalized))
    return normalized


def fetch_normalized(
    store: DataStore,
    surveys: Sequence[SurveyMeta],
    tables: MappingTables,
    concurrency: int = 3,
    page_size: int = DEFAULT_PAGE_SIZE,
    token: RefreshToken | None = None,
    tables_by_provider: Mapping[str | None, MappingTables] | None = None,
) -> dict[str, list[NormalizedRow]]:
    """Fetch and normalize all `surveys`, at most `concurrency` at a time.

    Args:
        store: Data store to read from.
        surveys: Surveys to process.
        tables: Mapping tables for surveys without provider-specific ones.
        concurrency: Max surveys in flight.
        page_size: Rows per store request.
        token: Optional cancellation token checked before each survey.
        tables_by_provider: Tables keyed by `SurveyMeta.provider_type`; a
            survey whose provider type is missing here uses `tables`.

    Returns:
        `{survey_id: normalized rows}` in the order of `surveys`.

    Raises:
        RefreshCancelled: if `token` is cancelled or past its deadline.
    """
    if not surveys:
        return {}
    by_provider = tables_by_provider or {}

    tasks = [
        delayed(_fetch_survey, pure=False)(
            store,
            s,
            by_provider.get(s.provider_type, tables),
            page_size,
            token,
            dask_key_name=f"fetch-survey-{i}-{s.id}",
        )
        for i, s in enumerate(surveys)
    ]
    # `compute` is untyped in our environment; cast to Any before calling
    results: tuple[Any, ...] = cast(TypingAny, compute)(
        *tasks, scheduler="threads", num_workers=max(1, concurrency)
    )

    out = {s.id: list(rows) for s, rows in zip(surveys, results)}
    log.info(
        "Fetched %d surveys (%d rows) with concurrency=%d",
        len(out),
        sum(len(r) for r in out.values()),
        concurrency,
    )
    return out
