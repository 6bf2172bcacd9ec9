"""Command-line interface for the benchmark engine.

Provides subcommands `aggregate` and `blend`. Each command is implemented
as a `cmd_*` function that accepts an argparse namespace and returns a
process exit status.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pymongo.database import Database

from survey_benchmarks.blend import BlendConfigError
from survey_benchmarks.config import Settings, get_settings
from survey_benchmarks.db import bulk_upsert, get_client, get_db
from survey_benchmarks.logging_config import configure_logging
from survey_benchmarks.models import AnalyticsFilters, BlendConfig, BlendYear
from survey_benchmarks.service import BenchmarkService
from survey_benchmarks.store import MongoDataStore

log = logging.getLogger(__name__)

AGGREGATED_COLLECTION = "aggregated_records"
RECORD_KEY_FIELDS = ("specialty", "provider_type", "region", "survey_source", "survey_year")


# --------------------------------------------------
# Helpers
# --------------------------------------------------
def _filters_from_args(args: argparse.Namespace) -> AnalyticsFilters | None:
    values = {
        "specialty": getattr(args, "specialty", None),
        "survey_source": getattr(args, "source", None),
        "region": getattr(args, "region", None),
        "provider_type": getattr(args, "provider_type", None),
    }
    if not any(values.values()):
        return None
    return AnalyticsFilters(**values)


def parse_year_arg(value: str) -> BlendYear:
    """Parse `2023` or `2023:70` into a BlendYear.

    Raises:
        argparse.ArgumentTypeError: if the percentage is not a number.
    """
    year, _, pct = value.partition(":")
    if not year.strip():
        raise argparse.ArgumentTypeError(f"invalid year {value!r}")
    try:
        percentage = float(pct) if pct else 0.0
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid percentage in {value!r}") from None
    return BlendYear(year=year.strip(), percentage=percentage)


def _service(settings: Settings, db: Database[dict[str, Any]]) -> BenchmarkService:
    return BenchmarkService(MongoDataStore(db), settings)


# --------------------------------------------------
# AGGREGATE
# --------------------------------------------------
def cmd_aggregate(args: argparse.Namespace) -> int:
    """Print aggregated records as JSON lines, or upsert them with `--persist`."""
    s = get_settings()
    db = get_db(get_client(s.mongo_uri), s.mongo_db)
    service = _service(s, db)
    try:
        filters = _filters_from_args(args)
        if args.by_year:
            records = service.get_year_records(filters)
        else:
            records = service.get_analytics_data(filters)

        if args.persist:
            n = bulk_upsert(
                db[AGGREGATED_COLLECTION],
                (r.to_flat() for r in records),
                RECORD_KEY_FIELDS,
            )
            log.info("Upserted %d records into %s", n, AGGREGATED_COLLECTION)
        else:
            for r in records:
                sys.stdout.write(r.model_dump_json() + "\n")
    finally:
        service.close()
    return 0


# --------------------------------------------------
# BLEND
# --------------------------------------------------
def cmd_blend(args: argparse.Namespace) -> int:
    """Print a BlendResult as JSON; exit status 2 on an invalid blend request."""
    config = BlendConfig(method=args.method, years=args.year or [])
    s = get_settings()
    db = get_db(get_client(s.mongo_uri), s.mongo_db)
    service = _service(s, db)
    try:
        result = service.blend(config, _filters_from_args(args))
    except BlendConfigError as e:
        log.error("Invalid blend: %s", e)
        sys.stderr.write(f"error: {e}\n")
        return 2
    finally:
        service.close()
    sys.stdout.write(json.dumps(result.model_dump(mode="json"), indent=2) + "\n")
    return 0


# --------------------------------------------------
# CLI
# --------------------------------------------------
def _add_filter_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--specialty", default=None)
    p.add_argument("--source", default=None)
    p.add_argument("--region", default=None)
    p.add_argument("--provider-type", default=None)


def build_parser() -> argparse.ArgumentParser:
    """Build and return the top-level argument parser for the CLI.

    Returns:
        Configured argparse.ArgumentParser instance.
    """
    p = argparse.ArgumentParser(prog="survey-benchmarks")
    p.add_argument("--log-file", type=Path, default=None)
    sub = p.add_subparsers(dest="cmd", required=True)

    p_agg = sub.add_parser("aggregate")
    p_agg.add_argument("--by-year", action="store_true")
    p_agg.add_argument("--persist", action="store_true")
    _add_filter_args(p_agg)

    p_blend = sub.add_parser("blend")
    p_blend.add_argument("--method", choices=["percentage", "weighted", "equal"], default="percentage")
    p_blend.add_argument(
        "--year",
        action="append",
        type=parse_year_arg,
        help="YEAR or YEAR:PERCENT; repeat for each year",
    )
    _add_filter_args(p_blend)

    return p


def main(argv: list[str] | None = None) -> int:
    """CLI entry point: parse args, configure logging and dispatch commands."""
    load_dotenv()
    args = build_parser().parse_args(argv)
    configure_logging(args.log_file, get_settings().log_level, stream=sys.stderr)

    if args.cmd == "aggregate":
        return cmd_aggregate(args)
    if args.cmd == "blend":
        return cmd_blend(args)
    raise SystemExit(2)


if __name__ == "__main__":
    raise SystemExit(main())
