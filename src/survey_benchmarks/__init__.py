"""survey_benchmarks package.

Contains modules for pulling physician-compensation survey rows out of a data
store, normalizing specialty/region/provider-type labels and metric columns,
aggregating TCC / wRVU / CF percentiles per group, caching the expensive
intermediate results, and blending benchmarks across survey years.

Architecture:
- Raw rows → Normalized rows → Aggregated records (optionally → Blended)
- Dask's threaded scheduler bounds per-survey fetch parallelism
- pandas does the grouping; Pydantic models describe every layer
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
