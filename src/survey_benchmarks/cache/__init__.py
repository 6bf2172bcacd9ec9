"""Caching layers.

`ComputationCache` memoizes grouping/filtering/aggregation results under
content-derived keys; `FreshnessCache` wraps the top-level aggregation output
with freshness/staleness windows and upstream-change detection.
"""
