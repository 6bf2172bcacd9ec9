"""Aggregation helpers.

This package turns normalized survey rows into one `AggregatedRecord` per
specialty/provider-type/region/source group (optionally split by year), and
provides the summary rows and filters the analytics views are built on.
"""
