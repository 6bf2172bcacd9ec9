"""Normalization layer.

Turns raw, vendor-specific survey rows into `NormalizedRow` objects:
dimension labels are resolved to canonical names and metric columns are
classified into the TCC / wRVU / CF percentile families.
"""
