"""Ingestion: pull raw rows for every survey out of the data store."""
