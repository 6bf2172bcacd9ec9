"""MongoDB helpers and bulk upsert utility.

Centralizes creation of Mongo clients for the survey data store and the
upsert used when aggregated records are persisted from the CLI.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Sequence

import certifi
from pymongo import MongoClient, UpdateOne
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError

log = logging.getLogger(__name__)


def get_client(uri: str) -> MongoClient:
    """Return a configured PyMongo MongoClient for the provided URI.

    TLS is only forced for `mongodb+srv://` (hosted) URIs so that a local
    development server keeps working.

    Args:
        uri: MongoDB connection URI.

    Returns:
        Configured MongoClient instance.
    """
    tls_kwargs: dict[str, Any] = {}
    if uri.startswith("mongodb+srv://"):
        tls_kwargs = {"tls": True, "tlsCAFile": certifi.where()}
    return MongoClient(
        uri,
        serverSelectionTimeoutMS=30000,
        socketTimeoutMS=30000,
        connectTimeoutMS=30000,
        **tls_kwargs,
    )


def get_db(
    client: MongoClient[dict[str, Any]],
    db_name: str,
) -> Database[dict[str, Any]]:
    """Return the named Database instance from a MongoClient."""
    return client[db_name]


def bulk_upsert(
    collection: Collection[dict[str, Any]],
    docs: Iterable[dict[str, Any]],
    key_fields: Sequence[str],
    batch_size: int = 1000,
) -> int:
    """Bulk upsert documents using the compound `key_fields` as the selector.

    Writes in batches; a failing batch is logged and skipped so one bad batch
    does not lose the rest. Documents missing any key field are skipped.

    Args:
        collection: Target PyMongo collection.
        docs: Iterable of document dictionaries to upsert.
        key_fields: Document keys that together identify a document.
        batch_size: Number of ops per bulk_write call.

    Returns:
        Integer number of documents attempted.
    """
    ops: list[UpdateOne] = []
    attempted = 0

    def _flush() -> None:
        try:
            collection.bulk_write(ops, ordered=False)
        except PyMongoError as e:
            log.warning("bulk_upsert batch of %d failed on %s: %s", len(ops), collection.name, e)
        ops.clear()

    for d in docs:
        if any(k not in d for k in key_fields):
            continue
        ops.append(UpdateOne({k: d[k] for k in key_fields}, {"$set": d}, upsert=True))
        attempted += 1
        if len(ops) >= batch_size:
            _flush()

    if ops:
        _flush()

    return attempted
