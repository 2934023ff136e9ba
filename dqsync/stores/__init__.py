"""
dqsync.stores - Collaborator interfaces and backends.

Usage:
    from dqsync.stores import InMemoryDefinitionStore, InMemoryChangeFeed

    feed = InMemoryChangeFeed()
    store = InMemoryDefinitionStore(feed=feed)

BigQuery backends live in dqsync.stores.bigquery and are imported
explicitly so the in-memory backends work without GCP credentials.
"""

from .base import Backends, ChangeFeed, DefinitionStore, JobScheduler, ResultsStore
from .memory import (
    InMemoryChangeFeed,
    InMemoryDefinitionStore,
    InMemoryJobScheduler,
    InMemoryResultsStore,
)

__all__ = [
    "Backends",
    "ChangeFeed",
    "DefinitionStore",
    "JobScheduler",
    "ResultsStore",
    "InMemoryChangeFeed",
    "InMemoryDefinitionStore",
    "InMemoryJobScheduler",
    "InMemoryResultsStore",
]
