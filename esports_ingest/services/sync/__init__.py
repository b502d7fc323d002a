"""
Incremental sync engine.

Import concrete pieces from their modules (``sync.orchestrator``,
``sync.store``, the ``*_sync`` sources); only the dependency-free value
types and errors are re-exported here.
"""
from esports_ingest.services.sync.errors import (
    AuthFetchError,
    EmptyResultError,
    FatalPipelineError,
    ItemNotFoundError,
    MissingFieldError,
    PermanentItemError,
    SyncError,
    TransientFetchError,
    UnparsableItemError,
)
from esports_ingest.services.sync.types import (
    CatalogPage,
    IndexEntry,
    ItemError,
    JobStats,
    LocalRecord,
    SyncSource,
    SyncTarget,
    UpsertOutcome,
)

__all__ = [
    "AuthFetchError",
    "EmptyResultError",
    "FatalPipelineError",
    "ItemNotFoundError",
    "MissingFieldError",
    "PermanentItemError",
    "SyncError",
    "TransientFetchError",
    "UnparsableItemError",
    "CatalogPage",
    "IndexEntry",
    "ItemError",
    "JobStats",
    "LocalRecord",
    "SyncSource",
    "SyncTarget",
    "UpsertOutcome",
]
