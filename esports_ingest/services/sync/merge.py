"""
Merge policy for reconciling a remote record into an existing local row.

Gaps are filled, populated values are kept. A populated local value is only
replaced when the remote side carries a strictly newer authoritative
``source_updated_at`` than the row. An empty remote value never erases
anything.
"""
from datetime import datetime
from typing import Any

from esports_ingest.utils.timestamps import as_utc


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict, tuple, set)):
        return len(value) == 0
    return False


def remote_is_newer(local_updated_at: datetime | None, remote_updated_at: datetime | None) -> bool:
    if remote_updated_at is None:
        return False
    if local_updated_at is None:
        return True
    return as_utc(remote_updated_at) > as_utc(local_updated_at)


def merge_fill_gaps(
    local: dict[str, Any],
    remote: dict[str, Any],
    *,
    local_updated_at: datetime | None = None,
    remote_updated_at: datetime | None = None,
) -> dict[str, Any]:
    """
    Return the merged field values.

    Args:
        local: Current values of the row
        remote: Freshly fetched values
        local_updated_at: ``source_updated_at`` stored on the row
        remote_updated_at: ``source_updated_at`` of the remote record

    Returns:
        New dict with every key of ``local`` and ``remote``; inputs are not modified
    """
    newer = remote_is_newer(local_updated_at, remote_updated_at)
    merged = dict(local)
    for key, remote_value in remote.items():
        if is_empty(remote_value):
            continue
        local_value = local.get(key)
        if is_empty(local_value) or newer:
            merged[key] = remote_value
    return merged


def changed_fields(before: dict[str, Any], after: dict[str, Any]) -> dict[str, Any]:
    """Keys of ``after`` whose value differs from ``before``."""
    return {k: v for k, v in after.items() if before.get(k) != v}
