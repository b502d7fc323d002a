"""
Error taxonomy for sync passes.

The orchestrator decides what to do with a failure by its class:

- TransientFetchError: retried per item with backoff, never aborts the pass
- AuthFetchError: the client already refreshed the token once and retried;
  counted per item, aborts the job only past the consecutive-failure threshold
- PermanentItemError: counted and skipped, not retried within the pass
- FatalPipelineError: aborts the job and propagates to the entry point
"""


class SyncError(Exception):
    """Base class for sync failures."""


class TransientFetchError(SyncError):
    """Timeout, connection failure, 5xx or throttling response."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AuthFetchError(SyncError):
    """401/403 that survived one token refresh and one retry."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class PermanentItemError(SyncError):
    """The item cannot be reconciled in this pass."""


class ItemNotFoundError(PermanentItemError):
    pass


class UnparsableItemError(PermanentItemError):
    pass


class MissingFieldError(PermanentItemError):
    def __init__(self, field: str, item_id: str | None = None):
        where = f" for {item_id}" if item_id else ""
        super().__init__(f"Missing required field '{field}'{where}")
        self.field = field


class EmptyResultError(PermanentItemError):
    """The source returned nothing for the item."""


class FatalPipelineError(SyncError):
    """Catalog unreachable, store unavailable or credentials broken."""
