# Overview: Exception taxonomy shared by the store services and routes.

from __future__ import annotations


class StoreError(Exception):
    pass


class StoreUnavailableError(StoreError):
    """The collection engine was never initialized; fail fast instead of hanging."""


class NotFoundError(StoreError):
    pass


class ValidationError(StoreError, ValueError):
    pass


class ConflictError(StoreError, ValueError):
    """A record with the same primary key already exists."""


class TransactionAbortError(StoreError):
    """An atomic multi-collection write failed and was rolled back."""


class MigrationError(StoreError):
    def __init__(self, message: str, *, failures: dict[str, str] | None = None):
        super().__init__(message)
        self.failures = failures or {}


class PartialBulkFailure(StoreError):
    """
    Bulk insert finished with some items rejected.

    The accepted items are committed; `failures` lists the rejected keys
    with the reason for each.
    """

    def __init__(self, collection: str, *, inserted: int, total: int, failures: list[dict]):
        self.collection = collection
        self.inserted = inserted
        self.total = total
        self.failures = failures
        super().__init__(f"{len(failures)} of {total} items failed in {collection}")

    @property
    def failed(self) -> int:
        return len(self.failures)
