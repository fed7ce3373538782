# domain/errors.py

from typing import Optional


class SyncError(Exception):
    """Base class for failures raised by the sync engine."""


class RemoteStoreError(SyncError):
    """A read or write against the remote store failed."""

    def __init__(self, message: str, entity: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message)
        self.entity = entity
        self.operation = operation


class EntityNotFoundError(SyncError):
    """A mutation referenced a record the local store does not hold."""

    def __init__(self, entity: str, record_id: str):
        super().__init__(f"{entity} record not found: {record_id}")
        self.entity = entity
        self.record_id = record_id
