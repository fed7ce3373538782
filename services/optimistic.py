# services/optimistic.py

import logging
from typing import Any, Awaitable, Callable, List, Optional, Protocol, TypeVar

logger = logging.getLogger("atelier.store")

T = TypeVar("T")


class RecordCollections(Protocol):
    def records(self, entity: str) -> List[Any]: ...

    def set_records(self, entity: str, records: List[Any]) -> None: ...


class OptimisticCoordinator:
    """
    Apply locally, confirm remotely, restore on failure.

    Only the touched record is snapshotted, so changes other callers make
    to the rest of the collection while the request is in flight survive
    a rollback.
    """

    def __init__(self, collections: RecordCollections):
        self._collections = collections

    def _locate(self, entity: str, record_id: str):
        for index, record in enumerate(self._collections.records(entity)):
            if record.id == record_id:
                return index, record
        return None, None

    async def run(
        self,
        entity: str,
        record_id: str,
        apply: Callable[[], None],
        confirm: Callable[[], Awaitable[T]],
    ) -> T:
        index, before = self._locate(entity, record_id)
        apply()
        try:
            return await confirm()
        except Exception as e:
            logger.error("Remote %s update for %s failed, rolling back: %s", entity, record_id, e)
            self._restore(entity, record_id, index, before)
            raise

    def _restore(self, entity: str, record_id: str, index: Optional[int], before) -> None:
        records = [r for r in self._collections.records(entity) if r.id != record_id]
        if before is not None:
            records.insert(min(index, len(records)), before)
        self._collections.set_records(entity, records)
