"""SQLite snapshot of the entity collections for instant startup."""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List

import config
from domain.models import (
    ENTITY_NAMES,
    ENTITY_TYPES,
    ORDERS,
    Customer,
    InventoryItem,
    Member,
    Order,
    Product,
    WorkflowDefinition,
)
from utils.debounce import Debouncer

logger = logging.getLogger("atelier.cache")

CACHE_KEYS: Dict[str, str] = {entity: f"cache_{entity}" for entity in ENTITY_NAMES}
_PERSIST_KEY = "persist"


@dataclass
class CacheSnapshot:
    """Last known state of every collection. Missing keys stay empty."""

    orders: List[Order] = field(default_factory=list)
    inventory: List[InventoryItem] = field(default_factory=list)
    members: List[Member] = field(default_factory=list)
    products: List[Product] = field(default_factory=list)
    customers: List[Customer] = field(default_factory=list)
    workflows: List[WorkflowDefinition] = field(default_factory=list)

    def get(self, entity: str) -> list:
        return getattr(self, entity)

    def is_empty(self) -> bool:
        return not any(self.get(entity) for entity in ENTITY_NAMES)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class CachePersistence:
    def __init__(
        self,
        db_path: str = config.CACHE_PATH,
        orders_limit: int = config.ORDERS_CACHE_LIMIT,
        debounce_seconds: float = config.CACHE_DEBOUNCE_SECONDS,
    ) -> None:
        self._db_path = Path(db_path)
        self._orders_limit = orders_limit
        self._debouncer = Debouncer(debounce_seconds)

    def _connect(self) -> sqlite3.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(self._db_path)

    def bootstrap_schema(self) -> None:
        """Create the snapshot table if it does not already exist."""
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cache_snapshot (
                    key TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

    def hydrate(self) -> CacheSnapshot:
        """Read the last snapshot. Never raises; unreadable keys come back empty."""
        snapshot = CacheSnapshot()
        try:
            self.bootstrap_schema()
            with self._connect() as conn:
                rows = dict(conn.execute("SELECT key, payload FROM cache_snapshot").fetchall())
        except (sqlite3.Error, OSError) as e:
            logger.warning("Error loading from cache: %s", e)
            return snapshot

        for entity, key in CACHE_KEYS.items():
            payload = rows.get(key)
            if not payload:
                continue
            record_type = ENTITY_TYPES[entity]
            try:
                records = [record_type.from_dict(d) for d in json.loads(payload)]
            except (ValueError, TypeError, KeyError) as e:
                logger.warning("Discarding unreadable cache entry %s: %s", key, e)
                continue
            setattr(snapshot, entity, records)

        logger.info("Local cache loaded")
        return snapshot

    def persist(self, snapshot: CacheSnapshot) -> bool:
        """
        Write every non-empty collection. Orders are capped to the most
        recent `orders_limit`. Failures are logged and swallowed.
        """
        try:
            payloads = {}
            for entity, key in CACHE_KEYS.items():
                records = snapshot.get(entity)
                if not records:
                    continue
                if entity == ORDERS:
                    records = records[: self._orders_limit]
                payloads[key] = json.dumps([r.to_dict() for r in records], ensure_ascii=False)

            if not payloads:
                return True

            self.bootstrap_schema()
            updated_at = _utc_now_iso()
            with self._connect() as conn:
                conn.executemany(
                    """
                    INSERT INTO cache_snapshot (key, payload, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET payload = excluded.payload, updated_at = excluded.updated_at
                    """,
                    [(key, payload, updated_at) for key, payload in payloads.items()],
                )
            return True
        except (sqlite3.Error, OSError, TypeError, ValueError) as e:
            logger.warning("Sync cache error (possibly disk full): %s", e)
            return False

    def schedule_persist(self, snapshot_provider: Callable[[], CacheSnapshot]) -> None:
        """Debounced persist; the snapshot is taken when the timer fires."""
        self._debouncer.schedule(_PERSIST_KEY, lambda: self.persist(snapshot_provider()))

    @property
    def has_pending_write(self) -> bool:
        return self._debouncer.is_pending(_PERSIST_KEY)

    async def flush(self) -> None:
        await self._debouncer.flush()

