import asyncio
import logging
from typing import Optional

import config
from data_integrator import RemoteSyncClient
from domain.models import ENTITY_NAMES
from services.cache_service import CachePersistence
from services.realtime_service import RealtimeListener
from services.store import EntityStore
from supabase_client import get_supabase

logger = logging.getLogger("atelier.sync")


def _log_sizes(store: EntityStore, source: str) -> None:
    sizes = ", ".join(f"{entity}={len(store.records(entity))}" for entity in ENTITY_NAMES)
    logger.info("%s: %s", source, sizes)


async def run(stop_event: Optional[asyncio.Event] = None) -> EntityStore:
    """
    Hydrate from the local cache, load from Supabase in the background,
    then keep the store in step through realtime until `stop_event` is set.
    """
    client = await get_supabase()
    remote = RemoteSyncClient(client, schema=config.SCHEMA)
    cache = CachePersistence()
    store = EntityStore(remote, cache)

    store.hydrate()
    _log_sizes(store, "Cache")

    load = store.start_background_load()
    listener = RealtimeListener(remote, store.reload)

    try:
        await load
        _log_sizes(store, "Supabase")
        await listener.start()
        await (stop_event or asyncio.Event()).wait()
    finally:
        await listener.stop()
        await cache.flush()

    return store


def main() -> None:
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Stopped")


if __name__ == "__main__":
    main()
