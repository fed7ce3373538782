# services/realtime_service.py

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import config
from data_integrator import RemoteSyncClient
from utils.debounce import Debouncer

logger = logging.getLogger("atelier.realtime")

Reloader = Callable[[str], Awaitable[None]]


class RealtimeListener:
    """
    Listens for Postgres changes on every business table and reloads the
    affected collection, debounced per collection.

    Subscribing is best effort: if the channel can't be set up or drops,
    the app keeps working on cached / manually reloaded data. There is no
    retry loop.
    """

    def __init__(
        self,
        remote: RemoteSyncClient,
        reload: Reloader,
        debounce_seconds: float = config.REALTIME_DEBOUNCE_SECONDS,
        start_delay: float = config.REALTIME_START_DELAY_SECONDS,
    ):
        self._remote = remote
        self._reload = reload
        self._debouncer = Debouncer(debounce_seconds)
        self._start_delay = start_delay
        self._channel = None
        self.status: Optional[str] = None

    @property
    def is_subscribed(self) -> bool:
        return self.status == "SUBSCRIBED"

    async def start(self) -> bool:
        """Wait `start_delay` (so startup reads go first), then subscribe."""
        if self._start_delay:
            await asyncio.sleep(self._start_delay)

        logger.info("Setting up realtime subscriptions...")
        try:
            channel = self._remote.open_channel()
            for table, entity in self._remote.realtime_tables().items():
                channel.on_postgres_changes(
                    "*",
                    schema=self._remote.schema,
                    table=table,
                    callback=self._make_handler(table, entity),
                )
            self._channel = channel
            await channel.subscribe(self._on_status)
        except Exception as e:
            logger.warning(
                "Error setting up realtime subscriptions (non-critical), continuing without realtime updates: %s",
                e,
            )
            return False
        return True

    def _make_handler(self, table: str, entity: str) -> Callable[[Any], None]:
        def handler(payload: Any) -> None:
            logger.info("Realtime: %s changed, reloading %s", table, entity)
            self.notify(entity)

        return handler

    def notify(self, entity: str) -> None:
        self._debouncer.schedule(entity, lambda: self._reload(entity))

    def _on_status(self, status, err: Optional[Exception] = None) -> None:
        self.status = getattr(status, "value", status)
        if self.status == "SUBSCRIBED":
            logger.info("Realtime subscription successful")
        elif self.status == "CHANNEL_ERROR":
            logger.warning("Realtime channel error, continuing without realtime updates: %s", err)
        elif self.status == "TIMED_OUT":
            logger.warning("Realtime subscription timed out, continuing without realtime updates")
        elif self.status == "CLOSED":
            logger.warning("Realtime channel closed")

    async def stop(self) -> None:
        self._debouncer.cancel_all()
        if self._channel is None:
            return
        channel, self._channel = self._channel, None
        try:
            await self._remote.close_channel(channel)
        except Exception as e:
            logger.warning("Error closing realtime channel: %s", e)

