import asyncio
import logging

from services.realtime_service import RealtimeListener


def _listener(remote, reloads, debounce_seconds=0.02):
    async def reload(entity):
        reloads.append(entity)

    return RealtimeListener(remote, reload, debounce_seconds=debounce_seconds, start_delay=0)


class TestRealtimeListener:
    def test_subscribes_to_every_business_table(self, remote, fake_db):
        reloads = []

        async def scenario():
            listener = _listener(remote, reloads)
            assert await listener.start()
            assert listener.is_subscribed

        asyncio.run(scenario())
        (channel,) = fake_db.channels
        assert set(channel.handlers) == {
            "don_hang",
            "hang_muc_dich_vu",
            "quy_trinh",
            "kho_vat_tu",
            "nhan_su",
            "san_pham",
            "khach_hang",
        }
        assert channel.schemas == {"public"}

    def test_burst_of_changes_reloads_once(self, remote, fake_db):
        reloads = []

        async def scenario():
            listener = _listener(remote, reloads)
            await listener.start()
            channel = fake_db.channels[0]
            for _ in range(5):
                channel.emit("khach_hang")
                await asyncio.sleep(0.002)
            await asyncio.sleep(0.06)

        asyncio.run(scenario())
        assert reloads == ["customers"]

    def test_order_and_item_changes_share_one_reload(self, remote, fake_db):
        reloads = []

        async def scenario():
            listener = _listener(remote, reloads)
            await listener.start()
            channel = fake_db.channels[0]
            channel.emit("don_hang", "INSERT")
            channel.emit("hang_muc_dich_vu", "INSERT")
            channel.emit("nhan_su", "DELETE")
            await asyncio.sleep(0.06)

        asyncio.run(scenario())
        assert sorted(reloads) == ["members", "orders"]

    def test_subscribe_failure_is_not_fatal(self, remote, fake_db, caplog):
        fake_db.fail_subscribe = True
        reloads = []

        async def scenario():
            listener = _listener(remote, reloads)
            with caplog.at_level(logging.WARNING, logger="atelier.realtime"):
                return await listener.start()

        assert asyncio.run(scenario()) is False
        assert "continuing without realtime updates" in caplog.text

    def test_channel_creation_failure_is_not_fatal(self, remote, fake_db):
        fake_db.channel_error = ConnectionError("offline")

        async def scenario():
            listener = _listener(remote, [])
            started = await listener.start()
            await listener.stop()
            return started

        assert asyncio.run(scenario()) is False
        assert fake_db.removed_channels == []

    def test_channel_error_status_is_reported(self, remote, fake_db, caplog):
        fake_db.channel_status = "CHANNEL_ERROR"

        async def scenario():
            listener = _listener(remote, [])
            with caplog.at_level(logging.WARNING, logger="atelier.realtime"):
                await listener.start()
            return listener

        listener = asyncio.run(scenario())
        assert listener.status == "CHANNEL_ERROR"
        assert not listener.is_subscribed
        assert "channel error" in caplog.text

    def test_stop_removes_channel_and_drops_pending_reloads(self, remote, fake_db):
        reloads = []

        async def scenario():
            listener = _listener(remote, reloads)
            await listener.start()
            fake_db.channels[0].emit("san_pham")
            await listener.stop()
            await asyncio.sleep(0.06)

        asyncio.run(scenario())
        assert reloads == []
        assert fake_db.removed_channels == fake_db.channels
