"""
Unit tests for the cron trigger and the automation cache
"""

from datetime import datetime, timedelta
import pytest
from models.automation import Automation
from pipeline.cache.automation_cache import AutomationCache
from pipeline.trigger import AutomationTrigger, is_due, parse_interval
from schemas.automation import AutomationSnapshot


def snapshot(**overrides):
    values = {"id": 1, "uuid": "u-1", "user_id": "user-1", "name": "a", "interval": "5m", "notion_account_id": 1}
    values.update(overrides)
    return AutomationSnapshot(**values)


class TestParseInterval:

    @pytest.mark.parametrize("interval,seconds", [
        ("5m", 300),
        ("1h", 3600),
        ("90m", 5400),
        ("", 0),
        ("5 minutes", 0),
        ("10s", 0),
        (None, 0),
    ])
    def test_parse(self, interval, seconds):
        assert parse_interval(interval) == seconds


class TestIsDue:

    def test_never_synced_is_due(self):
        assert is_due(snapshot(last_synced_at=None), datetime.utcnow())

    def test_interval_elapsed(self):
        now = datetime(2024, 1, 15, 10, 0, 0)
        assert is_due(snapshot(last_synced_at=now - timedelta(minutes=6)), now)
        assert not is_due(snapshot(last_synced_at=now - timedelta(minutes=4)), now)

    def test_invalid_interval_never_due(self):
        assert not is_due(snapshot(interval="weekly", last_synced_at=None), datetime.utcnow())


class TestAutomationCache:

    @pytest.mark.asyncio
    async def test_populate_loads_only_active(self, redis_client, db_session, seeded):
        db_session.add(Automation(user_id="user-2", name="inactive", is_active=False))
        await db_session.commit()

        cache = AutomationCache(redis_client)
        assert await cache.populate(db_session) == 1

        snapshots = await cache.get_all()
        assert [s.id for s in snapshots] == [seeded.automation_id]
        assert snapshots[0].notion_account_id == seeded.notion_account_id

    @pytest.mark.asyncio
    async def test_add_update_remove(self, redis_client):
        cache = AutomationCache(redis_client)
        await cache.add_or_update(snapshot(id=7, name="first"))
        await cache.add_or_update(snapshot(id=7, name="renamed"))

        assert [s.name for s in await cache.get_all()] == ["renamed"]

        await cache.remove(7)
        assert await cache.get_all() == []

    @pytest.mark.asyncio
    async def test_unreadable_entries_are_dropped(self, redis_client):
        cache = AutomationCache(redis_client)
        await cache.add_or_update(snapshot(id=1))
        await redis_client.hset(cache.key, "2", "{not json")

        assert [s.id for s in await cache.get_all()] == [1]
        assert not await redis_client.hexists(cache.key, "2")


class TestAutomationTrigger:

    @pytest.mark.asyncio
    async def test_empty_cache_is_populated_and_tick_deferred(self, ctx, seeded):
        triggered = await AutomationTrigger(ctx).run()

        assert triggered == []
        assert len(await ctx.automation_cache.get_all()) == 1
        assert (await ctx.queues.notion_sync.get_counts())["waiting"] == 0

    @pytest.mark.asyncio
    async def test_due_automation_enqueues_sync(self, ctx, seeded, session_factory):
        trigger = AutomationTrigger(ctx)
        await trigger.run()  # populate
        now = datetime.utcnow()

        assert await trigger.run(now=now) == [seeded.automation_id]

        job = await ctx.queues.notion_sync.fetch_next()
        assert job.name == "sync"
        assert job.data["notion_account_id"] == seeded.notion_account_id
        assert job.data["cursor"] is None

        async with session_factory() as session:
            automation = await session.get(Automation, seeded.automation_id)
        assert automation.last_synced_at == now
        [cached] = await ctx.automation_cache.get_all()
        assert cached.last_synced_at == now

    @pytest.mark.asyncio
    async def test_not_due_until_interval_elapses(self, ctx, seeded):
        trigger = AutomationTrigger(ctx)
        await trigger.run()
        now = datetime.utcnow()
        await trigger.run(now=now)

        assert await trigger.run(now=now + timedelta(minutes=1)) == []
        assert await trigger.run(now=now + timedelta(minutes=6)) == [seeded.automation_id]

    @pytest.mark.asyncio
    async def test_sheets_only_automation_lists_spreadsheets(self, ctx):
        await ctx.automation_cache.add_or_update(
            snapshot(id=42, notion_account_id=None, google_sheets_account_id=5)
        )

        assert await AutomationTrigger(ctx).run() == [42]

        job = await ctx.queues.google_sheets.fetch_next()
        assert job.name == "list-spreadsheets"
        assert job.data["google_sheets_account_id"] == 5
