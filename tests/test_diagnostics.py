from datetime import datetime, timedelta, timezone

import pytest

from touchup_api.diagnostics import snapshot
from touchup_api.store import SessionRecord

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def frozen_now(monkeypatch):
    monkeypatch.setattr("touchup_api.reconcile.utcnow", lambda: NOW)


@pytest.mark.asyncio
async def test_snapshot_searches_every_location_within_window(settings, gateway, store):
    await store.put("ref-a", SessionRecord(link_id="link_1"))
    gateway.locations = ["L1", "L2"]
    gateway.add_order("order_1", "L1", ref="ref-a", state="OPEN", created_at=NOW - timedelta(hours=1))
    gateway.add_order("order_2", "L2", ref="ref-a", state="COMPLETED", created_at=NOW - timedelta(hours=3))
    gateway.add_order("order_old", "L2", ref="ref-a", state="COMPLETED", created_at=NOW - timedelta(hours=30))

    data = await snapshot(settings, gateway, store, "ref-a")

    assert gateway.search_since == [NOW - timedelta(hours=24)] * 2
    assert [o["id"] for o in data["orders"]] == ["order_1", "order_2"]
    assert data["searchWindowHours"] == 24
    assert data["session"]["linkId"] == "link_1"


@pytest.mark.asyncio
async def test_snapshot_is_read_only(settings, gateway, store):
    gateway.locations = ["L1"]
    gateway.add_order("order_1", "L1", ref="ref-a", state="COMPLETED", created_at=NOW)

    data = await snapshot(settings, gateway, store, "ref-a")

    assert data["session"] is None
    assert await store.get("ref-a") is None
