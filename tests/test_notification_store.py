import pytest
from sqlalchemy import event


@pytest.fixture()
def statements(engine):
    seen = []

    def record(conn, cursor, statement, parameters, context, executemany):
        seen.append(statement)

    event.listen(engine.sync_engine, "before_cursor_execute", record)
    yield seen
    event.remove(engine.sync_engine, "before_cursor_execute", record)


async def fill_inbox(container, user_id, count):
    for i in range(count):
        tags = ["booking_reminder"] if i % 2 == 0 else ["booking_confirmed"]
        await container.notifications.create_notification(
            target_user_id=user_id, title=f"Notice {i}", message="...", tags=tags,
        )


@pytest.mark.asyncio
async def test_listing_is_limited_in_the_query(container, statements):
    await fill_inbox(container, "s-1", 5)
    statements.clear()

    rows = await container.notifications.list_notifications("s-1", limit=3)

    assert len(rows) == 3
    selects = [s for s in statements if s.lstrip().upper().startswith("SELECT")]
    assert len(selects) == 1
    assert "LIMIT" in selects[0].upper()


@pytest.mark.asyncio
async def test_tag_filter_applies_before_the_limit(container):
    await fill_inbox(container, "s-1", 5)
    await fill_inbox(container, "s-2", 2)

    reminders = await container.notifications.list_notifications("s-1", tag="booking_reminder", limit=2)
    everything = await container.notifications.list_notifications("s-1", tag="booking_reminder")

    assert len(reminders) == 2
    assert all("booking_reminder" in r["tags"] for r in reminders)
    assert len(everything) == 3
    assert {r["target_user_id"] for r in everything} == {"s-1"}
