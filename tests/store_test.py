import asyncio

import pytest

from streamchat.errors import StoreError


def test_messages_load_in_append_order(sql_store):
    async def scenario():
        conversation_id = await sql_store.create_conversation("Greetings")
        for role, content in [("user", "hi"), ("assistant", "hello"), ("user", "bye")]:
            await sql_store.append_message(conversation_id, role, content)
        return await sql_store.load_messages(conversation_id)

    messages = asyncio.run(scenario())
    assert [(m.role, m.content) for m in messages] == [
        ("user", "hi"),
        ("assistant", "hello"),
        ("user", "bye"),
    ]
    assert [m.sequence_order for m in messages] == [1, 2, 3]


def test_touch_moves_conversation_to_the_top(sql_store):
    async def scenario():
        first = await sql_store.create_conversation("first")
        second = await sql_store.create_conversation("second")
        before = [c.id for c in await sql_store.list_conversations()]
        await sql_store.touch_conversation(first)
        after = [c.id for c in await sql_store.list_conversations()]
        return first, second, before, after

    first, second, before, after = asyncio.run(scenario())
    assert before == [second, first]
    assert after == [first, second]


def test_touch_is_strictly_increasing(sql_store):
    async def scenario():
        conversation_id = await sql_store.create_conversation("t")
        stamps = []
        for _ in range(3):
            await sql_store.touch_conversation(conversation_id)
            stamps.append((await sql_store.get_conversation(conversation_id)).updated_at)
        return stamps

    stamps = asyncio.run(scenario())
    assert stamps[0] < stamps[1] < stamps[2]


def test_delete_conversation_removes_its_messages(sql_store):
    async def scenario():
        keep = await sql_store.create_conversation("keep")
        drop = await sql_store.create_conversation("drop")
        await sql_store.append_message(keep, "user", "stay")
        message_id = await sql_store.append_message(drop, "user", "go")

        deleted = await sql_store.delete_conversation(drop)
        again = await sql_store.delete_conversation(drop)
        orphan = await sql_store.get_message(message_id)
        remaining = await sql_store.list_conversations()
        kept = await sql_store.load_messages(keep)
        return deleted, again, orphan, remaining, kept

    deleted, again, orphan, remaining, kept = asyncio.run(scenario())
    assert deleted is True
    assert again is False
    assert orphan is None
    assert [c.title for c in remaining] == ["keep"]
    assert [m.content for m in kept] == ["stay"]


def test_delete_message(sql_store):
    async def scenario():
        conversation_id = await sql_store.create_conversation("c")
        message_id = await sql_store.append_message(conversation_id, "assistant", "old")
        deleted = await sql_store.delete_message(message_id)
        missing = await sql_store.delete_message(message_id)
        return deleted, missing, await sql_store.load_messages(conversation_id)

    assert asyncio.run(scenario()) == (True, False, [])


def test_unknown_conversation_raises_store_error(sql_store):
    with pytest.raises(StoreError):
        asyncio.run(sql_store.append_message("missing", "user", "hi"))
    with pytest.raises(StoreError):
        asyncio.run(sql_store.touch_conversation("missing"))
