import sqlite3
from pathlib import Path

import pytest

from promptmack.db import Database, title_from_messages


async def make_db(tmp_path: Path) -> Database:
    db = Database(str(tmp_path / "chats.db"))
    await db.init()
    return db


@pytest.mark.asyncio
async def test_db_init_creates_tables(tmp_path: Path):
    db = await make_db(tmp_path)
    rows = await db.fetchall("SELECT name FROM sqlite_master WHERE type='table'")
    assert {"users", "chats"}.issubset({row["name"] for row in rows})
    await db.init()


@pytest.mark.asyncio
async def test_transcript_round_trip_preserves_order_and_content(tmp_path: Path):
    db = await make_db(tmp_path)
    messages = [
        {"id": "1", "role": "user", "content": "Weather in Berlin and a table of it?"},
        {
            "id": "2",
            "role": "assistant",
            "content": "",
            "toolInvocations": [
                {
                    "state": "result",
                    "toolCallId": "call_w",
                    "toolName": "getWeather",
                    "args": {"latitude": 52.52, "longitude": 13.41},
                    "result": {"current": {"temperature_2m": 17.5}, "daily": {"sunrise": ["06:01"]}},
                }
            ],
        },
        {"id": "3", "role": "assistant", "content": [{"type": "text", "text": "It is 17.5°C."}]},
        {"id": "4", "role": "user", "content": "Thanks!"},
    ]
    await db.save_chat("chat-1", "user-1", messages)
    chat = await db.get_chat("chat-1")
    assert chat["messages"] == messages
    assert chat["user_id"] == "user-1"
    assert chat["title"] == "Weather in Berlin and a table of it?"


@pytest.mark.asyncio
async def test_save_chat_upserts_and_keeps_title(tmp_path: Path):
    db = await make_db(tmp_path)
    first = await db.save_chat("c", "u", [{"role": "user", "content": "Original question"}])
    second = await db.save_chat(
        "c",
        "u",
        [{"role": "user", "content": "Original question"}, {"role": "assistant", "content": "Answer"}],
    )
    chat = await db.get_chat("c")
    assert len(chat["messages"]) == 2
    assert chat["title"] == "Original question"
    assert second["created_at"] == first["created_at"]
    assert (await db.fetchone("SELECT COUNT(*) AS cnt FROM chats"))["cnt"] == 1


@pytest.mark.asyncio
async def test_list_count_and_delete_are_scoped_to_user(tmp_path: Path):
    db = await make_db(tmp_path)
    await db.save_chat("a1", "alice", [{"role": "user", "content": "one"}])
    await db.save_chat("a2", "alice", [{"role": "user", "content": "two"}])
    await db.save_chat("b1", "bob", [{"role": "user", "content": "three"}])
    await db.execute("UPDATE chats SET updated_at=? WHERE id=?", ("2000-01-01T00:00:00Z", "a1"))

    assert [c["id"] for c in await db.list_chats("alice")] == ["a2", "a1"]
    assert await db.count_chats("alice") == 2
    assert await db.count_chats("bob") == 1

    await db.delete_chat("a2")
    assert await db.get_chat("a2") is None
    assert await db.count_chats("alice") == 1


@pytest.mark.asyncio
async def test_users_are_unique_by_email(tmp_path: Path):
    db = await make_db(tmp_path)
    user = await db.create_user("ada@example.com", "hash")
    assert (await db.get_user_by_email("ada@example.com"))["password_hash"] == "hash"
    assert "password_hash" not in await db.get_user(user["id"])
    assert await db.get_user("missing") is None
    with pytest.raises(sqlite3.IntegrityError):
        await db.create_user("ada@example.com", "other")


def test_title_from_messages():
    assert title_from_messages([]) == "New chat"
    assert title_from_messages([{"role": "assistant", "content": "hi"}, {"role": "user", "content": "  a  b "}]) == "a b"
    long_title = title_from_messages([{"role": "user", "content": "x" * 200}])
    assert len(long_title) == 80
    assert long_title.endswith("...")
