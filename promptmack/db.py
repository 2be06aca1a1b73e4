import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import aiosqlite


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


TITLE_LIMIT = 80


def title_from_messages(messages: List[Dict[str, Any]]) -> str:
    for msg in messages:
        if msg.get("role") != "user":
            continue
        content = msg.get("content")
        if isinstance(content, str) and content.strip():
            text = " ".join(content.split())
            return text if len(text) <= TITLE_LIMIT else text[: TITLE_LIMIT - 3].rstrip() + "..."
    return "New chat"


class Database:
    def __init__(self, path: str):
        self.path = path

    async def init(self) -> None:
        async with aiosqlite.connect(self.path) as db:
            await db.executescript(
                """
                PRAGMA journal_mode=WAL;
                CREATE TABLE IF NOT EXISTS users(
                    id TEXT PRIMARY KEY,
                    email TEXT UNIQUE NOT NULL,
                    password_hash TEXT NOT NULL,
                    created_at TEXT
                );
                CREATE TABLE IF NOT EXISTS chats(
                    id TEXT PRIMARY KEY,
                    created_at TEXT,
                    updated_at TEXT,
                    user_id TEXT NOT NULL,
                    title TEXT,
                    messages_json TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_chats_user ON chats(user_id, updated_at);
                """
            )
            await db.commit()

    async def execute(self, query: str, params: Tuple[Any, ...] = ()) -> None:
        async with aiosqlite.connect(self.path) as db:
            await db.execute(query, params)
            await db.commit()

    async def fetchall(self, query: str, params: Tuple[Any, ...] = ()) -> List[aiosqlite.Row]:
        async with aiosqlite.connect(self.path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
            await cursor.close()
            return rows

    async def fetchone(self, query: str, params: Tuple[Any, ...] = ()) -> Optional[aiosqlite.Row]:
        rows = await self.fetchall(query, params)
        return rows[0] if rows else None

    async def create_user(self, email: str, password_hash: str) -> dict:
        user_id = uuid.uuid4().hex
        created_at = utc_now()
        await self.execute(
            "INSERT INTO users(id, email, password_hash, created_at) VALUES (?,?,?,?)",
            (user_id, email, password_hash, created_at),
        )
        return {"id": user_id, "email": email, "created_at": created_at}

    async def get_user_by_email(self, email: str) -> Optional[dict]:
        row = await self.fetchone(
            "SELECT id, email, password_hash, created_at FROM users WHERE email=?",
            (email,),
        )
        if not row:
            return None
        return {
            "id": row["id"],
            "email": row["email"],
            "password_hash": row["password_hash"],
            "created_at": row["created_at"],
        }

    async def get_user(self, user_id: str) -> Optional[dict]:
        row = await self.fetchone("SELECT id, email, created_at FROM users WHERE id=?", (user_id,))
        if not row:
            return None
        return {"id": row["id"], "email": row["email"], "created_at": row["created_at"]}

    async def save_chat(self, chat_id: str, user_id: str, messages: List[Dict[str, Any]]) -> dict:
        """Insert or replace the whole transcript for ``chat_id``.

        The title is set from the first user message when the chat is created
        and kept on later saves.
        """
        now = utc_now()
        existing = await self.fetchone("SELECT created_at, title FROM chats WHERE id=?", (chat_id,))
        created_at = existing["created_at"] if existing else now
        title = existing["title"] if existing and existing["title"] else title_from_messages(messages)
        await self.execute(
            "INSERT INTO chats(id, created_at, updated_at, user_id, title, messages_json) VALUES (?,?,?,?,?,?) "
            "ON CONFLICT(id) DO UPDATE SET updated_at=excluded.updated_at, title=excluded.title, "
            "messages_json=excluded.messages_json",
            (chat_id, created_at, now, user_id, title, json.dumps(messages)),
        )
        return {"id": chat_id, "user_id": user_id, "title": title, "created_at": created_at, "updated_at": now}

    async def get_chat(self, chat_id: str) -> Optional[dict]:
        row = await self.fetchone(
            "SELECT id, created_at, updated_at, user_id, title, messages_json FROM chats WHERE id=?",
            (chat_id,),
        )
        if not row:
            return None
        return {
            "id": row["id"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
            "user_id": row["user_id"],
            "title": row["title"],
            "messages": json.loads(row["messages_json"] or "[]"),
        }

    async def list_chats(self, user_id: str, limit: int = 200) -> List[dict]:
        rows = await self.fetchall(
            "SELECT id, created_at, updated_at, title FROM chats WHERE user_id=? "
            "ORDER BY updated_at DESC, created_at DESC LIMIT ?",
            (user_id, limit),
        )
        return [
            {
                "id": r["id"],
                "created_at": r["created_at"],
                "updated_at": r["updated_at"],
                "title": r["title"],
            }
            for r in rows
        ]

    async def count_chats(self, user_id: str) -> int:
        row = await self.fetchone("SELECT COUNT(*) AS total FROM chats WHERE user_id=?", (user_id,))
        return int(row["total"]) if row else 0

    async def delete_chat(self, chat_id: str) -> None:
        await self.execute("DELETE FROM chats WHERE id=?", (chat_id,))
