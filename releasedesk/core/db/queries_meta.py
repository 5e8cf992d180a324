"""
User, token and key-value settings queries.

Design:
- Functions are *pure DB helpers*: they take an open `aiosqlite.Connection`
  and return rows/dataclasses.
- These functions assume `conn.row_factory = aiosqlite.Row`.

Important:
- Do NOT interpolate user input into SQL.
"""

from __future__ import annotations

import aiosqlite

from releasedesk.core.db.models import UserRow

# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def _row_to_user(row: aiosqlite.Row) -> UserRow:
    return UserRow(
        id=int(row["id"]),
        username=str(row["username"]),
        role=str(row["role"]),
        created_at=row["created_at"],
    )


async def insert_user(conn: aiosqlite.Connection, username: str, role: str) -> int:
    cursor = await conn.execute(
        "INSERT INTO users (username, role) VALUES (?, ?);",
        (username, role),
    )
    if cursor.lastrowid is None:
        raise RuntimeError("Insert failed: no user id returned.")
    return int(cursor.lastrowid)


async def get_user_by_id(conn: aiosqlite.Connection, user_id: int) -> UserRow | None:
    cursor = await conn.execute(
        "SELECT id, username, role, created_at FROM users WHERE id = ?;",
        (int(user_id),),
    )
    row = await cursor.fetchone()
    return _row_to_user(row) if row else None


async def get_user_by_username(conn: aiosqlite.Connection, username: str) -> UserRow | None:
    cursor = await conn.execute(
        "SELECT id, username, role, created_at FROM users WHERE username = ?;",
        (username,),
    )
    row = await cursor.fetchone()
    return _row_to_user(row) if row else None


# ---------------------------------------------------------------------------
# Auth tokens
# ---------------------------------------------------------------------------


async def insert_token(
    conn: aiosqlite.Connection,
    token: str,
    user_id: int,
    expires_at: str,
) -> None:
    await conn.execute(
        "INSERT INTO auth_tokens (token, user_id, expires_at) VALUES (?, ?, ?);",
        (token, int(user_id), expires_at),
    )


async def get_user_for_token(conn: aiosqlite.Connection, token: str, now: str) -> UserRow | None:
    """Resolve a token to its user; expired tokens resolve to None."""
    cursor = await conn.execute(
        """
        SELECT u.id, u.username, u.role, u.created_at
        FROM auth_tokens t
        JOIN users u ON u.id = t.user_id
        WHERE t.token = ? AND t.expires_at > ?;
        """,
        (token, now),
    )
    row = await cursor.fetchone()
    return _row_to_user(row) if row else None


async def delete_expired_tokens(conn: aiosqlite.Connection, now: str) -> int:
    cursor = await conn.execute("DELETE FROM auth_tokens WHERE expires_at <= ?;", (now,))
    return int(cursor.rowcount or 0)


# ---------------------------------------------------------------------------
# Meta (key-value settings)
# ---------------------------------------------------------------------------


async def get_meta(conn: aiosqlite.Connection, key: str) -> str | None:
    cursor = await conn.execute("SELECT value FROM meta WHERE key = ?;", (key,))
    row = await cursor.fetchone()
    return str(row["value"]) if row else None


async def set_meta(conn: aiosqlite.Connection, key: str, value: str) -> None:
    await conn.execute(
        """
        INSERT INTO meta (key, value) VALUES (?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value;
        """,
        (key, value),
    )
