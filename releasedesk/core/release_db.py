"""
Release database access layer.

Goals:
- SQLite + aiosqlite, async/await friendly.
- Versioned schema (user_version migrations), no column probing at runtime.
- Multi-statement writes are atomic through `transaction()`.

Note:
- Models/DTOs live in `releasedesk.core.db.models`
- Schema/migrations live in `releasedesk.core.db.schema`
- Query functions live in `releasedesk.core.db.queries_*` modules
- `ReleaseDb` is the public facade used by the rest of the codebase
"""

from __future__ import annotations

import asyncio
import secrets
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Iterable

import aiosqlite

from releasedesk.core.db import queries_meta, queries_releases, queries_tracks
from releasedesk.core.db.models import (
    ReleaseRow,
    ReleaseWrite,
    TrackRow,
    TrackWrite,
    UserRow,
    normalize_text,
)
from releasedesk.core.db.queries_releases import ReleaseFilter
from releasedesk.core.db.schema import ensure_schema as ensure_schema_sql

DEFAULT_TOKEN_TTL = timedelta(days=30)


def _utc_now() -> str:
    # Same shape as SQLite's datetime('now') so string comparison works.
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


class ReleaseDb:
    """
    Async access layer for the release DB.

    Usage:
        db = ReleaseDb("releasedesk.db")
        await db.open()
        await db.ensure_schema()
        async with db.transaction():
            ... writes ...
        await db.close()

    Notes:
    - A single connection in autocommit mode; `transaction()` issues
      BEGIN/COMMIT/ROLLBACK explicitly.
    - Writes outside `transaction()` commit per statement.
    - Only one transaction runs at a time. A task already inside
      `transaction()` may nest it; the inner block joins the outer one.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = str(db_path)
        self._conn: aiosqlite.Connection | None = None
        self._tx_lock = asyncio.Lock()
        self._tx_owner: asyncio.Task[Any] | None = None

    @property
    def path(self) -> str:
        return self._db_path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def open(self) -> None:
        if self._conn is not None:
            return
        self._conn = await aiosqlite.connect(self._db_path, isolation_level=None)
        self._conn.row_factory = aiosqlite.Row

        await self._conn.execute("PRAGMA foreign_keys = ON;")
        await self._conn.execute("PRAGMA journal_mode = WAL;")
        await self._conn.execute("PRAGMA synchronous = NORMAL;")
        await self._conn.execute("PRAGMA temp_store = MEMORY;")

    async def close(self) -> None:
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("ReleaseDb is not open. Call await db.open() first.")
        return self._conn

    async def ensure_schema(self) -> None:
        """Create or migrate schema to current version."""
        conn = self._require_conn()
        await ensure_schema_sql(conn)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Run a block of statements atomically.

        Any exception inside the block rolls everything back and propagates.
        """
        conn = self._require_conn()
        current = asyncio.current_task()
        if current is not None and self._tx_owner is current:
            yield conn
            return

        async with self._tx_lock:
            self._tx_owner = current
            try:
                await conn.execute("BEGIN;")
                try:
                    yield conn
                except BaseException:
                    await conn.execute("ROLLBACK;")
                    raise
                await conn.execute("COMMIT;")
            finally:
                self._tx_owner = None

    async def backup_to(self, target: Path) -> None:
        """Copy the live database into `target` using SQLite's online backup."""
        conn = self._require_conn()
        target.parent.mkdir(parents=True, exist_ok=True)
        async with self._tx_lock:
            dest = await aiosqlite.connect(str(target))
            try:
                await conn.backup(dest)
            finally:
                await dest.close()

    # ===========================================================================
    # Users & tokens
    # ===========================================================================

    async def create_user(self, username: str, role: str = "User") -> int:
        name = normalize_text(username)
        if not name:
            raise ValueError("username must not be empty")
        async with self.transaction() as conn:
            return await queries_meta.insert_user(conn, name, role)

    async def get_user(self, user_id: int) -> UserRow | None:
        return await queries_meta.get_user_by_id(self._require_conn(), user_id)

    async def get_user_by_username(self, username: str) -> UserRow | None:
        return await queries_meta.get_user_by_username(self._require_conn(), username)

    async def issue_token(self, user_id: int, ttl: timedelta = DEFAULT_TOKEN_TTL) -> str:
        token = secrets.token_urlsafe(32)
        expires_at = (datetime.now(timezone.utc) + ttl).strftime("%Y-%m-%d %H:%M:%S")
        async with self.transaction() as conn:
            await queries_meta.insert_token(conn, token, user_id, expires_at)
        return token

    async def resolve_token(self, token: str) -> UserRow | None:
        if not token:
            return None
        return await queries_meta.get_user_for_token(self._require_conn(), token, _utc_now())

    async def purge_expired_tokens(self) -> int:
        async with self.transaction() as conn:
            return await queries_meta.delete_expired_tokens(conn, _utc_now())

    # ===========================================================================
    # Meta
    # ===========================================================================

    async def get_meta(self, key: str) -> str | None:
        return await queries_meta.get_meta(self._require_conn(), key)

    async def set_meta(self, key: str, value: str) -> None:
        async with self.transaction() as conn:
            await queries_meta.set_meta(conn, key, value)

    # ===========================================================================
    # Releases
    # ===========================================================================

    async def get_release(self, release_id: int, *, with_tracks: bool = False) -> ReleaseRow | None:
        conn = self._require_conn()
        release = await queries_releases.get_release_by_id(conn, release_id)
        if release is None or not with_tracks:
            return release
        tracks = await queries_tracks.list_tracks_for_release(conn, release_id)
        return replace(release, tracks=tuple(tracks))

    async def find_active_duplicate(self, user_id: int, title: str, version: str) -> int | None:
        return await queries_releases.find_active_duplicate(
            self._require_conn(), user_id=user_id, title=title, version=version
        )

    async def list_releases(
        self,
        flt: ReleaseFilter,
        *,
        order_by: str = "submission_date",
        descending: bool = True,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ReleaseRow]:
        return await queries_releases.list_releases(
            self._require_conn(),
            flt,
            order_by=order_by,
            descending=descending,
            limit=limit,
            offset=offset,
        )

    async def count_releases(self, flt: ReleaseFilter) -> int:
        return await queries_releases.count_releases(self._require_conn(), flt)

    async def count_by_status(self, user_id: int | None = None) -> dict[str, int]:
        return await queries_releases.count_by_status(self._require_conn(), user_id)

    async def insert_release(
        self,
        user_id: int,
        release: ReleaseWrite,
        tracks: Iterable[TrackWrite],
        *,
        status: str = "Pending",
    ) -> int:
        """Insert a release and its tracks in one transaction. Returns the release id."""
        async with self.transaction() as conn:
            release_id = await queries_releases.insert_release(
                conn, user_id=user_id, release=release, status=status
            )
            await queries_tracks.replace_tracks(conn, release_id, tracks)
        return release_id

    async def update_release(
        self,
        release_id: int,
        release: ReleaseWrite,
        tracks: Iterable[TrackWrite],
    ) -> None:
        """Overwrite submitter-owned fields and replace all tracks in one transaction."""
        async with self.transaction() as conn:
            await queries_releases.update_release(conn, release_id, release)
            await queries_tracks.replace_tracks(conn, release_id, tracks)

    async def update_workflow(
        self,
        release_id: int,
        fields: dict[str, Any],
        isrc_codes: dict[int, str | None] | None = None,
    ) -> list[int]:
        """
        Apply workflow fields and track ISRC codes atomically.

        Returns:
            Track ids from `isrc_codes` that do not belong to the release.
            When any are returned nothing has been written.
        """
        codes = {int(k): v for k, v in (isrc_codes or {}).items()}
        async with self.transaction() as conn:
            known = set(await queries_tracks.get_track_ids(conn, release_id))
            missing = sorted(tid for tid in codes if tid not in known)
            if missing:
                return missing
            await queries_releases.update_workflow_fields(conn, release_id, fields)
            for track_id, isrc in codes.items():
                await queries_tracks.set_track_isrc(conn, release_id, track_id, isrc)
        return []

    async def delete_release(self, release_id: int) -> bool:
        async with self.transaction() as conn:
            return await queries_releases.delete_release(conn, release_id)

    async def list_tracks(self, release_id: int) -> list[TrackRow]:
        return await queries_tracks.list_tracks_for_release(self._require_conn(), release_id)
