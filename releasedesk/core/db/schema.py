"""
Database schema + migrations for releasedesk.

Design notes:
- We use SQLite `PRAGMA user_version` as the schema version.
- Migrations are forward-only (no downgrade support).
- The schema is complete at every version; queries never probe for columns.
"""

from __future__ import annotations

from typing import Final

import aiosqlite

# Bump when you change the schema and add a migration in `migrate()`.
SCHEMA_VERSION: Final[int] = 2


async def ensure_schema(conn: aiosqlite.Connection) -> None:
    """
    Create or migrate schema to current version.

    This function assumes:
    - `conn` is an open aiosqlite connection
    - foreign_keys pragma is enabled by the caller
    """
    # meta: key-value settings (backup schedule, ...)
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """
    )
    await conn.commit()

    cursor = await conn.execute("PRAGMA user_version;")
    row = await cursor.fetchone()
    current = int(row[0]) if row is not None else 0

    if current > SCHEMA_VERSION:
        raise RuntimeError(
            f"Database schema version {current} is newer than supported {SCHEMA_VERSION}."
        )

    if current == SCHEMA_VERSION:
        return

    await migrate(conn, from_version=current, to_version=SCHEMA_VERSION)
    await conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION};")
    await conn.commit()


async def migrate(conn: aiosqlite.Connection, *, from_version: int, to_version: int) -> None:
    """
    Perform forward-only migrations.

    Keep migrations small. If you need a big refactor, create a new DB.
    """
    # v0 -> v1
    if from_version == 0 and to_version >= 1:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE,
                role TEXT NOT NULL DEFAULT 'User'
                    CHECK (role IN ('User', 'Operator', 'Admin')),
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )

        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS auth_tokens (
                token TEXT PRIMARY KEY,
                user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                expires_at TEXT NOT NULL
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_auth_tokens_user ON auth_tokens(user_id);"
        )

        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS releases (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,

                title TEXT NOT NULL,
                primary_artists TEXT NOT NULL DEFAULT '[]',
                label TEXT,
                genre TEXT,
                sub_genre TEXT,
                language TEXT,
                p_line TEXT,
                c_line TEXT,
                version TEXT NOT NULL DEFAULT '',
                release_type TEXT NOT NULL DEFAULT 'SINGLE',
                upc TEXT,

                status TEXT NOT NULL DEFAULT 'Pending'
                    CHECK (status IN ('Pending', 'Processing', 'Live', 'Rejected')),
                aggregator TEXT,
                rejection_reason TEXT,
                rejection_description TEXT,

                cover_art TEXT,
                asset_dir TEXT,

                is_new_release INTEGER NOT NULL DEFAULT 1,
                original_release_date TEXT,
                planned_release_date TEXT,
                submission_date TEXT,

                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                updated_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_releases_user ON releases(user_id);")
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_releases_status ON releases(status);")
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_releases_title ON releases(title);")
        # Duplicate detection lookup: (owner, title, version)
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_releases_dedupe ON releases(user_id, title, version);"
        )

        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS tracks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                release_id INTEGER NOT NULL REFERENCES releases(id) ON DELETE CASCADE,
                position INTEGER NOT NULL,

                track_number TEXT,
                title TEXT NOT NULL,
                version TEXT,
                genre TEXT,
                sub_genre TEXT,
                is_instrumental TEXT,
                explicit_lyrics TEXT,
                composer TEXT,
                lyricist TEXT,
                lyrics TEXT,
                isrc TEXT,

                audio_file TEXT,
                audio_clip TEXT,
                lyric_sheet TEXT,
                preview_start REAL,

                duration_ms INTEGER,
                sample_rate INTEGER,
                bit_depth INTEGER,

                UNIQUE(release_id, position)
            )
            """
        )
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_tracks_release ON tracks(release_id);")
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_tracks_isrc ON tracks(isrc);")

        await conn.commit()
        from_version = 1

    # v1 -> v2
    if from_version == 1 and to_version >= 2:
        # Track artists and contributors as rows instead of JSON blobs,
        # so the catalog can search them.
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS track_artists (
                track_id INTEGER NOT NULL REFERENCES tracks(id) ON DELETE CASCADE,
                position INTEGER NOT NULL,
                name TEXT NOT NULL,
                role TEXT NOT NULL DEFAULT 'MainArtist',
                PRIMARY KEY (track_id, position)
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_track_artists_name ON track_artists(name);"
        )

        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS track_contributors (
                track_id INTEGER NOT NULL REFERENCES tracks(id) ON DELETE CASCADE,
                position INTEGER NOT NULL,
                name TEXT NOT NULL,
                type TEXT,
                role TEXT,
                PRIMARY KEY (track_id, position)
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_track_contributors_name ON track_contributors(name);"
        )

        await conn.commit()
        from_version = 2

    if from_version != to_version:
        raise RuntimeError(f"No migration path from {from_version} to {to_version}.")
