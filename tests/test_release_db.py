"""
Tests for the ReleaseDb facade (SQLite + aiosqlite).

These tests verify:
- schema creation and user_version bookkeeping
- atomic release + track writes (rollback on failure)
- workflow updates and ISRC assignment
- users, tokens and meta settings
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import aiosqlite
import pytest

from releasedesk.core.db import SCHEMA_VERSION
from releasedesk.core.db.models import ReleaseWrite, TrackWrite
from releasedesk.core.db.queries_releases import ReleaseFilter
from releasedesk.core.models import Actor
from releasedesk.core.release_db import ReleaseDb


def make_release(title: str = "Senja Kita", version: str = "Original", **kwargs) -> ReleaseWrite:
    return ReleaseWrite(
        title=title,
        primary_artists=kwargs.pop("primary_artists", ("Budi Santoso",)),
        version=version,
        **kwargs,
    )


def make_track(position: int = 1, title: str = "Senja Kita", **kwargs) -> TrackWrite:
    return TrackWrite(position=position, title=title, **kwargs)


class TestSchema:
    async def test_open_close(self) -> None:
        db = ReleaseDb(":memory:")
        assert not db.is_open
        await db.open()
        assert db.is_open
        await db.close()
        assert not db.is_open

    async def test_requires_open(self) -> None:
        db = ReleaseDb(":memory:")
        with pytest.raises(RuntimeError):
            await db.get_release(1)

    async def test_user_version_is_set(self, db: ReleaseDb) -> None:
        async with db.transaction() as conn:
            cursor = await conn.execute("PRAGMA user_version;")
            row = await cursor.fetchone()
        assert row[0] == SCHEMA_VERSION

    async def test_ensure_schema_is_idempotent(self, db: ReleaseDb) -> None:
        await db.ensure_schema()
        await db.ensure_schema()


class TestReleases:
    async def test_insert_and_get_with_tracks(self, db: ReleaseDb, user: Actor) -> None:
        tracks = [
            make_track(
                1,
                "Senja Kita",
                genre="Pop",
                artists=(("Budi Santoso", "MainArtist"), ("Sari", "FeaturedArtist")),
                contributors=(("Andi", "Producer", "Mixing"),),
            ),
            make_track(2, "Fajar"),
        ]
        release_id = await db.insert_release(user.user_id, make_release(), tracks)

        release = await db.get_release(release_id, with_tracks=True)
        assert release is not None
        assert release.status == "Pending"
        assert release.primary_artists == ("Budi Santoso",)
        assert release.owner_name == "budi"
        assert release.track_count == 2
        assert release.submission_date is not None
        assert [t.title for t in release.tracks] == ["Senja Kita", "Fajar"]
        first = release.tracks[0]
        assert [(a.name, a.role) for a in first.artists] == [
            ("Budi Santoso", "MainArtist"),
            ("Sari", "FeaturedArtist"),
        ]
        assert first.contributors[0].type == "Producer"

    async def test_get_without_tracks(self, db: ReleaseDb, user: Actor) -> None:
        release_id = await db.insert_release(user.user_id, make_release(), [make_track()])
        release = await db.get_release(release_id)
        assert release is not None
        assert release.tracks == ()
        assert await db.get_release(9999) is None

    async def test_failed_track_insert_rolls_back_release(
        self, db: ReleaseDb, user: Actor
    ) -> None:
        # Two tracks at the same position violate UNIQUE(release_id, position).
        with pytest.raises(aiosqlite.IntegrityError):
            await db.insert_release(
                user.user_id, make_release(), [make_track(1), make_track(1, "Again")]
            )
        assert await db.count_releases(ReleaseFilter()) == 0

    async def test_update_replaces_tracks_and_keeps_workflow_fields(
        self, db: ReleaseDb, user: Actor
    ) -> None:
        release_id = await db.insert_release(
            user.user_id, make_release(upc="111"), [make_track(1), make_track(2, "Old")]
        )
        await db.update_workflow(release_id, {"status": "Processing", "aggregator": "Agg"})

        await db.update_release(release_id, make_release(label="New Label"), [make_track(1, "New")])

        release = await db.get_release(release_id, with_tracks=True)
        assert release is not None
        assert release.status == "Processing"
        assert release.aggregator == "Agg"
        assert release.label == "New Label"
        assert release.upc == "111"
        assert [t.title for t in release.tracks] == ["New"]

    async def test_find_active_duplicate_ignores_rejected(
        self, db: ReleaseDb, user: Actor
    ) -> None:
        release_id = await db.insert_release(user.user_id, make_release(), [make_track()])
        assert await db.find_active_duplicate(user.user_id, "Senja Kita", "Original") == release_id
        assert await db.find_active_duplicate(user.user_id, "Senja Kita", "Remix") is None

        await db.update_workflow(release_id, {"status": "Rejected", "rejection_reason": "Audio"})
        assert await db.find_active_duplicate(user.user_id, "Senja Kita", "Original") is None

    async def test_update_workflow_with_isrc(self, db: ReleaseDb, user: Actor) -> None:
        release_id = await db.insert_release(
            user.user_id, make_release(), [make_track(1), make_track(2, "B")]
        )
        track_ids = [t.id for t in await db.list_tracks(release_id)]

        missing = await db.update_workflow(
            release_id, {"status": "Live", "upc": "123456789012"}, {track_ids[0]: "IDA012500001"}
        )
        assert missing == []

        release = await db.get_release(release_id, with_tracks=True)
        assert release is not None
        assert release.status == "Live"
        assert release.upc == "123456789012"
        assert release.tracks[0].isrc == "IDA012500001"
        assert release.tracks[1].isrc is None

    async def test_update_workflow_unknown_track_writes_nothing(
        self, db: ReleaseDb, user: Actor
    ) -> None:
        release_id = await db.insert_release(user.user_id, make_release(), [make_track()])
        missing = await db.update_workflow(release_id, {"status": "Live"}, {424242: "X"})
        assert missing == [424242]

        release = await db.get_release(release_id)
        assert release is not None
        assert release.status == "Pending"

    async def test_update_workflow_rejects_other_columns(
        self, db: ReleaseDb, user: Actor
    ) -> None:
        release_id = await db.insert_release(user.user_id, make_release(), [make_track()])
        with pytest.raises(ValueError):
            await db.update_workflow(release_id, {"title": "Hijacked"})

    async def test_delete_cascades(self, db: ReleaseDb, user: Actor) -> None:
        release_id = await db.insert_release(user.user_id, make_release(), [make_track()])
        assert await db.delete_release(release_id)
        assert await db.list_tracks(release_id) == []
        assert not await db.delete_release(release_id)


class TestListing:
    @pytest.fixture
    async def seeded(self, db: ReleaseDb, user: Actor, other_user: Actor) -> ReleaseDb:
        await db.insert_release(
            user.user_id, make_release("Alpha", primary_artists=("Zed",), label="Dimensi"), []
        )
        await db.insert_release(user.user_id, make_release("beta", primary_artists=("Ana",)), [])
        rejected = await db.insert_release(
            other_user.user_id, make_release("Gamma", primary_artists=("Mira",)), []
        )
        await db.update_workflow(rejected, {"status": "Rejected", "rejection_reason": "Art"})
        return db

    async def test_filters_stack(self, seeded: ReleaseDb, user: Actor) -> None:
        assert await seeded.count_releases(ReleaseFilter()) == 3
        assert await seeded.count_releases(ReleaseFilter(user_id=user.user_id)) == 2
        assert await seeded.count_releases(ReleaseFilter(status="Rejected")) == 1
        assert (
            await seeded.count_releases(ReleaseFilter(user_id=user.user_id, status="Rejected"))
            == 0
        )

    async def test_search_matches_title_artist_and_label(self, seeded: ReleaseDb) -> None:
        titles = lambda rows: sorted(r.title for r in rows)  # noqa: E731
        assert titles(await seeded.list_releases(ReleaseFilter(search="ALPHA"))) == ["Alpha"]
        assert titles(await seeded.list_releases(ReleaseFilter(search="mira"))) == ["Gamma"]
        assert titles(await seeded.list_releases(ReleaseFilter(search="dimensi"))) == ["Alpha"]

    async def test_sorting(self, seeded: ReleaseDb) -> None:
        rows = await seeded.list_releases(ReleaseFilter(), order_by="title", descending=False)
        assert [r.title for r in rows] == ["Alpha", "beta", "Gamma"]

        rows = await seeded.list_releases(ReleaseFilter(), order_by="artist", descending=False)
        assert [r.primary_artists[0] for r in rows] == ["Ana", "Mira", "Zed"]

    async def test_pagination(self, seeded: ReleaseDb) -> None:
        page = await seeded.list_releases(
            ReleaseFilter(), order_by="id", descending=False, limit=2, offset=2
        )
        assert [r.title for r in page] == ["Gamma"]

    async def test_count_by_status(self, seeded: ReleaseDb, user: Actor) -> None:
        assert await seeded.count_by_status() == {"Pending": 2, "Rejected": 1}
        assert await seeded.count_by_status(user.user_id) == {"Pending": 2}


class TestTransactions:
    async def test_rollback_on_error(self, db: ReleaseDb) -> None:
        with pytest.raises(RuntimeError):
            async with db.transaction():
                await db.set_meta("k", "v")
                raise RuntimeError("boom")
        assert await db.get_meta("k") is None

    async def test_nested_transactions_join(self, db: ReleaseDb) -> None:
        async with db.transaction():
            await db.set_meta("a", "1")
            async with db.transaction():
                await db.set_meta("b", "2")
        assert await db.get_meta("a") == "1"
        assert await db.get_meta("b") == "2"

    async def test_backup_to(self, tmp_path: Path) -> None:
        db = ReleaseDb(tmp_path / "live.sqlite3")
        await db.open()
        await db.ensure_schema()
        await db.set_meta("backup.frequency", "daily")

        target = tmp_path / "backups" / "copy.sqlite3"
        await db.backup_to(target)
        await db.close()

        copy = ReleaseDb(target)
        await copy.open()
        try:
            assert await copy.get_meta("backup.frequency") == "daily"
        finally:
            await copy.close()


class TestUsersAndTokens:
    async def test_create_and_lookup(self, db: ReleaseDb) -> None:
        user_id = await db.create_user("  admin ", "Admin")
        user = await db.get_user(user_id)
        assert user is not None
        assert user.username == "admin"
        assert user.role == "Admin"
        assert (await db.get_user_by_username("admin")).id == user_id

    async def test_empty_username_rejected(self, db: ReleaseDb) -> None:
        with pytest.raises(ValueError):
            await db.create_user("   ")

    async def test_token_round_trip(self, db: ReleaseDb, user: Actor) -> None:
        token = await db.issue_token(user.user_id)
        resolved = await db.resolve_token(token)
        assert resolved is not None
        assert resolved.id == user.user_id
        assert await db.resolve_token("nope") is None
        assert await db.resolve_token("") is None

    async def test_expired_tokens(self, db: ReleaseDb, user: Actor) -> None:
        token = await db.issue_token(user.user_id, timedelta(seconds=-5))
        assert await db.resolve_token(token) is None
        assert await db.purge_expired_tokens() == 1
        assert await db.purge_expired_tokens() == 0

    async def test_meta_upsert(self, db: ReleaseDb) -> None:
        assert await db.get_meta("backup.time") is None
        await db.set_meta("backup.time", "02:00")
        await db.set_meta("backup.time", "03:30")
        assert await db.get_meta("backup.time") == "03:30"
