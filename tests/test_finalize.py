"""
Tests for release finalization (draft + assets -> persisted release).
"""

from __future__ import annotations

import io
from pathlib import Path

import pytest

from releasedesk.core import AccessError, DraftValidationError, NotFoundError, PayloadError
from releasedesk.core.events import Event
from releasedesk.core.finalize import (
    MSG_CREATED,
    MSG_DUPLICATE,
    MSG_UPDATED,
    FinalizationService,
)
from releasedesk.core.models import Actor, ReleaseDraft, parse_release_payload
from releasedesk.core.release_db import ReleaseDb
from releasedesk.core.uploads import StagedUploadManager, UploadedFile

from .conftest import FakeTranscoder

ARTIST = "Budi Santoso"
TITLE = "Senja Kita"


def senja_kita(**overrides) -> ReleaseDraft:
    payload = {
        "title": TITLE,
        "primaryArtists": [ARTIST],
        "language": "Indonesia",
        "version": "Original",
        "label": "Dimensi Records",
        "plannedReleaseDate": "2025-01-01",
        "tracks": [
            {
                "title": TITLE,
                "genre": "Pop",
                "composer": "X",
                "isInstrumental": "No",
                "lyricist": "Y",
                "explicitLyrics": "No",
                "artists": [{"name": ARTIST, "role": "MainArtist"}],
            }
        ],
    }
    payload.update(overrides)
    return parse_release_payload(payload)


async def stage(uploads: StagedUploadManager, actor: Actor, **files: bytes) -> dict[str, str]:
    """Stage files as the wizard would; keys are form field names."""
    names = {"coverArt": "cover.jpg", "track_0_lyrics": "lyrics.pdf"}
    return await uploads.store_files(
        actor,
        ARTIST,
        TITLE,
        [
            UploadedFile(field, names.get(field, "audio.flac"), io.BytesIO(data))
            for field, data in files.items()
        ],
    )


@pytest.fixture
def service(
    db: ReleaseDb, uploads: StagedUploadManager, transcoder: FakeTranscoder
) -> FinalizationService:
    return FinalizationService(db, uploads, transcoder, preview_seconds=45)


async def staged_draft(uploads: StagedUploadManager, actor: Actor) -> ReleaseDraft:
    staged = await stage(uploads, actor, coverArt=b"jpeg", track_0_audio=b"flac")
    draft = senja_kita()
    draft.cover_art = staged["coverArt"]
    draft.tracks[0].audio_file = staged["track_0_audio"]
    return draft


class TestFinalize:
    async def test_end_to_end(
        self,
        service: FinalizationService,
        db: ReleaseDb,
        uploads: StagedUploadManager,
        upload_root: Path,
        user: Actor,
        published: list[Event],
    ) -> None:
        draft = await staged_draft(uploads, user)

        result = await service.finalize(user, draft)

        assert result.created
        assert not result.duplicate
        assert result.message == MSG_CREATED
        assert result.warnings == ()

        release = await db.get_release(result.release_id, with_tracks=True)
        assert release is not None
        assert release.status == "Pending"
        assert release.user_id == user.user_id
        assert release.asset_dir == f"releases/{ARTIST}/{TITLE}"
        assert release.cover_art == f"releases/{ARTIST}/{TITLE}/cover.jpg"
        assert len(release.tracks) == 1

        track = release.tracks[0]
        assert track.position == 1
        assert track.track_number == "1"
        assert track.audio_file == f"releases/{ARTIST}/{TITLE}/track1.wav"
        assert track.audio_clip is None
        assert [(a.name, a.role) for a in track.artists] == [(ARTIST, "MainArtist")]
        assert (upload_root / track.audio_file).read_bytes() == b"flac"
        assert (upload_root / release.cover_art).read_bytes() == b"jpeg"

        # Staging is consumed.
        assert not (upload_root / "tmp" / str(user.user_id) / ARTIST / TITLE).exists()

        assert [e.event_type for e in published] == ["release.submitted"]

    async def test_incomplete_draft_touches_nothing(
        self, service: FinalizationService, db: ReleaseDb, upload_root: Path, user: Actor
    ) -> None:
        with pytest.raises(DraftValidationError) as exc:
            await service.finalize(user, senja_kita())
        assert "Cover Art is required." in exc.value.errors
        assert "Track 1: Audio file is missing." in exc.value.errors
        assert not (upload_root / "releases").exists()
        assert await db.count_by_status() == {}

    async def test_duplicate_returns_existing_release(
        self,
        service: FinalizationService,
        db: ReleaseDb,
        uploads: StagedUploadManager,
        upload_root: Path,
        user: Actor,
    ) -> None:
        first = await service.finalize(user, await staged_draft(uploads, user))

        draft = await staged_draft(uploads, user)
        again = await service.finalize(user, draft)

        assert again.duplicate
        assert not again.created
        assert again.release_id == first.release_id
        assert again.message == MSG_DUPLICATE
        assert await db.count_by_status() == {"Pending": 1}
        # The duplicate check runs before any file is moved.
        assert (upload_root / draft.tracks[0].audio_file).exists()

    async def test_rejected_release_can_be_resubmitted(
        self,
        service: FinalizationService,
        db: ReleaseDb,
        uploads: StagedUploadManager,
        user: Actor,
    ) -> None:
        first = await service.finalize(user, await staged_draft(uploads, user))
        await db.update_workflow(first.release_id, {"status": "Rejected", "rejection_reason": "x"})

        second = await service.finalize(user, await staged_draft(uploads, user))
        assert second.created
        assert second.release_id != first.release_id

    async def test_update_keeps_status_and_replaces_tracks(
        self,
        service: FinalizationService,
        db: ReleaseDb,
        uploads: StagedUploadManager,
        user: Actor,
        published: list[Event],
    ) -> None:
        first = await service.finalize(user, await staged_draft(uploads, user))
        await db.update_workflow(first.release_id, {"status": "Processing"})
        stored = await db.get_release(first.release_id, with_tracks=True)
        assert stored is not None

        draft = senja_kita(label="Other Label")
        draft.cover_art = stored.cover_art
        draft.tracks[0].audio_file = stored.tracks[0].audio_file
        draft.tracks[0].title = "Senja Kita (Edit)"

        result = await service.finalize(user, draft, release_id=first.release_id)

        assert not result.created
        assert result.message == MSG_UPDATED
        updated = await db.get_release(first.release_id, with_tracks=True)
        assert updated is not None
        assert updated.status == "Processing"
        assert updated.label == "Other Label"
        assert updated.cover_art == stored.cover_art
        assert [t.title for t in updated.tracks] == ["Senja Kita (Edit)"]
        assert published[-1].event_type == "release.updated"

    async def test_update_uses_draft_id(
        self,
        service: FinalizationService,
        uploads: StagedUploadManager,
        user: Actor,
    ) -> None:
        first = await service.finalize(user, await staged_draft(uploads, user))
        draft = await staged_draft(uploads, user)
        draft.id = first.release_id

        result = await service.finalize(user, draft)
        assert result.release_id == first.release_id
        assert not result.created
        assert not result.duplicate

    async def test_update_missing_release(
        self, service: FinalizationService, uploads: StagedUploadManager, user: Actor
    ) -> None:
        with pytest.raises(NotFoundError):
            await service.finalize(user, await staged_draft(uploads, user), release_id=999)

    async def test_update_foreign_release(
        self,
        service: FinalizationService,
        uploads: StagedUploadManager,
        user: Actor,
        other_user: Actor,
        operator: Actor,
    ) -> None:
        first = await service.finalize(user, await staged_draft(uploads, user))

        with pytest.raises(AccessError):
            await service.finalize(
                other_user, await staged_draft(uploads, other_user), release_id=first.release_id
            )

        # Operators may edit; ownership stays with the submitter.
        result = await service.finalize(
            operator, await staged_draft(uploads, operator), release_id=first.release_id
        )
        assert result.release_id == first.release_id

    async def test_foreign_staged_file_is_refused(
        self,
        service: FinalizationService,
        uploads: StagedUploadManager,
        user: Actor,
        other_user: Actor,
    ) -> None:
        draft = await staged_draft(uploads, other_user)
        with pytest.raises(AccessError):
            await service.finalize(user, draft)


class TestAssetHandling:
    async def test_conversion_failure_is_a_warning(
        self,
        db: ReleaseDb,
        uploads: StagedUploadManager,
        user: Actor,
    ) -> None:
        service = FinalizationService(db, uploads, FakeTranscoder(fail=True))
        result = await service.finalize(user, await staged_draft(uploads, user))

        assert result.created
        assert len(result.warnings) == 1
        assert result.warnings[0].startswith("Track 1 audio: conversion failed")
        release = await db.get_release(result.release_id, with_tracks=True)
        assert release is not None
        assert release.tracks[0].audio_file is None
        assert release.cover_art is not None

    async def test_missing_staged_file_is_a_warning(
        self, service: FinalizationService, db: ReleaseDb, uploads: StagedUploadManager, user: Actor
    ) -> None:
        draft = await staged_draft(uploads, user)
        draft.tracks[0].audio_file = f"tmp/{user.user_id}/{ARTIST}/{TITLE}/gone.wav"

        result = await service.finalize(user, draft)

        assert result.warnings == (f"Track 1 audio: staged file is missing ({draft.tracks[0].audio_file})",)
        release = await db.get_release(result.release_id, with_tracks=True)
        assert release is not None
        assert release.tracks[0].audio_file is None

    async def test_clip_cut_from_full_audio(
        self,
        service: FinalizationService,
        uploads: StagedUploadManager,
        transcoder: FakeTranscoder,
        db: ReleaseDb,
        user: Actor,
    ) -> None:
        draft = await staged_draft(uploads, user)
        draft.tracks[0].audio_clip = draft.tracks[0].audio_file
        draft.tracks[0].preview_start = 20.0

        result = await service.finalize(user, draft)

        clip_call = [c for c in transcoder.calls if c[1].name == "track1-clip.wav"]
        assert len(clip_call) == 1
        assert clip_call[0][2] == 20.0
        assert clip_call[0][3] == 45.0

        release = await db.get_release(result.release_id, with_tracks=True)
        assert release is not None
        assert release.tracks[0].audio_clip == f"releases/{ARTIST}/{TITLE}/track1-clip.wav"
        assert release.tracks[0].preview_start == 20.0

    async def test_lyric_sheet_is_moved_without_conversion(
        self,
        service: FinalizationService,
        uploads: StagedUploadManager,
        transcoder: FakeTranscoder,
        db: ReleaseDb,
        user: Actor,
    ) -> None:
        draft = await staged_draft(uploads, user)
        staged = await stage(uploads, user, track_0_lyrics=b"%PDF")
        draft.tracks[0].lyric_sheet = staged["track_0_lyrics"]

        result = await service.finalize(user, draft)

        release = await db.get_release(result.release_id, with_tracks=True)
        assert release is not None
        assert release.tracks[0].lyric_sheet == f"releases/{ARTIST}/{TITLE}/track1-lyrics.pdf"
        assert all(c[1].name != "track1-lyrics.pdf" for c in transcoder.calls)

    async def test_same_request_uploads(
        self,
        service: FinalizationService,
        db: ReleaseDb,
        upload_root: Path,
        transcoder: FakeTranscoder,
        user: Actor,
    ) -> None:
        files = [
            UploadedFile("coverArt", "front.PNG", io.BytesIO(b"png")),
            UploadedFile("track_0_audio", "master.wav", io.BytesIO(b"wav")),
        ]
        result = await service.finalize(user, senja_kita(), files)

        release = await db.get_release(result.release_id, with_tracks=True)
        assert release is not None
        assert release.cover_art == f"releases/{ARTIST}/{TITLE}/cover.png"
        assert release.tracks[0].audio_file == f"releases/{ARTIST}/{TITLE}/track1.wav"
        assert (upload_root / release.tracks[0].audio_file).read_bytes() == b"wav"
        assert transcoder.calls == []

    @pytest.mark.parametrize("field", ["track_5_audio", "track_0_video", "banner"])
    async def test_unknown_upload_field(
        self, service: FinalizationService, user: Actor, field: str
    ) -> None:
        with pytest.raises(PayloadError):
            await service.finalize(
                user, senja_kita(), [UploadedFile(field, "x.wav", io.BytesIO(b"x"))]
            )

    async def test_permanent_and_opaque_references_are_kept(
        self, service: FinalizationService, db: ReleaseDb, user: Actor
    ) -> None:
        draft = senja_kita(coverArt="https://cdn.example.org/cover.jpg")
        draft.tracks[0].audio_file = "releases/Old/Path/track1.wav"

        result = await service.finalize(user, draft)

        release = await db.get_release(result.release_id, with_tracks=True)
        assert release is not None
        assert release.cover_art == "https://cdn.example.org/cover.jpg"
        assert release.tracks[0].audio_file == "releases/Old/Path/track1.wav"
        assert result.warnings == ()


def two_track_draft(**overrides) -> ReleaseDraft:
    track = {
        "genre": "Pop",
        "composer": "X",
        "isInstrumental": "No",
        "lyricist": "Y",
        "explicitLyrics": "No",
        "artists": [{"name": ARTIST, "role": "MainArtist"}],
    }
    return senja_kita(
        releaseType="ALBUM",
        genre="Pop",
        tracks=[dict(track, title="Pagi"), dict(track, title="Malam")],
        **overrides,
    )


def pending_dirs(root: Path) -> list[Path]:
    return list((root / "releases").rglob(".pending-*"))


class TestReleaseFiles:
    async def create_two_tracks(
        self, service: FinalizationService, db: ReleaseDb, user: Actor
    ) -> int:
        files = [
            UploadedFile("coverArt", "cover.jpg", io.BytesIO(b"jpeg")),
            UploadedFile("track_0_audio", "one.wav", io.BytesIO(b"ONE")),
            UploadedFile("track_1_audio", "two.wav", io.BytesIO(b"TWO")),
        ]
        result = await service.finalize(user, two_track_draft(), files)
        return result.release_id

    async def test_failed_write_keeps_staged_files(
        self,
        service: FinalizationService,
        db: ReleaseDb,
        uploads: StagedUploadManager,
        upload_root: Path,
        user: Actor,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        draft = await staged_draft(uploads, user)

        async def broken_insert(*args, **kwargs):
            raise RuntimeError("disk full")

        with monkeypatch.context() as patched:
            patched.setattr(db, "insert_release", broken_insert)
            with pytest.raises(RuntimeError):
                await service.finalize(user, draft)

        assert (upload_root / draft.cover_art).read_bytes() == b"jpeg"
        assert (upload_root / draft.tracks[0].audio_file).read_bytes() == b"flac"
        assert not (upload_root / "releases" / ARTIST / TITLE).exists()

        result = await service.finalize(user, draft)

        assert result.created
        assert result.warnings == ()
        release = await db.get_release(result.release_id, with_tracks=True)
        assert release is not None
        assert release.cover_art == f"releases/{ARTIST}/{TITLE}/cover.jpg"
        assert (upload_root / release.cover_art).read_bytes() == b"jpeg"

    async def test_failed_update_keeps_previous_files(
        self,
        service: FinalizationService,
        db: ReleaseDb,
        upload_root: Path,
        user: Actor,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        release_id = await self.create_two_tracks(service, db, user)
        stored = await db.get_release(release_id, with_tracks=True)
        assert stored is not None

        draft = two_track_draft(coverArt=stored.cover_art)
        draft.tracks[1].audio_file = stored.tracks[1].audio_file
        files = [UploadedFile("track_0_audio", "new.wav", io.BytesIO(b"NEW"))]

        async def broken_update(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(db, "update_release", broken_update)
        with pytest.raises(RuntimeError):
            await service.finalize(user, draft, files, release_id=release_id)

        assert (upload_root / stored.tracks[0].audio_file).read_bytes() == b"ONE"
        assert (upload_root / stored.tracks[1].audio_file).read_bytes() == b"TWO"
        assert pending_dirs(upload_root) == []

    async def test_reordered_tracks_keep_their_audio(
        self, service: FinalizationService, db: ReleaseDb, upload_root: Path, user: Actor
    ) -> None:
        release_id = await self.create_two_tracks(service, db, user)
        stored = await db.get_release(release_id, with_tracks=True)
        assert stored is not None
        first = stored.tracks[0]

        # Track 1's recording moves to position 2; a new recording takes position 1.
        draft = two_track_draft(coverArt=stored.cover_art)
        draft.tracks[0].title = "Subuh"
        draft.tracks[1].audio_file = first.audio_file
        files = [UploadedFile("track_0_audio", "new.wav", io.BytesIO(b"NEW"))]

        await service.finalize(user, draft, files, release_id=release_id)

        updated = await db.get_release(release_id, with_tracks=True)
        assert updated is not None
        audio = [t.audio_file for t in updated.tracks]
        assert audio == [
            f"releases/{ARTIST}/{TITLE}/track1.wav",
            f"releases/{ARTIST}/{TITLE}/track2.wav",
        ]
        assert (upload_root / audio[0]).read_bytes() == b"NEW"
        assert (upload_root / audio[1]).read_bytes() == b"ONE"
        # The recording that used to be track 2 is gone.
        release_dir = upload_root / "releases" / ARTIST / TITLE
        assert b"TWO" not in {p.read_bytes() for p in release_dir.iterdir()}
        assert pending_dirs(upload_root) == []

    async def test_swapped_tracks_swap_files(
        self, service: FinalizationService, db: ReleaseDb, upload_root: Path, user: Actor
    ) -> None:
        release_id = await self.create_two_tracks(service, db, user)
        stored = await db.get_release(release_id, with_tracks=True)
        assert stored is not None

        draft = two_track_draft(coverArt=stored.cover_art)
        draft.tracks[0].title, draft.tracks[1].title = "Malam", "Pagi"
        draft.tracks[0].audio_file = stored.tracks[1].audio_file
        draft.tracks[1].audio_file = stored.tracks[0].audio_file

        await service.finalize(user, draft, release_id=release_id)

        updated = await db.get_release(release_id, with_tracks=True)
        assert updated is not None
        assert [t.title for t in updated.tracks] == ["Malam", "Pagi"]
        assert (upload_root / updated.tracks[0].audio_file).read_bytes() == b"TWO"
        assert (upload_root / updated.tracks[1].audio_file).read_bytes() == b"ONE"

    async def test_dropped_track_file_is_removed(
        self, service: FinalizationService, db: ReleaseDb, upload_root: Path, user: Actor
    ) -> None:
        release_id = await self.create_two_tracks(service, db, user)
        stored = await db.get_release(release_id, with_tracks=True)
        assert stored is not None

        draft = senja_kita(coverArt=stored.cover_art)
        draft.tracks[0].audio_file = stored.tracks[1].audio_file

        await service.finalize(user, draft, release_id=release_id)

        release_dir = upload_root / "releases" / ARTIST / TITLE
        assert sorted(p.name for p in release_dir.iterdir()) == ["cover.jpg", "track1.wav"]
        assert (release_dir / "track1.wav").read_bytes() == b"TWO"

    async def test_renamed_release_moves_its_files(
        self,
        service: FinalizationService,
        db: ReleaseDb,
        uploads: StagedUploadManager,
        upload_root: Path,
        user: Actor,
    ) -> None:
        first = await service.finalize(user, await staged_draft(uploads, user))
        stored = await db.get_release(first.release_id, with_tracks=True)
        assert stored is not None

        draft = senja_kita(title="Senja Kita (Remaster)", coverArt=stored.cover_art)
        draft.tracks[0].audio_file = stored.tracks[0].audio_file

        result = await service.finalize(user, draft, release_id=first.release_id)

        assert result.warnings == ()
        updated = await db.get_release(first.release_id, with_tracks=True)
        assert updated is not None
        new_dir = f"releases/{ARTIST}/Senja Kita (Remaster)"
        assert updated.asset_dir == new_dir
        assert updated.cover_art == f"{new_dir}/cover.jpg"
        assert updated.tracks[0].audio_file == f"{new_dir}/track1.wav"
        assert (upload_root / updated.cover_art).read_bytes() == b"jpeg"
        assert (upload_root / updated.tracks[0].audio_file).read_bytes() == b"flac"
        assert not (upload_root / "releases" / ARTIST / TITLE).exists()

    async def test_missing_release_file_is_a_warning(
        self, service: FinalizationService, db: ReleaseDb, upload_root: Path, user: Actor
    ) -> None:
        release_id = await self.create_two_tracks(service, db, user)
        stored = await db.get_release(release_id, with_tracks=True)
        assert stored is not None
        (upload_root / stored.tracks[1].audio_file).unlink()

        draft = two_track_draft(coverArt=stored.cover_art)
        draft.tracks[0].audio_file = stored.tracks[0].audio_file
        draft.tracks[1].audio_file = stored.tracks[1].audio_file

        result = await service.finalize(user, draft, release_id=release_id)

        assert result.warnings == (
            f"Track 2 audio: release file is missing ({stored.tracks[1].audio_file})",
        )
