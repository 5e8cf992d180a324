"""
Release finalization.

Turns a validated draft plus its assets into a persisted release:

1. validate the whole draft (nothing is touched when it fails)
2. on update, check the release exists and the actor may change it
3. on create, short-circuit when the owner already has an active release
   with the same title and version
4. assemble the assets of releases/{artist}/{title}/ in a pending
   directory, under role names (cover, track{N}, track{N}-clip,
   track{N}-lyrics) for the final track order:
   - files uploaded with the submission are written there
   - staged audio and clips are converted to 48 kHz / 24-bit WAV
   - other staged files are copied as they are
   - files this release already owns are linked in under the name for
     their new position, so reordering or renaming never overwrites them
   - other permanent and opaque references are kept
5. write release and tracks in one transaction
6. move the pending files into place, delete release files that are no
   longer referenced, then delete the consumed staged files and publish
   an event

If anything before the commit fails, only the pending directory is removed:
staged files and the previous release files are untouched.

Asset problems (missing staged file, transcoder failure) do not fail the
submission: the asset is stored as absent and a warning is returned.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import secrets
import shutil
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Final, Iterable

from releasedesk.core import (
    AccessError,
    AssetError,
    DraftValidationError,
    NotFoundError,
    PayloadError,
)
from releasedesk.core.db.models import ReleaseRow, ReleaseWrite, TrackWrite, normalize_text
from releasedesk.core.events import ReleaseSubmittedEvent, ReleaseUpdatedEvent, event_bus
from releasedesk.core.models import Actor, ReleaseDraft, ReleaseStatus, TrackDraft
from releasedesk.core.naming import (
    STAGING_DIR,
    is_permanent_path,
    is_staged_path,
    primary_artist_for_path,
    release_dir,
    resolve_public_path,
    to_public_path,
)
from releasedesk.core.release_db import ReleaseDb
from releasedesk.core.transcoder import AudioTranscoder, probe_audio
from releasedesk.core.uploads import (
    DEFAULT_PREVIEW_SECONDS,
    StagedUploadManager,
    UploadedFile,
    file_extension,
    write_stream,
)
from releasedesk.core.validation import validate_release

logger = logging.getLogger(__name__)

COVER_FIELD: Final[str] = "coverArt"
# track_{i}_{role}, i is 0-based in the multipart form
TRACK_FIELD_ROLES: Final[dict[str, str]] = {
    "audio": "audio_file",
    "clip": "audio_clip",
    "lyrics": "lyric_sheet",
}

MSG_CREATED = "Release submitted successfully"
MSG_UPDATED = "Release updated successfully"
MSG_DUPLICATE = "Release already exists"

PENDING_PREFIX: Final[str] = ".pending-"


@dataclass(frozen=True, slots=True)
class FinalizeResult:
    release_id: int
    created: bool
    duplicate: bool = False
    message: str = ""
    warnings: tuple[str, ...] = ()


@dataclass(slots=True)
class _AssetBuild:
    """Assets of one submission, assembled in `pending` until the database write succeeds."""

    asset_dir: Path
    pending: Path
    # Directories whose files belong to the release being written
    own_dirs: frozenset[Path]
    warnings: list[str] = field(default_factory=list)
    consumed: set[Path] = field(default_factory=set)
    # Final public path -> prepared file in `pending`
    files: dict[str, Path] = field(default_factory=dict)

    def add(self, root: Path, filename: str) -> str:
        public = to_public_path(root, self.asset_dir / filename)
        self.files[public] = self.pending / filename
        return public


def _link_or_copy(src: Path, dst: Path) -> None:
    try:
        os.link(src, dst)
    except OSError:
        shutil.copy2(src, dst)


def _release_refs(release: ReleaseRow | None) -> list[str | None]:
    if release is None:
        return []
    refs: list[str | None] = [release.cover_art]
    for track in release.tracks:
        refs.extend((track.audio_file, track.audio_clip, track.lyric_sheet))
    return refs


def _rollback_build(build: _AssetBuild, remove_dir: bool) -> None:
    shutil.rmtree(build.pending, ignore_errors=True)
    if remove_dir:
        with contextlib.suppress(OSError):
            build.asset_dir.rmdir()


def _commit_build(build: _AssetBuild, old_files: set[Path], new_files: set[Path]) -> None:
    """
    Move prepared files to their final names and drop what the release no longer uses.

    Runs after the database write; the rows already point at the final names.
    """
    for prepared in build.files.values():
        os.replace(prepared, build.asset_dir / prepared.name)
    shutil.rmtree(build.pending, ignore_errors=True)

    for stale in old_files - new_files:
        try:
            stale.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove old release file %s: %s", stale, e)

    # A renamed release leaves its previous directory behind; drop it once empty.
    for directory in build.own_dirs - {build.asset_dir}:
        for path in (directory, directory.parent):
            try:
                path.rmdir()
            except OSError:
                break


def _track_slot(field: str) -> tuple[int, str] | None:
    """Parse `track_{i}_{role}` into (0-based index, draft attribute)."""
    parts = field.split("_")
    if len(parts) != 3 or parts[0] != "track" or not parts[1].isdigit():
        return None
    attr = TRACK_FIELD_ROLES.get(parts[2])
    if attr is None:
        return None
    return int(parts[1]), attr


def _asset_name(attr: str, position: int) -> str:
    if attr == "audio_file":
        return f"track{position}"
    if attr == "audio_clip":
        return f"track{position}-clip"
    return f"track{position}-lyrics"


def _apply_uploads(draft: ReleaseDraft, uploaded: Iterable[UploadedFile]) -> ReleaseDraft:
    """
    Return a copy of `draft` with same-request uploads slotted into its file fields.

    Raises:
        PayloadError: A file part does not name a cover or an existing track.
    """
    cover: Any = draft.cover_art
    tracks = [replace(t) for t in draft.tracks]

    for upload in uploaded:
        if upload.field == COVER_FIELD:
            cover = upload
            continue
        slot = _track_slot(upload.field)
        if slot is None:
            raise PayloadError(f"Unexpected file field: {upload.field}")
        index, attr = slot
        if index >= len(tracks):
            raise PayloadError(f"File {upload.field} refers to a missing track")
        setattr(tracks[index], attr, upload)

    return replace(draft, cover_art=cover, tracks=tracks)


class FinalizationService:
    """
    Commits wizard drafts as releases.

    Conversions run inside the request; the caller waits for ffmpeg.
    """

    def __init__(
        self,
        db: ReleaseDb,
        uploads: StagedUploadManager,
        transcoder: AudioTranscoder | None = None,
        *,
        preview_seconds: float = DEFAULT_PREVIEW_SECONDS,
    ) -> None:
        self._db = db
        self._uploads = uploads
        self._root = uploads.upload_root
        self._transcoder = transcoder or AudioTranscoder()
        self._preview_seconds = float(preview_seconds)

    async def finalize(
        self,
        actor: Actor,
        draft: ReleaseDraft,
        uploaded: Iterable[UploadedFile] = (),
        release_id: int | None = None,
    ) -> FinalizeResult:
        """
        Validate, place assets and persist a release.

        Args:
            actor: Submitting user.
            draft: The typed draft.
            uploaded: File parts that came with the submission request.
            release_id: Existing release to overwrite; None creates one.

        Raises:
            DraftValidationError: The draft is incomplete.
            NotFoundError: `release_id` does not exist.
            AccessError: The actor may not change the release or references
                another user's staged files.
            PayloadError: A file part cannot be matched to the draft.
        """
        if release_id is None and draft.id is not None:
            release_id = draft.id

        draft = _apply_uploads(draft, uploaded)

        errors = validate_release(draft)
        if errors:
            logger.info("Rejected draft from user %s: %s", actor.user_id, "; ".join(errors))
            raise DraftValidationError(errors)

        owner_id = actor.user_id
        existing = None
        if release_id is not None:
            existing = await self._db.get_release(release_id, with_tracks=True)
            if existing is None:
                raise NotFoundError(f"Release {release_id} not found")
            if not actor.can_access(existing.user_id):
                raise AccessError("You do not have permission to edit this release")
            owner_id = existing.user_id

        self._check_staged_ownership(actor, draft)

        title = draft.title.strip()
        version = draft.version.strip()
        if release_id is None:
            duplicate_id = await self._db.find_active_duplicate(owner_id, title, version)
            if duplicate_id is not None:
                logger.info(
                    "Duplicate submission of %r (%s) by user %s -> release %d",
                    title,
                    version,
                    owner_id,
                    duplicate_id,
                )
                return FinalizeResult(
                    release_id=duplicate_id,
                    created=False,
                    duplicate=True,
                    message=MSG_DUPLICATE,
                )

        artist = primary_artist_for_path(draft.primary_artists)
        asset_dir_public = release_dir(artist, title)
        asset_dir = resolve_public_path(self._root, asset_dir_public)
        new_dir = not asset_dir.exists()

        own_dirs = {asset_dir}
        if existing is not None and existing.asset_dir:
            with contextlib.suppress(AssetError):
                own_dirs.add(resolve_public_path(self._root, existing.asset_dir))

        pending = asset_dir / f"{PENDING_PREFIX}{secrets.token_hex(4)}"
        await asyncio.to_thread(pending.mkdir, parents=True)
        build = _AssetBuild(asset_dir=asset_dir, pending=pending, own_dirs=frozenset(own_dirs))

        try:
            cover = await self._place(draft.cover_art, build, "cover", "Cover art")
            tracks = [
                await self._build_track(track, position, build)
                for position, track in enumerate(draft.tracks, start=1)
            ]

            release = ReleaseWrite(
                title=title,
                primary_artists=tuple(
                    name.strip() for name in draft.primary_artists if name.strip()
                ),
                version=version,
                release_type=draft.release_type.value,
                label=normalize_text(draft.label),
                genre=normalize_text(draft.genre),
                sub_genre=normalize_text(draft.sub_genre),
                language=normalize_text(draft.language),
                p_line=normalize_text(draft.p_line),
                c_line=normalize_text(draft.c_line),
                upc=normalize_text(draft.upc),
                cover_art=cover,
                asset_dir=asset_dir_public,
                is_new_release=draft.is_new_release,
                original_release_date=normalize_text(draft.original_release_date),
                planned_release_date=normalize_text(draft.planned_release_date),
            )

            if release_id is None:
                release_id = await self._db.insert_release(
                    owner_id, release, tracks, status=ReleaseStatus.PENDING.value
                )
            else:
                await self._db.update_release(release_id, release, tracks)
        except BaseException:
            await asyncio.to_thread(_rollback_build, build, new_dir)
            raise

        created = existing is None
        new_refs = [cover] + [
            ref for t in tracks for ref in (t.audio_file, t.audio_clip, t.lyric_sheet)
        ]
        old_files = self._own_files(build, _release_refs(existing))
        await asyncio.to_thread(_commit_build, build, old_files, self._own_files(build, new_refs))
        await self._discard(build.consumed)
        await self._uploads.cleanup(actor, artist, title)
        warnings = build.warnings

        logger.info(
            "%s release %d %r for user %s (%d tracks, %d warnings)",
            "Created" if created else "Updated",
            release_id,
            title,
            owner_id,
            len(tracks),
            len(warnings),
        )

        event_cls = ReleaseSubmittedEvent if created else ReleaseUpdatedEvent
        await event_bus.publish(
            event_cls(release_id=release_id, user_id=owner_id, title=title, warnings=warnings)
        )

        return FinalizeResult(
            release_id=release_id,
            created=created,
            message=MSG_CREATED if created else MSG_UPDATED,
            warnings=tuple(warnings),
        )

    # ---------------------------------------------------------------------
    # Asset placement
    # ---------------------------------------------------------------------

    def _check_staged_ownership(self, actor: Actor, draft: ReleaseDraft) -> None:
        own_prefix = f"{STAGING_DIR}/{int(actor.user_id)}/"
        refs: list[Any] = [draft.cover_art]
        for track in draft.tracks:
            refs.extend((track.audio_file, track.audio_clip, track.lyric_sheet))
        for ref in refs:
            if isinstance(ref, str) and is_staged_path(ref):
                if not ref.lstrip("/").startswith(own_prefix):
                    raise AccessError(f"Staged file belongs to another user: {ref}")

    async def _build_track(
        self, track: TrackDraft, position: int, build: _AssetBuild
    ) -> TrackWrite:
        label = f"Track {position}"

        clip_start: float | None = None
        clip_duration: float | None = None
        if (
            isinstance(track.audio_clip, str)
            and isinstance(track.audio_file, str)
            and track.audio_clip == track.audio_file
        ):
            # The clip points at the full audio: cut the preview window out of it.
            clip_start = track.preview_start or 0.0
            clip_duration = self._preview_seconds

        audio = await self._place(
            track.audio_file,
            build,
            _asset_name("audio_file", position),
            f"{label} audio",
            convert=True,
        )
        clip = await self._place(
            track.audio_clip,
            build,
            _asset_name("audio_clip", position),
            f"{label} clip",
            convert=True,
            start_seconds=clip_start,
            duration_seconds=clip_duration,
        )
        lyric_sheet = await self._place(
            track.lyric_sheet,
            build,
            _asset_name("lyric_sheet", position),
            f"{label} lyric sheet",
        )

        duration_ms = sample_rate = bit_depth = None
        audio_path = build.files.get(audio) if audio is not None else None
        if audio_path is None and is_permanent_path(audio):
            try:
                audio_path = resolve_public_path(self._root, audio)
            except AssetError:
                audio_path = None
        if audio_path is not None and audio_path.is_file():
            info = await asyncio.to_thread(probe_audio, audio_path)
            duration_ms, sample_rate, bit_depth = (
                info.duration_ms,
                info.sample_rate,
                info.bit_depth,
            )

        return TrackWrite(
            position=position,
            title=track.title.strip(),
            track_number=normalize_text(track.track_number) or str(position),
            version=normalize_text(track.version),
            genre=normalize_text(track.genre),
            sub_genre=normalize_text(track.sub_genre),
            is_instrumental=normalize_text(track.is_instrumental) or "No",
            explicit_lyrics=normalize_text(track.explicit_lyrics),
            composer=normalize_text(track.composer),
            lyricist=normalize_text(track.lyricist),
            lyrics=track.lyrics or None,
            isrc=normalize_text(track.isrc),
            audio_file=audio,
            audio_clip=clip,
            lyric_sheet=lyric_sheet,
            preview_start=track.preview_start,
            duration_ms=duration_ms,
            sample_rate=sample_rate,
            bit_depth=bit_depth,
            artists=tuple((a.name.strip(), a.role) for a in track.artists if a.name.strip()),
            contributors=tuple(
                (c.name.strip(), c.type, c.role) for c in track.contributors if c.name.strip()
            ),
        )

    async def _place(
        self,
        ref: Any,
        build: _AssetBuild,
        name: str,
        label: str,
        *,
        convert: bool = False,
        start_seconds: float | None = None,
        duration_seconds: float | None = None,
    ) -> str | None:
        """
        Prepare one asset under its role `name` in the pending directory.

        The extension is taken from the source (or .wav when converting).
        Returns the public path the asset will have once committed, or None.
        Files of this release already in place are linked in under the name
        for their new position; references elsewhere are returned unchanged.
        """
        if ref is None:
            return None

        if isinstance(ref, UploadedFile):
            filename = name + file_extension(ref.filename)
            await asyncio.to_thread(
                write_stream, ref.stream, build.pending / filename, self._uploads.max_upload_bytes
            )
            return build.add(self._root, filename)

        if not isinstance(ref, str):
            return None

        if is_permanent_path(ref):
            try:
                src = resolve_public_path(self._root, ref)
            except AssetError:
                return ref
            if src.parent not in build.own_dirs:
                return ref
            if not src.is_file():
                logger.warning("%s: release file %s is missing", label, ref)
                build.warnings.append(f"{label}: release file is missing ({ref})")
                return None
            filename = name + src.suffix.lower()
            await asyncio.to_thread(_link_or_copy, src, build.pending / filename)
            return build.add(self._root, filename)

        if not is_staged_path(ref):
            return ref

        src = resolve_public_path(self._root, ref)
        if not src.is_file():
            logger.warning("%s: staged file %s is missing", label, ref)
            build.warnings.append(f"{label}: staged file is missing ({ref})")
            return None

        if not convert:
            filename = name + src.suffix.lower()
            await asyncio.to_thread(_link_or_copy, src, build.pending / filename)
            build.consumed.add(src)
            return build.add(self._root, filename)

        filename = name + ".wav"
        try:
            await self._transcoder.to_wav(
                src,
                build.pending / filename,
                start_seconds=start_seconds,
                duration_seconds=duration_seconds,
            )
        except AssetError as e:
            logger.warning("%s: conversion of %s failed: %s", label, ref, e)
            build.warnings.append(f"{label}: conversion failed ({e})")
            return None

        build.consumed.add(src)
        return build.add(self._root, filename)

    def _own_files(self, build: _AssetBuild, refs: Iterable[str | None]) -> set[Path]:
        """Filesystem paths of the references that live in this release's directories."""
        files: set[Path] = set()
        for ref in refs:
            if not is_permanent_path(ref):
                continue
            try:
                path = resolve_public_path(self._root, ref)
            except AssetError:
                continue
            if path.parent in build.own_dirs:
                files.add(path)
        return files

    async def _discard(self, paths: Iterable[Path]) -> None:
        for path in paths:
            try:
                await asyncio.to_thread(path.unlink, True)
            except OSError as e:
                logger.warning("Could not remove staged file %s: %s", path, e)
