"""
DB models (DTOs) and small normalization helpers.

This module is intentionally lightweight:
- No DB connection knowledge
- No SQL
- Pure dataclasses + helper functions
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class UserRow:
    id: int
    username: str
    role: str
    created_at: str | None = None


@dataclass(frozen=True, slots=True)
class TrackArtistRow:
    name: str
    role: str


@dataclass(frozen=True, slots=True)
class ContributorRow:
    name: str
    type: str | None
    role: str | None


@dataclass(frozen=True, slots=True)
class TrackRow:
    """
    Track record as stored in SQLite.

    `position` is the 1-based order inside the release; `track_number` is the
    free-form label supplied by the submitter.
    """

    id: int
    release_id: int
    position: int
    title: str
    track_number: str | None = None
    version: str | None = None
    genre: str | None = None
    sub_genre: str | None = None
    is_instrumental: str | None = None
    explicit_lyrics: str | None = None
    composer: str | None = None
    lyricist: str | None = None
    lyrics: str | None = None
    isrc: str | None = None
    audio_file: str | None = None
    audio_clip: str | None = None
    lyric_sheet: str | None = None
    preview_start: float | None = None
    duration_ms: int | None = None
    sample_rate: int | None = None
    bit_depth: int | None = None
    artists: tuple[TrackArtistRow, ...] = ()
    contributors: tuple[ContributorRow, ...] = ()


@dataclass(frozen=True, slots=True)
class ReleaseRow:
    """Committed release record. `tracks` is only filled by detail queries."""

    id: int
    user_id: int
    title: str
    primary_artists: tuple[str, ...]
    status: str
    version: str = ""
    release_type: str = "SINGLE"
    label: str | None = None
    genre: str | None = None
    sub_genre: str | None = None
    language: str | None = None
    p_line: str | None = None
    c_line: str | None = None
    upc: str | None = None
    aggregator: str | None = None
    rejection_reason: str | None = None
    rejection_description: str | None = None
    cover_art: str | None = None
    asset_dir: str | None = None
    is_new_release: bool = True
    original_release_date: str | None = None
    planned_release_date: str | None = None
    submission_date: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    owner_name: str | None = None  # Denormalized for catalog listings
    track_count: int | None = None
    tracks: tuple[TrackRow, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class TrackWrite:
    """Input record for inserting one track (files already resolved to public paths)."""

    position: int
    title: str
    track_number: str | None = None
    version: str | None = None
    genre: str | None = None
    sub_genre: str | None = None
    is_instrumental: str | None = None
    explicit_lyrics: str | None = None
    composer: str | None = None
    lyricist: str | None = None
    lyrics: str | None = None
    isrc: str | None = None
    audio_file: str | None = None
    audio_clip: str | None = None
    lyric_sheet: str | None = None
    preview_start: float | None = None
    duration_ms: int | None = None
    sample_rate: int | None = None
    bit_depth: int | None = None
    artists: tuple[tuple[str, str], ...] = ()  # (name, role)
    contributors: tuple[tuple[str, str, str], ...] = ()  # (name, type, role)


@dataclass(frozen=True, slots=True)
class ReleaseWrite:
    """
    Input record for inserting/updating a release.

    Workflow-owned fields (status, aggregator, rejection data) are absent on
    purpose: finalization never writes them on update.
    """

    title: str
    primary_artists: tuple[str, ...]
    version: str = ""
    release_type: str = "SINGLE"
    label: str | None = None
    genre: str | None = None
    sub_genre: str | None = None
    language: str | None = None
    p_line: str | None = None
    c_line: str | None = None
    upc: str | None = None
    cover_art: str | None = None
    asset_dir: str | None = None
    is_new_release: bool = True
    original_release_date: str | None = None
    planned_release_date: str | None = None


def normalize_text(value: str | None) -> str | None:
    """
    Normalize optional text fields:
    - strip whitespace
    - coerce empty strings to None
    """
    if value is None:
        return None
    v = value.strip()
    return v if v else None


def normalize_int(value: int | None) -> int | None:
    """Normalize optional integer fields (coerce to int, keep None)."""
    if value is None:
        return None
    return int(value)
