"""
Draft models and boundary conversion.

The wizard sends loosely-shaped JSON (camelCase keys, artists sometimes as a
list and sometimes as a string, numbers as strings). `parse_release_payload`
converts it exactly once into typed drafts; everything downstream works on
`ReleaseDraft` / `TrackDraft` only.

`draft_to_dict` is the inverse and produces the wire/camelCase shape again.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from releasedesk.core import PayloadError


class Role(str, Enum):
    """Actor roles supplied by the authentication collaborator."""

    USER = "User"
    OPERATOR = "Operator"
    ADMIN = "Admin"


class ReleaseStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    LIVE = "Live"
    REJECTED = "Rejected"


class ReleaseType(str, Enum):
    SINGLE = "SINGLE"
    ALBUM = "ALBUM"


class WizardStep(int, Enum):
    INFO = 1
    TRACKS = 2
    DETAILS = 3
    REVIEW = 4


ARTIST_ROLES: tuple[str, ...] = ("MainArtist", "FeaturedArtist", "Remixer")
EXPLICIT_OPTIONS: tuple[str, ...] = ("No", "Yes", "Clean")

# File-bearing fields, used by the draft store to normalize degraded handles.
RELEASE_FILE_FIELDS: tuple[str, ...] = ("cover_art",)
TRACK_FILE_FIELDS: tuple[str, ...] = ("audio_file", "audio_clip", "lyric_sheet")


@dataclass(frozen=True, slots=True)
class Actor:
    """Authenticated identity performing an operation."""

    user_id: int
    role: Role = Role.USER

    @property
    def is_elevated(self) -> bool:
        return self.role in (Role.OPERATOR, Role.ADMIN)

    def can_access(self, owner_id: int) -> bool:
        return self.is_elevated or int(owner_id) == int(self.user_id)


@dataclass(slots=True)
class TrackArtist:
    name: str
    role: str = "MainArtist"


@dataclass(slots=True)
class Contributor:
    name: str
    type: str = ""
    role: str = ""


@dataclass(slots=True)
class TrackDraft:
    """
    One track of a release draft.

    `track_number` is a string on purpose: labels use "1", "A2", "2-03"...
    File fields hold a path string or None; any other object is a local file
    handle that only the draft store ever sees.
    """

    title: str = ""
    track_number: str = ""
    version: str = ""
    artists: list[TrackArtist] = field(default_factory=list)
    audio_file: Any = None
    audio_clip: Any = None
    lyric_sheet: Any = None
    genre: str = ""
    sub_genre: str = ""
    is_instrumental: str = "No"
    explicit_lyrics: str = ""
    composer: str = ""
    lyricist: str = ""
    lyrics: str = ""
    isrc: str = ""
    contributors: list[Contributor] = field(default_factory=list)
    preview_start: float | None = None


@dataclass(slots=True)
class ReleaseDraft:
    """In-progress release collected by the wizard."""

    title: str = ""
    primary_artists: list[str] = field(default_factory=lambda: [""])
    cover_art: Any = None
    label: str = ""
    genre: str = ""
    sub_genre: str = ""
    language: str = ""
    p_line: str = ""
    c_line: str = ""
    version: str = ""
    release_type: ReleaseType = ReleaseType.SINGLE
    upc: str = ""
    tracks: list[TrackDraft] = field(default_factory=list)
    is_new_release: bool = True
    original_release_date: str = ""
    planned_release_date: str = ""
    id: int | None = None

    @property
    def is_single(self) -> bool:
        return self.release_type == ReleaseType.SINGLE


# ---------------------------------------------------------------------------
# Boundary conversion
# ---------------------------------------------------------------------------


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    return str(value).strip()


def _file_ref(value: Any) -> str | None:
    """Only non-empty strings survive as file references."""
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _flag(value: Any, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    return str(value).strip().lower() in ("1", "true", "yes", "y", "on")


def _float_or_none(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise PayloadError(f"Expected a number, got {value!r}") from e
    return max(0.0, number)


def _int_or_none(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise PayloadError(f"Expected an integer id, got {value!r}") from e


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    """First present key wins (camelCase wire names, then snake_case)."""
    for key in keys:
        if key in data:
            return data[key]
    return None


def parse_artist_names(value: Any) -> list[str]:
    """Accept a list of names, a list of {name}, or one comma-separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple)):
        names: list[str] = []
        for item in value:
            if isinstance(item, Mapping):
                names.append(_text(item.get("name")))
            else:
                names.append(_text(item))
        return names
    raise PayloadError(f"Unsupported artist list: {type(value).__name__}")


def _parse_track_artists(value: Any) -> list[TrackArtist]:
    if value is None:
        return []
    if isinstance(value, str):
        return [TrackArtist(name=name) for name in parse_artist_names(value)]
    if not isinstance(value, (list, tuple)):
        raise PayloadError("Track artists must be a list")

    artists: list[TrackArtist] = []
    for item in value:
        if isinstance(item, Mapping):
            role = _text(item.get("role")) or "MainArtist"
            artists.append(TrackArtist(name=_text(item.get("name")), role=role))
        else:
            artists.append(TrackArtist(name=_text(item)))
    return artists


def _parse_contributors(value: Any) -> list[Contributor]:
    if not value:
        return []
    if not isinstance(value, (list, tuple)):
        raise PayloadError("Contributors must be a list")
    result: list[Contributor] = []
    for item in value:
        if not isinstance(item, Mapping):
            raise PayloadError("Each contributor must be an object")
        result.append(
            Contributor(
                name=_text(item.get("name")),
                type=_text(item.get("type")),
                role=_text(item.get("role")),
            )
        )
    return result


def parse_track_payload(data: Mapping[str, Any]) -> TrackDraft:
    if not isinstance(data, Mapping):
        raise PayloadError("Each track must be an object")

    return TrackDraft(
        title=_text(data.get("title")),
        track_number=_text(_pick(data, "trackNumber", "track_number")),
        version=_text(data.get("version")),
        artists=_parse_track_artists(data.get("artists")),
        audio_file=_file_ref(
            _pick(data, "audioFile", "audio_file") or _pick(data, "tempAudioPath")
        ),
        audio_clip=_file_ref(_pick(data, "audioClip", "audio_clip") or _pick(data, "tempClipPath")),
        lyric_sheet=_file_ref(_pick(data, "lyricSheet", "lyric_sheet", "iplFile")),
        genre=_text(data.get("genre")),
        sub_genre=_text(_pick(data, "subGenre", "sub_genre")),
        is_instrumental=_text(_pick(data, "isInstrumental", "is_instrumental")) or "No",
        explicit_lyrics=_text(_pick(data, "explicitLyrics", "explicit_lyrics")),
        composer=_text(data.get("composer")),
        lyricist=_text(data.get("lyricist")),
        lyrics=str(data.get("lyrics") or ""),
        isrc=_text(data.get("isrc")),
        contributors=_parse_contributors(data.get("contributors")),
        preview_start=_float_or_none(_pick(data, "previewStart", "preview_start")),
    )


def parse_release_payload(data: Any) -> ReleaseDraft:
    """
    Convert an untyped wizard payload into a `ReleaseDraft`.

    Raises:
        PayloadError: If the payload is not an object or a nested value has
            an unusable shape.
    """
    if not isinstance(data, Mapping):
        raise PayloadError("Release payload must be a JSON object")

    tracks_raw = data.get("tracks") or []
    if not isinstance(tracks_raw, (list, tuple)):
        raise PayloadError("tracks must be a list")

    raw_type = _text(_pick(data, "type", "releaseType", "release_type")).upper()
    try:
        release_type = ReleaseType(raw_type) if raw_type else ReleaseType.SINGLE
    except ValueError:
        # The wizard labels EP releases separately; they behave like albums.
        release_type = ReleaseType.ALBUM

    artists = parse_artist_names(_pick(data, "primaryArtists", "primary_artists"))

    return ReleaseDraft(
        id=_int_or_none(data.get("id")),
        title=_text(data.get("title")),
        primary_artists=artists or [""],
        cover_art=_file_ref(_pick(data, "coverArt", "cover_art")),
        label=_text(data.get("label")),
        genre=_text(data.get("genre")),
        sub_genre=_text(_pick(data, "subGenre", "sub_genre")),
        language=_text(data.get("language")),
        p_line=_text(_pick(data, "pLine", "p_line")),
        c_line=_text(_pick(data, "cLine", "c_line")),
        version=_text(data.get("version")),
        release_type=release_type,
        upc=_text(data.get("upc")),
        tracks=[parse_track_payload(t) for t in tracks_raw],
        is_new_release=_flag(_pick(data, "isNewRelease", "is_new_release"), True),
        original_release_date=_text(_pick(data, "originalReleaseDate", "original_release_date")),
        planned_release_date=_text(_pick(data, "plannedReleaseDate", "planned_release_date")),
    )


def _dump_file(value: Any) -> Any:
    """Strings survive; anything else becomes {} (what a JSON serializer leaves of a handle)."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return {}


def track_to_dict(track: TrackDraft) -> dict[str, Any]:
    return {
        "title": track.title,
        "trackNumber": track.track_number,
        "version": track.version,
        "artists": [{"name": a.name, "role": a.role} for a in track.artists],
        "audioFile": _dump_file(track.audio_file),
        "audioClip": _dump_file(track.audio_clip),
        "lyricSheet": _dump_file(track.lyric_sheet),
        "genre": track.genre,
        "subGenre": track.sub_genre,
        "isInstrumental": track.is_instrumental,
        "explicitLyrics": track.explicit_lyrics,
        "composer": track.composer,
        "lyricist": track.lyricist,
        "lyrics": track.lyrics,
        "isrc": track.isrc,
        "contributors": [{"name": c.name, "type": c.type, "role": c.role} for c in track.contributors],
        "previewStart": track.preview_start,
    }


def draft_to_dict(draft: ReleaseDraft) -> dict[str, Any]:
    """Serialize a draft into the wizard's camelCase JSON shape."""
    return {
        "id": draft.id,
        "type": draft.release_type.value,
        "title": draft.title,
        "primaryArtists": list(draft.primary_artists),
        "coverArt": _dump_file(draft.cover_art),
        "label": draft.label,
        "genre": draft.genre,
        "subGenre": draft.sub_genre,
        "language": draft.language,
        "pLine": draft.p_line,
        "cLine": draft.c_line,
        "version": draft.version,
        "upc": draft.upc,
        "tracks": [track_to_dict(t) for t in draft.tracks],
        "isNewRelease": draft.is_new_release,
        "originalReleaseDate": draft.original_release_date,
        "plannedReleaseDate": draft.planned_release_date,
    }
