"""
Track-related DB queries.

Tracks are never patched individually by submitters: `replace_tracks`
deletes every track of a release and inserts the new list (artists and
contributors cascade with their track). The only per-track update is the
ISRC code assigned during review.
"""

from __future__ import annotations

from typing import Iterable

import aiosqlite

from releasedesk.core.db.models import ContributorRow, TrackArtistRow, TrackRow, TrackWrite


def _row_to_track(
    row: aiosqlite.Row,
    artists: tuple[TrackArtistRow, ...] = (),
    contributors: tuple[ContributorRow, ...] = (),
) -> TrackRow:
    return TrackRow(
        id=int(row["id"]),
        release_id=int(row["release_id"]),
        position=int(row["position"]),
        title=str(row["title"]),
        track_number=row["track_number"],
        version=row["version"],
        genre=row["genre"],
        sub_genre=row["sub_genre"],
        is_instrumental=row["is_instrumental"],
        explicit_lyrics=row["explicit_lyrics"],
        composer=row["composer"],
        lyricist=row["lyricist"],
        lyrics=row["lyrics"],
        isrc=row["isrc"],
        audio_file=row["audio_file"],
        audio_clip=row["audio_clip"],
        lyric_sheet=row["lyric_sheet"],
        preview_start=row["preview_start"],
        duration_ms=row["duration_ms"],
        sample_rate=row["sample_rate"],
        bit_depth=row["bit_depth"],
        artists=artists,
        contributors=contributors,
    )


async def list_tracks_for_release(conn: aiosqlite.Connection, release_id: int) -> list[TrackRow]:
    cursor = await conn.execute(
        "SELECT * FROM tracks WHERE release_id = ? ORDER BY position ASC;",
        (int(release_id),),
    )
    rows = await cursor.fetchall()
    if not rows:
        return []

    track_ids = [int(r["id"]) for r in rows]
    placeholders = ",".join("?" for _ in track_ids)

    artists: dict[int, list[TrackArtistRow]] = {tid: [] for tid in track_ids}
    cursor = await conn.execute(
        f"""
        SELECT track_id, name, role FROM track_artists
        WHERE track_id IN ({placeholders})
        ORDER BY track_id, position;
        """,
        track_ids,
    )
    for r in await cursor.fetchall():
        artists[int(r["track_id"])].append(TrackArtistRow(name=r["name"], role=r["role"]))

    contributors: dict[int, list[ContributorRow]] = {tid: [] for tid in track_ids}
    cursor = await conn.execute(
        f"""
        SELECT track_id, name, type, role FROM track_contributors
        WHERE track_id IN ({placeholders})
        ORDER BY track_id, position;
        """,
        track_ids,
    )
    for r in await cursor.fetchall():
        contributors[int(r["track_id"])].append(
            ContributorRow(name=r["name"], type=r["type"], role=r["role"])
        )

    return [
        _row_to_track(r, tuple(artists[int(r["id"])]), tuple(contributors[int(r["id"])]))
        for r in rows
    ]


async def get_track_ids(conn: aiosqlite.Connection, release_id: int) -> list[int]:
    cursor = await conn.execute(
        "SELECT id FROM tracks WHERE release_id = ? ORDER BY position ASC;",
        (int(release_id),),
    )
    rows = await cursor.fetchall()
    return [int(r["id"]) for r in rows]


async def replace_tracks(
    conn: aiosqlite.Connection,
    release_id: int,
    tracks: Iterable[TrackWrite],
) -> list[int]:
    """Delete all tracks of a release and insert `tracks`. Returns new track ids."""
    await conn.execute("DELETE FROM tracks WHERE release_id = ?;", (int(release_id),))

    ids: list[int] = []
    for track in tracks:
        cursor = await conn.execute(
            """
            INSERT INTO tracks (
                release_id, position, track_number, title, version, genre, sub_genre,
                is_instrumental, explicit_lyrics, composer, lyricist, lyrics, isrc,
                audio_file, audio_clip, lyric_sheet, preview_start,
                duration_ms, sample_rate, bit_depth
            ) VALUES (
                :release_id, :position, :track_number, :title, :version, :genre, :sub_genre,
                :is_instrumental, :explicit_lyrics, :composer, :lyricist, :lyrics, :isrc,
                :audio_file, :audio_clip, :lyric_sheet, :preview_start,
                :duration_ms, :sample_rate, :bit_depth
            );
            """,
            {
                "release_id": int(release_id),
                "position": int(track.position),
                "track_number": track.track_number,
                "title": track.title,
                "version": track.version,
                "genre": track.genre,
                "sub_genre": track.sub_genre,
                "is_instrumental": track.is_instrumental,
                "explicit_lyrics": track.explicit_lyrics,
                "composer": track.composer,
                "lyricist": track.lyricist,
                "lyrics": track.lyrics,
                "isrc": track.isrc,
                "audio_file": track.audio_file,
                "audio_clip": track.audio_clip,
                "lyric_sheet": track.lyric_sheet,
                "preview_start": track.preview_start,
                "duration_ms": track.duration_ms,
                "sample_rate": track.sample_rate,
                "bit_depth": track.bit_depth,
            },
        )
        if cursor.lastrowid is None:
            raise RuntimeError("Insert failed: no track id returned.")
        track_id = int(cursor.lastrowid)
        ids.append(track_id)

        for position, (name, role) in enumerate(track.artists):
            await conn.execute(
                """
                INSERT INTO track_artists (track_id, position, name, role)
                VALUES (?, ?, ?, ?);
                """,
                (track_id, position, name, role),
            )

        for position, (name, ctype, role) in enumerate(track.contributors):
            await conn.execute(
                """
                INSERT INTO track_contributors (track_id, position, name, type, role)
                VALUES (?, ?, ?, ?, ?);
                """,
                (track_id, position, name, ctype, role),
            )

    return ids


async def set_track_isrc(
    conn: aiosqlite.Connection,
    release_id: int,
    track_id: int,
    isrc: str | None,
) -> bool:
    """Set the ISRC of one track. Returns False if the track is not part of the release."""
    cursor = await conn.execute(
        "UPDATE tracks SET isrc = ? WHERE id = ? AND release_id = ?;",
        (isrc, int(track_id), int(release_id)),
    )
    return (cursor.rowcount or 0) > 0
