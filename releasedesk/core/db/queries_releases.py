"""
Release-related DB queries.

Design:
- Functions are *pure DB helpers*: they take an open `aiosqlite.Connection`
  and return rows/dataclasses.
- Ordering is centralized via `releasedesk.core.db.ordering.releases_order_clause`.
- These functions assume `conn.row_factory = aiosqlite.Row`.
- They never commit; the `ReleaseDb` facade owns transactions.

Important:
- Do NOT interpolate user input into SQL. The only dynamic SQL here is the
  WHERE clause assembled from fixed fragments and the whitelisted ORDER BY.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import aiosqlite

from releasedesk.core.db.models import ReleaseRow, ReleaseWrite
from releasedesk.core.db.ordering import releases_order_clause

_RELEASE_COLUMNS = """
    r.id, r.user_id, r.title, r.primary_artists, r.label, r.genre, r.sub_genre,
    r.language, r.p_line, r.c_line, r.version, r.release_type, r.upc, r.status,
    r.aggregator, r.rejection_reason, r.rejection_description, r.cover_art,
    r.asset_dir, r.is_new_release, r.original_release_date, r.planned_release_date,
    r.submission_date, r.created_at, r.updated_at,
    u.username AS owner_name,
    (SELECT COUNT(*) FROM tracks t WHERE t.release_id = r.id) AS track_count
"""


@dataclass(frozen=True, slots=True)
class ReleaseFilter:
    """Catalog filter; every field is optional and filters stack (AND)."""

    user_id: int | None = None
    status: str | None = None
    search: str | None = None


def _decode_artists(raw: Any) -> tuple[str, ...]:
    if not raw:
        return ()
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return (str(raw),)
    if isinstance(value, list):
        return tuple(str(v) for v in value)
    return (str(value),)


def _row_to_release(row: aiosqlite.Row) -> ReleaseRow:
    return ReleaseRow(
        id=int(row["id"]),
        user_id=int(row["user_id"]),
        title=str(row["title"]),
        primary_artists=_decode_artists(row["primary_artists"]),
        status=str(row["status"]),
        version=row["version"] or "",
        release_type=row["release_type"] or "SINGLE",
        label=row["label"],
        genre=row["genre"],
        sub_genre=row["sub_genre"],
        language=row["language"],
        p_line=row["p_line"],
        c_line=row["c_line"],
        upc=row["upc"],
        aggregator=row["aggregator"],
        rejection_reason=row["rejection_reason"],
        rejection_description=row["rejection_description"],
        cover_art=row["cover_art"],
        asset_dir=row["asset_dir"],
        is_new_release=bool(row["is_new_release"]),
        original_release_date=row["original_release_date"],
        planned_release_date=row["planned_release_date"],
        submission_date=row["submission_date"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        owner_name=row["owner_name"],
        track_count=int(row["track_count"]) if row["track_count"] is not None else None,
    )


def _where(flt: ReleaseFilter) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []

    if flt.user_id is not None:
        clauses.append("r.user_id = ?")
        params.append(int(flt.user_id))
    if flt.status:
        clauses.append("r.status = ?")
        params.append(flt.status)
    if flt.search:
        pattern = f"%{flt.search.strip().lower()}%"
        clauses.append(
            "("
            "lower(r.title) LIKE ? OR lower(r.primary_artists) LIKE ? "
            "OR lower(COALESCE(r.label, '')) LIKE ? OR lower(COALESCE(r.upc, '')) LIKE ?"
            ")"
        )
        params.extend([pattern, pattern, pattern, pattern])

    if not clauses:
        return "", params
    return "WHERE " + " AND ".join(clauses), params


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_release_by_id(conn: aiosqlite.Connection, release_id: int) -> ReleaseRow | None:
    cursor = await conn.execute(
        f"""
        SELECT {_RELEASE_COLUMNS}
        FROM releases r
        LEFT JOIN users u ON u.id = r.user_id
        WHERE r.id = ?;
        """,
        (int(release_id),),
    )
    row = await cursor.fetchone()
    return _row_to_release(row) if row else None


async def find_active_duplicate(
    conn: aiosqlite.Connection,
    *,
    user_id: int,
    title: str,
    version: str,
) -> int | None:
    """Id of a non-Rejected release with the same (owner, title, version), if any."""
    cursor = await conn.execute(
        """
        SELECT id FROM releases
        WHERE user_id = ? AND title = ? AND version = ? AND status != 'Rejected'
        ORDER BY id ASC
        LIMIT 1;
        """,
        (int(user_id), title, version),
    )
    row = await cursor.fetchone()
    return int(row["id"]) if row else None


async def list_releases(
    conn: aiosqlite.Connection,
    flt: ReleaseFilter,
    *,
    order_by: str = "submission_date",
    descending: bool = True,
    limit: int,
    offset: int,
) -> list[ReleaseRow]:
    where, params = _where(flt)
    order = releases_order_clause(order_by, descending)
    cursor = await conn.execute(
        f"""
        SELECT {_RELEASE_COLUMNS}
        FROM releases r
        LEFT JOIN users u ON u.id = r.user_id
        {where}
        {order}
        LIMIT ? OFFSET ?;
        """,
        (*params, int(limit), int(offset)),
    )
    rows = await cursor.fetchall()
    return [_row_to_release(r) for r in rows]


async def count_releases(conn: aiosqlite.Connection, flt: ReleaseFilter) -> int:
    where, params = _where(flt)
    cursor = await conn.execute(f"SELECT COUNT(*) AS c FROM releases r {where};", params)
    row = await cursor.fetchone()
    return int(row["c"]) if row else 0


async def count_by_status(conn: aiosqlite.Connection, user_id: int | None = None) -> dict[str, int]:
    if user_id is None:
        cursor = await conn.execute(
            "SELECT status, COUNT(*) AS c FROM releases GROUP BY status;"
        )
    else:
        cursor = await conn.execute(
            "SELECT status, COUNT(*) AS c FROM releases WHERE user_id = ? GROUP BY status;",
            (int(user_id),),
        )
    rows = await cursor.fetchall()
    return {str(r["status"]): int(r["c"]) for r in rows}


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def _write_params(release: ReleaseWrite) -> dict[str, Any]:
    return {
        "title": release.title,
        "primary_artists": json.dumps(list(release.primary_artists), ensure_ascii=False),
        "label": release.label,
        "genre": release.genre,
        "sub_genre": release.sub_genre,
        "language": release.language,
        "p_line": release.p_line,
        "c_line": release.c_line,
        "version": release.version or "",
        "release_type": release.release_type,
        "upc": release.upc,
        "cover_art": release.cover_art,
        "asset_dir": release.asset_dir,
        "is_new_release": 1 if release.is_new_release else 0,
        "original_release_date": release.original_release_date,
        "planned_release_date": release.planned_release_date,
    }


async def insert_release(
    conn: aiosqlite.Connection,
    *,
    user_id: int,
    release: ReleaseWrite,
    status: str,
) -> int:
    params = _write_params(release)
    params["user_id"] = int(user_id)
    params["status"] = status
    cursor = await conn.execute(
        """
        INSERT INTO releases (
            user_id, title, primary_artists, label, genre, sub_genre, language,
            p_line, c_line, version, release_type, upc, status, cover_art, asset_dir,
            is_new_release, original_release_date, planned_release_date, submission_date
        ) VALUES (
            :user_id, :title, :primary_artists, :label, :genre, :sub_genre, :language,
            :p_line, :c_line, :version, :release_type, :upc, :status, :cover_art, :asset_dir,
            :is_new_release, :original_release_date, :planned_release_date, date('now')
        );
        """,
        params,
    )
    if cursor.lastrowid is None:
        raise RuntimeError("Insert failed: no release id returned.")
    return int(cursor.lastrowid)


async def update_release(
    conn: aiosqlite.Connection,
    release_id: int,
    release: ReleaseWrite,
) -> None:
    """
    Overwrite submitter-owned columns.

    Status, aggregator and rejection data are left alone. The UPC is only
    replaced when the draft carries one, so an operator-assigned code survives
    a resubmission without it.
    """
    params = _write_params(release)
    params["id"] = int(release_id)
    await conn.execute(
        """
        UPDATE releases SET
            title = :title,
            primary_artists = :primary_artists,
            label = :label,
            genre = :genre,
            sub_genre = :sub_genre,
            language = :language,
            p_line = :p_line,
            c_line = :c_line,
            version = :version,
            release_type = :release_type,
            upc = COALESCE(:upc, upc),
            cover_art = :cover_art,
            asset_dir = :asset_dir,
            is_new_release = :is_new_release,
            original_release_date = :original_release_date,
            planned_release_date = :planned_release_date,
            updated_at = datetime('now')
        WHERE id = :id;
        """,
        params,
    )


async def update_workflow_fields(
    conn: aiosqlite.Connection,
    release_id: int,
    fields: dict[str, Any],
) -> None:
    """
    Update a subset of workflow-owned columns.

    `fields` keys must come from `WORKFLOW_COLUMNS`; anything else raises.
    """
    if not fields:
        return
    unknown = set(fields) - WORKFLOW_COLUMNS
    if unknown:
        raise ValueError(f"Not a workflow column: {sorted(unknown)}")

    # Column names come from the whitelist above, values are bound.
    assignments = ", ".join(f"{name} = :{name}" for name in sorted(fields))
    params = dict(fields)
    params["id"] = int(release_id)
    await conn.execute(
        f"UPDATE releases SET {assignments}, updated_at = datetime('now') WHERE id = :id;",
        params,
    )


WORKFLOW_COLUMNS: frozenset[str] = frozenset(
    {"status", "aggregator", "upc", "rejection_reason", "rejection_description"}
)


async def delete_release(conn: aiosqlite.Connection, release_id: int) -> bool:
    cursor = await conn.execute("DELETE FROM releases WHERE id = ?;", (int(release_id),))
    return (cursor.rowcount or 0) > 0
