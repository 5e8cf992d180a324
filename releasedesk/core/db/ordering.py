"""
Shared ORDER BY clause helpers for release queries.

Important:
- The returned strings are *static SQL fragments* selected from a small
  whitelist. Do NOT concatenate user input into ORDER BY.
"""

from __future__ import annotations

from typing import Literal

ReleasesOrderBy = Literal[
    "submission_date",
    "title",
    "artist",
    "status",
    "planned_release_date",
    "id",
]

RELEASE_SORT_KEYS: tuple[str, ...] = (
    "submission_date",
    "title",
    "artist",
    "status",
    "planned_release_date",
    "id",
)


def releases_order_clause(order_by: str, descending: bool = False) -> str:
    """
    Return an ORDER BY clause for release list queries.

    Unknown keys fall back to the catalog default (newest submission first).
    `r.id` is always the final tiebreaker so pagination is stable.
    """
    direction = "DESC" if descending else "ASC"

    if order_by == "title":
        return f"ORDER BY r.title COLLATE NOCASE {direction}, r.id {direction}"
    if order_by == "artist":
        return (
            f"ORDER BY json_extract(r.primary_artists, '$[0]') COLLATE NOCASE {direction}, "
            f"r.title COLLATE NOCASE {direction}, r.id {direction}"
        )
    if order_by == "status":
        return f"ORDER BY r.status {direction}, r.submission_date DESC, r.id DESC"
    if order_by == "planned_release_date":
        # Releases without a date sink to the end in both directions.
        return (
            "ORDER BY r.planned_release_date IS NULL ASC, "
            f"r.planned_release_date {direction}, r.id {direction}"
        )
    if order_by == "id":
        return f"ORDER BY r.id {direction}"

    # Default: submission date
    return f"ORDER BY r.submission_date {direction}, r.id {direction}"
