"""
Internal DB subpackage for releasedesk.

Splits persistence into focused units (models, schema/migrations, and query
groups) while keeping `ReleaseDb` as the single public interface that the
rest of the codebase imports.

External code should import `ReleaseDb` from `releasedesk.core.release_db`.
"""

from __future__ import annotations

# Models / DTOs
from .models import (
    ContributorRow,
    ReleaseRow,
    ReleaseWrite,
    TrackArtistRow,
    TrackRow,
    TrackWrite,
    UserRow,
)

# Schema / migrations
from .schema import SCHEMA_VERSION, ensure_schema, migrate

__all__ = [
    # models
    "UserRow",
    "ReleaseRow",
    "TrackRow",
    "TrackArtistRow",
    "ContributorRow",
    "ReleaseWrite",
    "TrackWrite",
    # schema
    "SCHEMA_VERSION",
    "ensure_schema",
    "migrate",
]
