"""
Read side of the release store: listing, detail, deletion and dashboard counts.

Non-elevated actors only ever see their own releases.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from releasedesk.core import AccessError, AssetError, NotFoundError
from releasedesk.core.db.models import ReleaseRow
from releasedesk.core.db.ordering import RELEASE_SORT_KEYS
from releasedesk.core.db.queries_releases import ReleaseFilter
from releasedesk.core.events import ReleaseDeletedEvent, event_bus
from releasedesk.core.models import Actor, ReleaseStatus
from releasedesk.core.naming import is_permanent_path, resolve_public_path
from releasedesk.core.release_db import ReleaseDb

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE: Final[int] = 200
DEFAULT_PAGE_SIZE: Final[int] = 50


@dataclass(frozen=True, slots=True)
class ReleaseQuery:
    search: str | None = None
    status: str | None = None
    sort: str = "submission_date"
    descending: bool = True
    offset: int = 0
    limit: int = DEFAULT_PAGE_SIZE
    user_id: int | None = None  # elevated actors only


@dataclass(frozen=True, slots=True)
class ReleasePage:
    total: int
    items: list[ReleaseRow]


class ReleaseCatalog:
    def __init__(self, db: ReleaseDb, upload_root: Path) -> None:
        self._db = db
        self._root = upload_root

    async def list_releases(self, actor: Actor, query: ReleaseQuery | None = None) -> ReleasePage:
        query = query or ReleaseQuery()

        status = query.status or None
        if status is not None and status not in {s.value for s in ReleaseStatus}:
            status = None
        sort = query.sort if query.sort in RELEASE_SORT_KEYS else "submission_date"
        limit = max(1, min(int(query.limit), MAX_PAGE_SIZE))
        offset = max(0, int(query.offset))

        user_id = query.user_id if actor.is_elevated else actor.user_id
        flt = ReleaseFilter(
            user_id=user_id,
            status=status,
            search=(query.search or "").strip() or None,
        )

        total = await self._db.count_releases(flt)
        items = await self._db.list_releases(
            flt, order_by=sort, descending=query.descending, limit=limit, offset=offset
        )
        return ReleasePage(total=total, items=items)

    async def get_release(self, actor: Actor, release_id: int) -> ReleaseRow:
        release = await self._db.get_release(release_id, with_tracks=True)
        if release is None:
            raise NotFoundError(f"Release {release_id} not found")
        if not actor.can_access(release.user_id):
            raise AccessError("You do not have access to this release")
        return release

    async def delete_release(self, actor: Actor, release_id: int) -> None:
        """Delete the release rows and its permanent asset directory."""
        release = await self._db.get_release(release_id)
        if release is None:
            raise NotFoundError(f"Release {release_id} not found")
        if not actor.can_access(release.user_id):
            raise AccessError("You do not have permission to delete this release")

        await self._db.delete_release(release_id)

        if release.asset_dir and is_permanent_path(release.asset_dir):
            try:
                asset_dir = resolve_public_path(self._root, release.asset_dir)
            except AssetError as e:
                logger.warning("Release %d has an invalid asset dir: %s", release_id, e)
            else:
                if asset_dir.is_dir():
                    await asyncio.to_thread(shutil.rmtree, asset_dir, True)

        logger.info("Deleted release %d by user %s", release_id, actor.user_id)
        await event_bus.publish(ReleaseDeletedEvent(release_id=release_id, deleted_by=actor.user_id))

    async def status_counts(self, actor: Actor) -> dict[str, int]:
        """Release count per status, every status present (zero when empty)."""
        counts = await self._db.count_by_status(None if actor.is_elevated else actor.user_id)
        return {s.value: counts.get(s.value, 0) for s in ReleaseStatus}
