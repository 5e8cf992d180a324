"""
Admin routes (Admin role only).

- GET  /api/admin/backup       current backup schedule
- PUT  /api/admin/backup       change it ({frequency, time})
- POST /api/admin/backup/run   write a backup now
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Depends, HTTPException

from releasedesk.core import AccessError
from releasedesk.core.backup import validate_schedule
from releasedesk.core.models import Actor, Role
from releasedesk.web.auth import get_actor

if TYPE_CHECKING:
    from releasedesk.core.backup import BackupScheduler

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"])

# References set during route registration
_scheduler: BackupScheduler | None = None


def register_admin_routes(app, scheduler: BackupScheduler | None) -> None:
    """Register admin routes; without a scheduler they answer 503."""
    global _scheduler
    _scheduler = scheduler
    app.include_router(router)


async def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.role != Role.ADMIN:
        raise AccessError("Admin role required")
    return actor


def _schedule_dict(scheduler: BackupScheduler) -> dict[str, Any]:
    schedule = scheduler.schedule
    return {
        "frequency": schedule.frequency,
        "time": schedule.time,
        "enabled": schedule.enabled,
        "backupDir": str(scheduler.backup_dir),
    }


@router.get("/api/admin/backup")
async def get_backup_schedule(actor: Actor = Depends(require_admin)) -> dict[str, Any]:
    if _scheduler is None:
        raise HTTPException(status_code=503, detail="Backup scheduler not available")
    return _schedule_dict(_scheduler)


@router.put("/api/admin/backup")
async def set_backup_schedule(
    payload: dict[str, Any],
    actor: Actor = Depends(require_admin),
) -> dict[str, Any]:
    if _scheduler is None:
        raise HTTPException(status_code=503, detail="Backup scheduler not available")

    time = payload.get("time")
    schedule = validate_schedule(
        str(payload.get("frequency") or ""), None if time is None else str(time)
    )
    await _scheduler.configure(schedule)
    logger.info("User %s changed backup schedule", actor.user_id)
    return _schedule_dict(_scheduler)


@router.post("/api/admin/backup/run")
async def run_backup(actor: Actor = Depends(require_admin)) -> dict[str, Any]:
    if _scheduler is None:
        raise HTTPException(status_code=503, detail="Backup scheduler not available")

    path = await _scheduler.run_backup()
    return {"path": str(path)}
