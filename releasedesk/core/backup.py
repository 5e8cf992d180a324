"""
Scheduled database backups.

The schedule (frequency + wall-clock time) is stored in the `meta` table so
it survives restarts. `BackupScheduler` keeps at most one pending asyncio task;
every (re)configuration cancels it and arms a new one. A finished run always
arms the next one, whether the backup succeeded or not.

Backups use SQLite's online backup API and are written as
`{db stem}-{YYYYmmdd-HHMMSS}.sqlite3` into the backup directory.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Final

from releasedesk.core import PayloadError
from releasedesk.core.events import BackupCompletedEvent, event_bus
from releasedesk.core.release_db import ReleaseDb

logger = logging.getLogger(__name__)

FREQUENCIES: Final[tuple[str, ...]] = ("none", "daily", "weekly")
DEFAULT_TIME: Final[str] = "02:00"

META_FREQUENCY: Final[str] = "backup.frequency"
META_TIME: Final[str] = "backup.time"

_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


@dataclass(frozen=True, slots=True)
class BackupSchedule:
    frequency: str = "none"
    time: str = DEFAULT_TIME

    @property
    def enabled(self) -> bool:
        return self.frequency in ("daily", "weekly")


def parse_time(value: str | None) -> tuple[int, int]:
    """Parse "HH:MM" into (hour, minute), clamped; anything unparseable is 02:00."""
    match = _TIME_PATTERN.match((value or "").strip())
    if match is None:
        return 2, 0
    hour = min(23, max(0, int(match.group(1))))
    minute = min(59, max(0, int(match.group(2))))
    return hour, minute


def next_run_delay(schedule: BackupSchedule, now: datetime) -> float | None:
    """
    Seconds from `now` until the next backup, or None when disabled.

    The next run is today at the scheduled time; once that has passed it
    moves one day ahead (daily) or seven days ahead (weekly).
    """
    if not schedule.enabled:
        return None
    hour, minute = parse_time(schedule.time)
    next_run = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if next_run <= now:
        next_run += timedelta(days=7 if schedule.frequency == "weekly" else 1)
    return (next_run - now).total_seconds()


def validate_schedule(frequency: str, time: str | None) -> BackupSchedule:
    """
    Check user input for a schedule change.

    Raises:
        PayloadError: Unknown frequency or a time that is not HH:MM.
    """
    frequency = (frequency or "").strip().lower()
    if frequency not in FREQUENCIES:
        raise PayloadError(f"frequency must be one of {', '.join(FREQUENCIES)}")
    time = (time or DEFAULT_TIME).strip()
    match = _TIME_PATTERN.match(time)
    if match is None or int(match.group(1)) > 23 or int(match.group(2)) > 59:
        raise PayloadError("time must be HH:MM")
    return BackupSchedule(frequency=frequency, time=time)


class BackupScheduler:
    """
    Owns the periodic backup task.

    Usage:
        scheduler = BackupScheduler(db, Path("backups"))
        await scheduler.start()        # loads the persisted schedule
        await scheduler.configure(BackupSchedule("daily", "03:30"))
        path = await scheduler.run_backup()
        await scheduler.stop()
    """

    def __init__(
        self,
        db: ReleaseDb,
        backup_dir: Path,
        default: BackupSchedule | None = None,
    ) -> None:
        self._db = db
        self._backup_dir = Path(backup_dir)
        # Used until an admin stores a schedule.
        self._schedule = default or BackupSchedule()
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def schedule(self) -> BackupSchedule:
        return self._schedule

    @property
    def backup_dir(self) -> Path:
        return self._backup_dir

    @property
    def is_armed(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        frequency = await self._db.get_meta(META_FREQUENCY)
        time = await self._db.get_meta(META_TIME)
        if frequency in FREQUENCIES:
            self._schedule = BackupSchedule(frequency=frequency, time=time or DEFAULT_TIME)
        self._running = True
        self._arm()
        logger.info(
            "Backup scheduler started (%s @ %s)", self._schedule.frequency, self._schedule.time
        )

    async def stop(self) -> None:
        self._running = False
        await self._cancel()

    async def configure(self, schedule: BackupSchedule) -> None:
        """Persist a new schedule and re-arm the timer."""
        await self._db.set_meta(META_FREQUENCY, schedule.frequency)
        await self._db.set_meta(META_TIME, schedule.time)
        self._schedule = schedule
        await self._cancel()
        self._arm()
        logger.info("Backup schedule set to %s @ %s", schedule.frequency, schedule.time)

    async def run_backup(self) -> Path:
        """
        Write one backup now.

        Errors from the copy propagate after the partial file is removed.
        """
        stem = Path(self._db.path).stem
        if not stem or stem == ":memory:":
            stem = "releasedesk"
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        target = self._backup_dir / f"{stem}-{stamp}.sqlite3"
        try:
            await self._db.backup_to(target)
        except Exception as e:
            with contextlib.suppress(OSError):
                target.unlink()
            await event_bus.publish(BackupCompletedEvent(path=str(target), error=str(e)))
            raise
        logger.info("Database backup written to %s", target)
        await event_bus.publish(BackupCompletedEvent(path=str(target)))
        return target

    # ---------------------------------------------------------------------
    # Timer
    # ---------------------------------------------------------------------

    def _arm(self) -> None:
        if not self._running:
            return
        delay = next_run_delay(self._schedule, datetime.now())
        if delay is None:
            return
        logger.debug("Next backup in %.0f seconds", delay)
        self._task = asyncio.create_task(self._wait_and_run(delay), name="backup-scheduler")

    async def _cancel(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _wait_and_run(self, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            logger.info(
                "Scheduled backup running (%s @ %s)", self._schedule.frequency, self._schedule.time
            )
            await self.run_backup()
        except Exception as e:
            logger.warning("Scheduled backup failed: %s", e)
        # Cancellation skips this, so a reconfigure never leaves two timers.
        self._task = None
        self._arm()
