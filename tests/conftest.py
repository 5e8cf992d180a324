"""
Shared fixtures: in-memory database, upload root and a fake transcoder.
"""

from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from releasedesk.core import TranscodeError
from releasedesk.core.events import Event, event_bus
from releasedesk.core.models import Actor, Role
from releasedesk.core.release_db import ReleaseDb
from releasedesk.core.transcoder import AudioTranscoder
from releasedesk.core.uploads import StagedUploadManager


class FakeTranscoder(AudioTranscoder):
    """Copies the source instead of running ffmpeg and records every call."""

    def __init__(self, fail: bool = False) -> None:
        super().__init__("ffmpeg")
        self.fail = fail
        self.calls: list[tuple[Path, Path, float | None, float | None]] = []

    def available(self) -> bool:
        return True

    async def to_wav(
        self,
        src: Path,
        dst: Path,
        *,
        start_seconds: float | None = None,
        duration_seconds: float | None = None,
    ) -> Path:
        self.calls.append((src, dst, start_seconds, duration_seconds))
        if self.fail:
            raise TranscodeError("Transcoder exited with code 1", stderr="Invalid data found\n")
        if not src.is_file():
            raise TranscodeError(f"Source file not found: {src}")
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(src, dst)
        return dst


@pytest.fixture
async def published() -> list[Event]:
    """Collect every event published on the global bus during a test."""
    events: list[Event] = []

    async def record(event: Event) -> None:
        events.append(event)

    await event_bus.subscribe("*", record)
    yield events
    await event_bus.unsubscribe("*", record)


@pytest.fixture
async def db() -> ReleaseDb:
    """Create an in-memory database for testing."""
    db = ReleaseDb(":memory:")
    await db.open()
    await db.ensure_schema()
    yield db
    await db.close()


@pytest.fixture
def upload_root(tmp_path: Path) -> Path:
    root = tmp_path / "uploads"
    root.mkdir()
    return root


@pytest.fixture
def transcoder() -> FakeTranscoder:
    return FakeTranscoder()


@pytest.fixture
def uploads(upload_root: Path, transcoder: FakeTranscoder) -> StagedUploadManager:
    return StagedUploadManager(upload_root, max_upload_bytes=1024 * 1024, transcoder=transcoder)


@pytest.fixture
async def user(db: ReleaseDb) -> Actor:
    user_id = await db.create_user("budi")
    return Actor(user_id=user_id, role=Role.USER)


@pytest.fixture
async def other_user(db: ReleaseDb) -> Actor:
    user_id = await db.create_user("sari")
    return Actor(user_id=user_id, role=Role.USER)


@pytest.fixture
async def operator(db: ReleaseDb) -> Actor:
    user_id = await db.create_user("ops", "Operator")
    return Actor(user_id=user_id, role=Role.OPERATOR)
