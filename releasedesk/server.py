"""
releasedesk - Main Server Module

Contains the ReleaseDeskServer class that wires all components together and
manages the application lifecycle.
"""

import asyncio
import logging
import signal

from releasedesk.config import Settings
from releasedesk.core.backup import BackupScheduler
from releasedesk.core.catalog import ReleaseCatalog
from releasedesk.core.finalize import FinalizationService
from releasedesk.core.release_db import ReleaseDb
from releasedesk.core.transcoder import AudioTranscoder
from releasedesk.core.uploads import StagedUploadManager
from releasedesk.core.workflow import WorkflowService
from releasedesk.web.server import WebServer

logger = logging.getLogger(__name__)


class ReleaseDeskServer:
    """
    Main server that coordinates all components.

    The server manages:
    - Release database (SQLite, schema migrations on start)
    - Staging area and transcoder for uploaded assets
    - Finalization, workflow and catalog services
    - Backup scheduler
    - Web server for the HTTP API
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

        self.db = ReleaseDb(settings.storage.db_path)
        self.transcoder = AudioTranscoder(settings.transcoding.ffmpeg)
        self.uploads = StagedUploadManager(
            settings.storage.upload_root,
            max_upload_bytes=settings.uploads.max_bytes,
            transcoder=self.transcoder,
        )
        self.finalizer = FinalizationService(
            self.db,
            self.uploads,
            self.transcoder,
            preview_seconds=settings.uploads.preview_seconds,
        )
        self.workflow = WorkflowService(self.db, strict=settings.workflow.strict_transitions)
        self.catalog = ReleaseCatalog(self.db, settings.storage.upload_root)
        self.backup_scheduler = BackupScheduler(
            self.db, settings.storage.backup_dir, default=settings.backup
        )

        self.web_server: WebServer | None = None

        self._running = False
        self._shutdown_event: asyncio.Event | None = None

    async def start(self) -> None:
        """Start all server components."""
        logger.info("Starting releasedesk on %s:%d", self.settings.server.host, self.settings.server.port)

        self._running = True
        self._shutdown_event = asyncio.Event()

        await self.db.open()
        await self.db.ensure_schema()
        purged = await self.db.purge_expired_tokens()
        if purged:
            logger.info("Removed %d expired auth tokens", purged)

        if not self.transcoder.available():
            # Submissions still work; conversions fail per file with a warning.
            logger.warning(
                "Transcoder %r not found; audio conversion and previews are unavailable",
                self.transcoder.binary_name,
            )

        await self.backup_scheduler.start()

        self.web_server = WebServer(
            db=self.db,
            uploads=self.uploads,
            finalizer=self.finalizer,
            workflow=self.workflow,
            catalog=self.catalog,
            backup_scheduler=self.backup_scheduler,
            cors_origins=self.settings.server.cors_origins,
            cookie_name=self.settings.auth.cookie_name,
        )
        await self.web_server.start(host=self.settings.server.host, port=self.settings.server.port)

        logger.info("releasedesk started successfully")

    async def stop(self) -> None:
        """Stop all server components gracefully."""
        if not self._running:
            return

        logger.info("Stopping releasedesk...")
        self._running = False

        if self.web_server:
            await self.web_server.stop()

        await self.backup_scheduler.stop()

        # Close DB last, after all components are stopped.
        await self.db.close()

        if self._shutdown_event:
            self._shutdown_event.set()

        logger.info("releasedesk stopped")

    async def run(self) -> None:
        """
        Run the server until shutdown is requested (SIGINT or SIGTERM).
        """
        await self.start()

        loop = asyncio.get_running_loop()

        def handle_signal() -> None:
            logger.info("Received shutdown signal")
            if self._shutdown_event:
                self._shutdown_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, handle_signal)
            except NotImplementedError:
                # Signal handlers not supported on Windows
                pass

        if self._shutdown_event:
            await self._shutdown_event.wait()

        await self.stop()

    @property
    def is_running(self) -> bool:
        return self._running
