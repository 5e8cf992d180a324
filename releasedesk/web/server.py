"""
Web Server Module for releasedesk.

Creates and manages the FastAPI application, registers all routes and
error handlers, and runs uvicorn in the background of the server process.

The app serves:
- REST API for the release wizard and the admin catalog (/api/*)
- Uploaded assets as static files (/uploads/*)
- Health check (/health)
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from releasedesk import __version__
from releasedesk.web.auth import configure_auth
from releasedesk.web.errors import register_error_handlers
from releasedesk.web.routes.admin import register_admin_routes
from releasedesk.web.routes.releases import register_release_routes
from releasedesk.web.routes.uploads import register_upload_routes

if TYPE_CHECKING:
    from releasedesk.core.backup import BackupScheduler
    from releasedesk.core.catalog import ReleaseCatalog
    from releasedesk.core.finalize import FinalizationService
    from releasedesk.core.release_db import ReleaseDb
    from releasedesk.core.uploads import StagedUploadManager
    from releasedesk.core.workflow import WorkflowService

logger = logging.getLogger(__name__)


class WebServer:
    """FastAPI-based web server for releasedesk."""

    def __init__(
        self,
        db: ReleaseDb,
        uploads: StagedUploadManager,
        finalizer: FinalizationService,
        workflow: WorkflowService,
        catalog: ReleaseCatalog,
        backup_scheduler: BackupScheduler | None = None,
        *,
        cors_origins: list[str] | None = None,
        cookie_name: str = "auth_token",
    ) -> None:
        """
        Initialize the WebServer.

        Args:
            db: Open release database (used for token lookup)
            uploads: Staging area manager
            finalizer: Submission pipeline
            workflow: Operator status transitions
            catalog: Listing / detail / delete
            backup_scheduler: Optional scheduler for the admin backup routes
            cors_origins: Allowed origins (default: any)
            cookie_name: Cookie that may carry the auth token
        """
        self.db = db
        self.uploads = uploads
        self.finalizer = finalizer
        self.workflow = workflow
        self.catalog = catalog
        self.backup_scheduler = backup_scheduler

        self.app = FastAPI(
            title="releasedesk",
            description="Music release submission and review backend",
            version=__version__,
        )

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins or ["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        configure_auth(db, cookie_name)
        register_error_handlers(self.app)

        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self._host = "127.0.0.1"
        self._port = 8080

        self._register_routes()

    def _register_routes(self) -> None:
        """Register all routes with the FastAPI app."""

        @self.app.get("/health")
        async def health_check() -> dict[str, str]:
            """Health check endpoint."""
            return {"status": "ok", "server": "releasedesk"}

        register_release_routes(
            self.app,
            catalog=self.catalog,
            finalizer=self.finalizer,
            workflow=self.workflow,
        )
        register_upload_routes(self.app, uploads=self.uploads)
        register_admin_routes(self.app, scheduler=self.backup_scheduler)

        upload_root = Path(self.uploads.upload_root)
        upload_root.mkdir(parents=True, exist_ok=True)
        self.app.mount("/uploads", StaticFiles(directory=upload_root), name="uploads")

    async def start(self, host: str = "127.0.0.1", port: int = 8080) -> None:
        """
        Start the web server in the background.

        Args:
            host: Host address to bind to
            port: Port to listen on
        """
        self._host = host
        self._port = port

        config = uvicorn.Config(
            self.app,
            host=host,
            port=port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._server.serve(), name="uvicorn")

        logger.info("Web server started on http://%s:%d", host, port)

    async def stop(self) -> None:
        """Stop the web server."""
        if self._server is not None:
            self._server.should_exit = True
            self._server = None
        if self._serve_task is not None:
            await self._serve_task
            self._serve_task = None

        logger.info("Web server stopped")

    @property
    def port(self) -> int:
        return self._port

    @property
    def host(self) -> str:
        return self._host
