"""
Staged upload routes.

- POST /api/uploads/tmp          whole-file upload (multipart: artist, title, files)
- POST /api/uploads/tmp/chunk    one chunk of a chunked upload (multipart)
- POST /api/uploads/tmp/preview  cut a WAV preview from a staged audio file
- POST /api/uploads/tmp/cleanup  drop the caller's staging dir for a release
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.datastructures import UploadFile

from releasedesk.core import PayloadError
from releasedesk.core.models import Actor, parse_artist_names
from releasedesk.core.naming import primary_artist_for_path
from releasedesk.core.uploads import (
    DEFAULT_PREVIEW_SECONDS,
    ChunkComplete,
    ChunkInfo,
    UploadedFile,
)
from releasedesk.web.auth import get_actor

if TYPE_CHECKING:
    from releasedesk.core.uploads import StagedUploadManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["uploads"])

# References set during route registration
_uploads: StagedUploadManager | None = None


def register_upload_routes(app, uploads: StagedUploadManager) -> None:
    """
    Register staged upload routes with the FastAPI app.

    Args:
        app: FastAPI application instance
        uploads: StagedUploadManager owning the staging area
    """
    global _uploads
    _uploads = uploads
    app.include_router(router)


def _form_text(form: Any, key: str) -> str:
    value = form.get(key)
    if value is None or isinstance(value, UploadFile):
        return ""
    return str(value).strip()


def _form_int(form: Any, key: str) -> int:
    raw = _form_text(form, key)
    try:
        return int(raw)
    except ValueError as e:
        raise PayloadError(f"{key} must be an integer, got {raw!r}") from e


def _number(payload: dict[str, Any], key: str, default: float) -> float:
    value = payload.get(key)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise PayloadError(f"{key} must be a number, got {value!r}") from e


@router.post("/api/uploads/tmp")
async def upload_files(request: Request, actor: Actor = Depends(get_actor)) -> dict[str, Any]:
    """Stage every file part of the request; returns field -> public path."""
    if _uploads is None:
        raise HTTPException(status_code=503, detail="Server not initialized")

    form = await request.form()
    files = [
        UploadedFile(field=key, filename=value.filename or "", stream=value.file)
        for key, value in form.multi_items()
        if isinstance(value, UploadFile)
    ]
    if not files:
        raise PayloadError("No files in upload")

    stored = await _uploads.store_files(
        actor, _form_text(form, "artist"), _form_text(form, "title"), files
    )
    return {"files": stored}


@router.post("/api/uploads/tmp/chunk")
async def upload_chunk(request: Request, actor: Actor = Depends(get_actor)) -> dict[str, Any]:
    """Append one chunk; the response says whether the file is complete."""
    if _uploads is None:
        raise HTTPException(status_code=503, detail="Server not initialized")

    form = await request.form()
    chunk = form.get("chunk")
    if not isinstance(chunk, UploadFile):
        raise PayloadError("Missing 'chunk' file part")

    info = ChunkInfo(
        file_id=_form_text(form, "fileId"),
        chunk_index=_form_int(form, "chunkIndex"),
        total_chunks=_form_int(form, "totalChunks"),
        filename=_form_text(form, "filename") or (chunk.filename or ""),
        field=_form_text(form, "field"),
    )
    result = await _uploads.append_chunk(
        actor, _form_text(form, "artist"), _form_text(form, "title"), info, chunk.file
    )

    if isinstance(result, ChunkComplete):
        return {"done": True, "path": result.path, "size": result.size}
    return {"done": False, "received": result.received}


@router.post("/api/uploads/tmp/preview")
async def create_preview(
    payload: dict[str, Any],
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    """Body: {path, start, duration}. Returns the staged preview path."""
    if _uploads is None:
        raise HTTPException(status_code=503, detail="Server not initialized")

    path = payload.get("path")
    if not isinstance(path, str) or not path.strip():
        raise PayloadError("path is required")

    preview = await _uploads.generate_preview(
        actor,
        path,
        _number(payload, "start", 0.0),
        _number(payload, "duration", DEFAULT_PREVIEW_SECONDS),
    )
    return {"path": preview}


@router.post("/api/uploads/tmp/cleanup")
async def cleanup_staging(
    payload: dict[str, Any],
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    """Body: {title, primaryArtists}. Called when a wizard is abandoned."""
    if _uploads is None:
        raise HTTPException(status_code=503, detail="Server not initialized")

    artists = parse_artist_names(payload.get("primaryArtists", payload.get("artist")))
    removed = await _uploads.cleanup(
        actor, primary_artist_for_path(artists), str(payload.get("title") or "")
    )
    return {"removed": removed}
