"""
Release API routes.

- GET    /api/releases                 catalog listing (search, filter, sort, page)
- GET    /api/releases/summary         count per status
- GET    /api/releases/{id}            release detail with tracks
- POST   /api/releases/validate        run the completeness checklist on a draft
- POST   /api/releases                 submit a new release (multipart)
- PUT    /api/releases/{id}            resubmit an existing release (multipart)
- DELETE /api/releases/{id}            delete release and assets
- PATCH  /api/releases/{id}/status     workflow transition (operators)

Submissions are multipart: a `data` field with the draft as JSON plus
optional file parts `coverArt`, `track_{i}_audio`, `track_{i}_clip` and
`track_{i}_lyrics` (i is the 0-based track index).
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.datastructures import UploadFile

from releasedesk.core import PayloadError
from releasedesk.core.catalog import DEFAULT_PAGE_SIZE, ReleaseQuery
from releasedesk.core.db.models import ReleaseRow, TrackRow
from releasedesk.core.models import Actor, parse_release_payload
from releasedesk.core.uploads import UploadedFile
from releasedesk.core.validation import validate_release, validate_step
from releasedesk.core.workflow import parse_transition_payload
from releasedesk.web.auth import get_actor

if TYPE_CHECKING:
    from releasedesk.core.catalog import ReleaseCatalog
    from releasedesk.core.finalize import FinalizationService, FinalizeResult
    from releasedesk.core.workflow import WorkflowService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["releases"])

# References set during route registration
_catalog: ReleaseCatalog | None = None
_finalizer: FinalizationService | None = None
_workflow: WorkflowService | None = None


def register_release_routes(
    app,
    catalog: ReleaseCatalog,
    finalizer: FinalizationService,
    workflow: WorkflowService,
) -> None:
    """
    Register release routes with the FastAPI app.

    Args:
        app: FastAPI application instance
        catalog: Read side (listing, detail, delete)
        finalizer: Submission pipeline
        workflow: Operator status transitions
    """
    global _catalog, _finalizer, _workflow
    _catalog = catalog
    _finalizer = finalizer
    _workflow = workflow
    app.include_router(router)


# =============================================================================
# Serialization
# =============================================================================


def track_to_dict(track: TrackRow) -> dict[str, Any]:
    return {
        "id": track.id,
        "position": track.position,
        "trackNumber": track.track_number,
        "title": track.title,
        "version": track.version,
        "artists": [{"name": a.name, "role": a.role} for a in track.artists],
        "audioFile": track.audio_file,
        "audioClip": track.audio_clip,
        "lyricSheet": track.lyric_sheet,
        "genre": track.genre,
        "subGenre": track.sub_genre,
        "isInstrumental": track.is_instrumental,
        "explicitLyrics": track.explicit_lyrics,
        "composer": track.composer,
        "lyricist": track.lyricist,
        "lyrics": track.lyrics,
        "isrc": track.isrc,
        "contributors": [
            {"name": c.name, "type": c.type, "role": c.role} for c in track.contributors
        ],
        "previewStart": track.preview_start,
        "durationMs": track.duration_ms,
        "sampleRate": track.sample_rate,
        "bitDepth": track.bit_depth,
    }


def release_to_dict(release: ReleaseRow, *, with_tracks: bool = False) -> dict[str, Any]:
    result: dict[str, Any] = {
        "id": release.id,
        "userId": release.user_id,
        "ownerName": release.owner_name,
        "type": release.release_type,
        "title": release.title,
        "primaryArtists": list(release.primary_artists),
        "coverArt": release.cover_art,
        "label": release.label,
        "genre": release.genre,
        "subGenre": release.sub_genre,
        "language": release.language,
        "pLine": release.p_line,
        "cLine": release.c_line,
        "version": release.version,
        "upc": release.upc,
        "status": release.status,
        "aggregator": release.aggregator,
        "rejectionReason": release.rejection_reason,
        "rejectionDescription": release.rejection_description,
        "isNewRelease": release.is_new_release,
        "originalReleaseDate": release.original_release_date,
        "plannedReleaseDate": release.planned_release_date,
        "submissionDate": release.submission_date,
        "trackCount": release.track_count,
        "createdAt": release.created_at,
        "updatedAt": release.updated_at,
    }
    if with_tracks:
        result["tracks"] = [track_to_dict(t) for t in release.tracks]
    return result


def _result_response(result: FinalizeResult) -> JSONResponse:
    status = 201 if result.created else 200
    return JSONResponse(
        status_code=status,
        content={
            "id": result.release_id,
            "message": result.message,
            "duplicate": result.duplicate,
            "warnings": list(result.warnings),
        },
    )


async def _read_submission(request: Request) -> tuple[Any, list[UploadedFile]]:
    """Split a multipart submission into the draft JSON and its file parts."""
    form = await request.form()

    raw = form.get("data")
    if raw is None or isinstance(raw, UploadFile):
        raise PayloadError("Missing 'data' field with the release JSON")
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise PayloadError("'data' is not valid JSON") from e

    files = [
        UploadedFile(field=key, filename=value.filename or "", stream=value.file)
        for key, value in form.multi_items()
        if isinstance(value, UploadFile)
    ]
    return data, files


# =============================================================================
# Catalog
# =============================================================================


@router.get("/api/releases")
async def list_releases(
    q: str | None = None,
    status: str | None = None,
    sort: str = "submission_date",
    order: str = "desc",
    offset: int = 0,
    limit: int = DEFAULT_PAGE_SIZE,
    user_id: int | None = None,
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    """List releases visible to the caller."""
    if _catalog is None:
        raise HTTPException(status_code=503, detail="Server not initialized")

    page = await _catalog.list_releases(
        actor,
        ReleaseQuery(
            search=q,
            status=status,
            sort=sort,
            descending=order.lower() != "asc",
            offset=offset,
            limit=limit,
            user_id=user_id,
        ),
    )
    return {
        "total": page.total,
        "offset": max(0, offset),
        "count": len(page.items),
        "items": [release_to_dict(r) for r in page.items],
    }


@router.get("/api/releases/summary")
async def release_summary(actor: Actor = Depends(get_actor)) -> dict[str, Any]:
    """Dashboard counts per status."""
    if _catalog is None:
        raise HTTPException(status_code=503, detail="Server not initialized")

    counts = await _catalog.status_counts(actor)
    return {"total": sum(counts.values()), "counts": counts}


@router.get("/api/releases/{release_id}")
async def get_release(release_id: int, actor: Actor = Depends(get_actor)) -> dict[str, Any]:
    if _catalog is None:
        raise HTTPException(status_code=503, detail="Server not initialized")

    release = await _catalog.get_release(actor, release_id)
    return release_to_dict(release, with_tracks=True)


@router.delete("/api/releases/{release_id}")
async def delete_release(release_id: int, actor: Actor = Depends(get_actor)) -> dict[str, Any]:
    if _catalog is None:
        raise HTTPException(status_code=503, detail="Server not initialized")

    await _catalog.delete_release(actor, release_id)
    return {"id": release_id, "deleted": True}


# =============================================================================
# Submission
# =============================================================================


@router.post("/api/releases/validate")
async def validate_draft(
    payload: dict[str, Any],
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    """
    Run the checklist without submitting.

    With a `step` key (1-4) only the checks for leaving that wizard step run.
    """
    draft = parse_release_payload(payload.get("data", payload))
    step = payload.get("step")
    if step is not None:
        try:
            errors = validate_step(draft, int(step))
        except (TypeError, ValueError) as e:
            raise PayloadError(f"Invalid step: {step!r}") from e
    else:
        errors = validate_release(draft)
    return {"valid": not errors, "errors": errors}


@router.post("/api/releases")
async def submit_release(request: Request, actor: Actor = Depends(get_actor)) -> JSONResponse:
    if _finalizer is None:
        raise HTTPException(status_code=503, detail="Server not initialized")

    data, files = await _read_submission(request)
    draft = parse_release_payload(data)
    # A new submission never targets an existing row.
    draft.id = None
    result = await _finalizer.finalize(actor, draft, files)
    return _result_response(result)


@router.put("/api/releases/{release_id}")
async def resubmit_release(
    release_id: int,
    request: Request,
    actor: Actor = Depends(get_actor),
) -> JSONResponse:
    if _finalizer is None:
        raise HTTPException(status_code=503, detail="Server not initialized")

    data, files = await _read_submission(request)
    draft = parse_release_payload(data)
    result = await _finalizer.finalize(actor, draft, files, release_id=release_id)
    return _result_response(result)


# =============================================================================
# Workflow
# =============================================================================


@router.patch("/api/releases/{release_id}/status")
async def change_status(
    release_id: int,
    payload: dict[str, Any],
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    """Operator transition; returns the updated release."""
    if _workflow is None or _catalog is None:
        raise HTTPException(status_code=503, detail="Server not initialized")

    await _workflow.transition(actor, release_id, parse_transition_payload(payload))
    release = await _catalog.get_release(actor, release_id)
    return release_to_dict(release, with_tracks=True)
