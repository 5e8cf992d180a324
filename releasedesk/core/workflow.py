"""
Workflow transitions for submitted releases.

Operators move releases between Pending, Processing, Live and Rejected and
attach distribution data (aggregator, UPC, per-track ISRC). Only the fields
present in a request are written.

By default any status may follow any other. With `strict=True` only the
edges in `ALLOWED_TRANSITIONS` are accepted; re-saving the current status is
always allowed so side fields can be edited on their own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Final, Mapping

from releasedesk.core import AccessError, InvalidTransitionError, NotFoundError, PayloadError
from releasedesk.core.db.models import normalize_text
from releasedesk.core.events import ReleaseStatusChangedEvent, event_bus
from releasedesk.core.models import Actor, ReleaseStatus
from releasedesk.core.release_db import ReleaseDb

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Final[dict[ReleaseStatus, frozenset[ReleaseStatus]]] = {
    ReleaseStatus.PENDING: frozenset({ReleaseStatus.PROCESSING, ReleaseStatus.REJECTED}),
    ReleaseStatus.PROCESSING: frozenset(
        {ReleaseStatus.LIVE, ReleaseStatus.REJECTED, ReleaseStatus.PENDING}
    ),
    ReleaseStatus.REJECTED: frozenset({ReleaseStatus.PENDING}),
    ReleaseStatus.LIVE: frozenset({ReleaseStatus.PROCESSING}),
}


@dataclass(slots=True)
class TransitionRequest:
    """
    Requested workflow change. `None` means "leave unchanged".

    `isrc_codes` maps track id -> ISRC; an empty string clears the code.
    """

    status: str
    aggregator: str | None = None
    upc: str | None = None
    rejection_reason: str | None = None
    rejection_description: str | None = None
    isrc_codes: dict[int, str] = field(default_factory=dict)


def parse_transition_payload(data: Any) -> TransitionRequest:
    """Build a `TransitionRequest` from a JSON body (camelCase or snake_case keys)."""
    if not isinstance(data, Mapping):
        raise PayloadError("Transition payload must be a JSON object")

    def pick(*keys: str) -> Any:
        for key in keys:
            if key in data and data[key] is not None:
                return data[key]
        return None

    raw_codes = pick("isrcCodes", "isrc_codes") or {}
    codes: dict[int, str] = {}
    if isinstance(raw_codes, Mapping):
        items = list(raw_codes.items())
    elif isinstance(raw_codes, list):
        # [{"trackId": 3, "isrc": "..."}]
        items = []
        for entry in raw_codes:
            if not isinstance(entry, Mapping):
                raise PayloadError("Each ISRC entry must be an object")
            items.append((entry.get("trackId", entry.get("track_id")), entry.get("isrc")))
    else:
        raise PayloadError("isrcCodes must be an object or a list")

    for track_id, isrc in items:
        try:
            codes[int(track_id)] = "" if isrc is None else str(isrc).strip()
        except (TypeError, ValueError) as e:
            raise PayloadError(f"Invalid track id: {track_id!r}") from e

    def text(*keys: str) -> str | None:
        value = pick(*keys)
        return None if value is None else str(value)

    return TransitionRequest(
        status=str(pick("status") or ""),
        aggregator=text("aggregator"),
        upc=text("upc"),
        rejection_reason=text("rejectionReason", "rejection_reason"),
        rejection_description=text("rejectionDescription", "rejection_description"),
        isrc_codes=codes,
    )


class WorkflowService:
    def __init__(self, db: ReleaseDb, *, strict: bool = False) -> None:
        self._db = db
        self._strict = strict

    @property
    def strict(self) -> bool:
        return self._strict

    async def transition(self, actor: Actor, release_id: int, request: TransitionRequest) -> None:
        """
        Apply a workflow change to a release.

        Raises:
            AccessError: The actor is not an Operator or Admin.
            InvalidTransitionError: Unknown status, Rejected without a
                reason, or an edge refused in strict mode.
            NotFoundError: Unknown release, or an ISRC for a track that is
                not part of it.
        """
        if not actor.is_elevated:
            raise AccessError("Only operators can change the release status")

        try:
            status = ReleaseStatus(request.status)
        except ValueError:
            raise InvalidTransitionError(f"Invalid status: {request.status!r}") from None

        if status == ReleaseStatus.REJECTED and not (request.rejection_reason or "").strip():
            raise InvalidTransitionError("Rejection reason is required")

        release = await self._db.get_release(release_id)
        if release is None:
            raise NotFoundError(f"Release {release_id} not found")

        previous = ReleaseStatus(release.status)
        if self._strict and status != previous and status not in ALLOWED_TRANSITIONS[previous]:
            raise InvalidTransitionError(
                f"Cannot move release from {previous.value} to {status.value}"
            )

        fields: dict[str, Any] = {"status": status.value}
        if request.aggregator is not None:
            fields["aggregator"] = normalize_text(request.aggregator)
        if request.upc is not None:
            fields["upc"] = normalize_text(request.upc)
        if request.rejection_reason is not None:
            # Stored exactly as supplied.
            fields["rejection_reason"] = request.rejection_reason
        if request.rejection_description is not None:
            fields["rejection_description"] = request.rejection_description

        codes = {tid: normalize_text(isrc) for tid, isrc in request.isrc_codes.items()}
        missing = await self._db.update_workflow(release_id, fields, codes)
        if missing:
            raise NotFoundError(
                f"Tracks not part of release {release_id}: {', '.join(map(str, missing))}"
            )

        logger.info(
            "Release %d: %s -> %s by user %s",
            release_id,
            previous.value,
            status.value,
            actor.user_id,
        )
        await event_bus.publish(
            ReleaseStatusChangedEvent(
                release_id=release_id,
                previous_status=previous.value,
                status=status.value,
                changed_by=actor.user_id,
                rejection_reason=request.rejection_reason,
            )
        )
