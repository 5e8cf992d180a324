"""
Completeness checks for release drafts.

Every check runs; the caller receives the whole checklist in one pass.
Messages are user-facing and stable (clients match on them).
"""

from __future__ import annotations

from releasedesk.core.models import ReleaseDraft, ReleaseType, TrackDraft, WizardStep

MIN_ALBUM_TRACKS = 2


def _blank(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _validate_track(track: TrackDraft, number: int) -> list[str]:
    errors: list[str] = []
    if _blank(track.title):
        errors.append(f"Track {number}: Title is required.")
    if _blank(track.audio_file):
        errors.append(f"Track {number}: Audio file is missing.")
    if _blank(track.genre):
        errors.append(f"Track {number}: Genre is required.")
    if _blank(track.composer):
        errors.append(f"Track {number}: Composer is required.")

    if track.is_instrumental != "Yes":
        if _blank(track.lyricist):
            errors.append(f"Track {number}: Lyricist is required (since it's not Instrumental).")
        if _blank(track.explicit_lyrics):
            errors.append(f"Track {number}: Explicit Lyrics status is required.")
    return errors


def validate_release(draft: ReleaseDraft) -> list[str]:
    """
    Check a completed draft before submission.

    Returns:
        Ordered violation messages; an empty list means the draft is valid.
    """
    errors: list[str] = []

    if _blank(draft.cover_art):
        errors.append("Cover Art is required.")
    if _blank(draft.title):
        errors.append("Release Title is required.")
    if not draft.primary_artists or _blank(draft.primary_artists[0]):
        errors.append("Primary Artist is required.")
    # Singles inherit the genre from their only track.
    if draft.release_type != ReleaseType.SINGLE and _blank(draft.genre):
        errors.append("Release Genre is required.")
    if _blank(draft.language):
        errors.append("Language / Territory is required.")
    if _blank(draft.version):
        errors.append("Release Version is required.")
    if _blank(draft.label):
        errors.append("Record Label is required.")
    if _blank(draft.planned_release_date):
        errors.append("Release Date is required.")

    if not draft.tracks:
        errors.append("At least one track is required.")
    else:
        for index, track in enumerate(draft.tracks, start=1):
            errors.extend(_validate_track(track, index))

    return errors


def validate_step(draft: ReleaseDraft, step: WizardStep | int) -> list[str]:
    """
    Checks the wizard runs before leaving a step.

    These are lighter than `validate_release`; they stop the user early on
    the two mistakes that are expensive to notice at review time.
    """
    step = WizardStep(int(step))
    errors: list[str] = []

    if step == WizardStep.INFO:
        if not any(not _blank(name) for name in draft.primary_artists):
            errors.append("Primary Artist is required.")

    elif step == WizardStep.TRACKS:
        for index, track in enumerate(draft.tracks, start=1):
            if _blank(track.audio_file):
                errors.append(f"Track {index}: Full audio has not been uploaded.")
            if _blank(track.audio_clip):
                errors.append(f"Track {index}: Audio clip has not been uploaded.")
        if draft.release_type == ReleaseType.ALBUM and len(draft.tracks) < MIN_ALBUM_TRACKS:
            errors.append(f"Album releases need at least {MIN_ALBUM_TRACKS} tracks.")

    return errors
