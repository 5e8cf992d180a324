"""
Local persistence for in-progress wizard state.

A draft lives on the submitting user's machine only: one JSON document with
the current wizard step and the serialized draft. Local file handles cannot
survive serialization (they degrade to `{}`); `load` turns every such leftover
back into "absent" for the release cover and for each track's files.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from releasedesk.core import PayloadError
from releasedesk.core.models import (
    ReleaseDraft,
    WizardStep,
    draft_to_dict,
    parse_release_payload,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DraftState:
    step: WizardStep = WizardStep.INFO
    draft: ReleaseDraft = field(default_factory=ReleaseDraft)


def _clamp_step(value: Any) -> WizardStep:
    try:
        step = int(value)
    except (TypeError, ValueError):
        return WizardStep.INFO
    step = max(WizardStep.INFO.value, min(WizardStep.REVIEW.value, step))
    return WizardStep(step)


class DraftStore:
    """
    Single-user, single-process store for the wizard draft.

    Usage:
        store = DraftStore(Path("~/.releasedesk/draft.json").expanduser())
        store.save(WizardStep.TRACKS, draft)
        state = store.load()
        store.clear()
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def save(self, step: WizardStep | int, draft: ReleaseDraft) -> None:
        """Persist the step and draft; the previous state is replaced atomically."""
        document = {"step": int(_clamp_step(step)), "data": draft_to_dict(draft)}
        self._path.parent.mkdir(parents=True, exist_ok=True)

        tmp = self._path.with_name(self._path.name + ".tmp")
        tmp.write_text(json.dumps(document, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, self._path)

    def load(self) -> DraftState:
        """Return the saved state, or a fresh draft at step 1."""
        if not self._path.exists():
            return DraftState()

        try:
            document = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Discarding unreadable draft %s: %s", self._path, e)
            return DraftState()

        if not isinstance(document, dict):
            logger.warning("Discarding malformed draft %s", self._path)
            return DraftState()

        try:
            # parse_release_payload only keeps non-empty strings as file
            # references, so degraded `{}` placeholders come back as None.
            draft = parse_release_payload(document.get("data") or {})
        except PayloadError as e:
            logger.warning("Discarding malformed draft %s: %s", self._path, e)
            return DraftState()

        return DraftState(step=_clamp_step(document.get("step")), draft=draft)

    def clear(self) -> None:
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass
