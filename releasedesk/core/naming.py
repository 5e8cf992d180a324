"""
Path naming helpers for release assets.

All asset locations are derived from sanitized artist/title strings so the
upload tree stays human-browsable:

- permanent assets: releases/{artist}/{title}/{filename}
- staged assets:    tmp/{user_id}/{artist}/{title}/{filename}

Public paths always use forward slashes; `resolve_public_path` is the only
way back to a filesystem location and refuses anything outside the root.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Final, Iterable

from releasedesk.core import AssetError

MAX_COMPONENT_LENGTH: Final[int] = 80
PLACEHOLDER: Final[str] = "untitled"

RELEASES_DIR: Final[str] = "releases"
STAGING_DIR: Final[str] = "tmp"

_ILLEGAL_CHARS = re.compile(r'[/\\?%*:|"<>\x00-\x1f\x7f]')
_WHITESPACE = re.compile(r"\s+")

_SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([a-zA-Z]*)\s*$")
_SIZE_UNITS: Final[dict[str, int]] = {
    "": 1,
    "b": 1,
    "k": 1024,
    "kb": 1024,
    "kib": 1024,
    "m": 1024**2,
    "mb": 1024**2,
    "mib": 1024**2,
    "g": 1024**3,
    "gb": 1024**3,
    "gib": 1024**3,
    "t": 1024**4,
    "tb": 1024**4,
    "tib": 1024**4,
}


def sanitize_component(value: str | None) -> str:
    """
    Turn arbitrary text into a single safe path component.

    - strips characters illegal in file paths (/ \\ ? % * : | " < > and controls)
    - collapses runs of whitespace into one space
    - truncates to MAX_COMPONENT_LENGTH
    - falls back to PLACEHOLDER when nothing is left
    """
    if value is None:
        return PLACEHOLDER
    cleaned = _ILLEGAL_CHARS.sub("", str(value))
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    cleaned = cleaned[:MAX_COMPONENT_LENGTH].strip()
    # "." and ".." would walk the tree
    if not cleaned or set(cleaned) == {"."}:
        return PLACEHOLDER
    return cleaned


def parse_size(value: str | int) -> int:
    """
    Parse a human-readable size ("500MB", "8 GiB", "1048576") into bytes.

    Units are binary multiples and case-insensitive.

    Raises:
        ValueError: If the string is not a recognizable size.
    """
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"Size must be positive: {value}")
        return value

    match = _SIZE_PATTERN.match(value)
    if match is None:
        raise ValueError(f"Invalid size: {value!r}")

    number, unit = match.groups()
    multiplier = _SIZE_UNITS.get(unit.lower())
    if multiplier is None:
        raise ValueError(f"Unknown size unit in {value!r}")
    return int(float(number) * multiplier)


def primary_artist_for_path(artists: Iterable[str] | None) -> str:
    """Return the first non-blank artist name (the one used for directory names)."""
    for name in artists or ():
        if name and name.strip():
            return name.strip()
    return ""


def release_dir(artist: str | None, title: str | None) -> str:
    """Public directory for the permanent assets of a release."""
    return f"{RELEASES_DIR}/{sanitize_component(artist)}/{sanitize_component(title)}"


def staging_dir(user_id: int, artist: str | None, title: str | None) -> str:
    """Public directory for staged uploads of one user's release."""
    return (
        f"{STAGING_DIR}/{int(user_id)}/{sanitize_component(artist)}/{sanitize_component(title)}"
    )


def is_staged_path(path: str | None) -> bool:
    return bool(path) and str(path).lstrip("/").startswith(f"{STAGING_DIR}/")


def is_permanent_path(path: str | None) -> bool:
    return bool(path) and str(path).lstrip("/").startswith(f"{RELEASES_DIR}/")


def resolve_public_path(root: Path, public_path: str) -> Path:
    """
    Map a public asset path to a filesystem path under `root`.

    Accepts an optional leading "/" or "uploads/" prefix (the URL form).

    Raises:
        AssetError: If the path escapes the upload root.
    """
    rel = public_path.strip().lstrip("/")
    if rel.startswith("uploads/"):
        rel = rel[len("uploads/") :]

    root_resolved = root.resolve()
    candidate = (root_resolved / rel).resolve()
    if candidate != root_resolved and root_resolved not in candidate.parents:
        raise AssetError(f"Path escapes upload root: {public_path}")
    return candidate


def to_public_path(root: Path, path: Path) -> str:
    """Inverse of `resolve_public_path`."""
    return path.resolve().relative_to(root.resolve()).as_posix()
