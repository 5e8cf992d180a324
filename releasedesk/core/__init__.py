"""
Core domain package.

This package contains the release pipeline logic (drafts, staged uploads,
validation, finalization, workflow) and is independent of the web layer.
Consumers should import from the specific module they need
(e.g. `releasedesk.core.finalize`).

The exception hierarchy lives here so every layer can share it without
importing the web package.
"""

from __future__ import annotations

__all__: list[str] = [
    "CoreError",
    "NotFoundError",
    "AccessError",
    "PayloadError",
    "DraftValidationError",
    "InvalidTransitionError",
    "AssetError",
    "TranscodeError",
    "TransportError",
    "UploadTooLargeError",
    "ChunkSequenceError",
]


class CoreError(Exception):
    """Base class for core-layer exceptions."""


class NotFoundError(CoreError):
    """Raised when a release/track/user cannot be found."""


class AccessError(CoreError):
    """Raised when an actor acts on a release it does not own."""


class PayloadError(CoreError):
    """Raised when an incoming payload has the wrong shape."""


class DraftValidationError(CoreError):
    """Raised when a draft is incomplete. Carries the full violation list."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__(f"{len(errors)} validation error(s)")
        self.errors = list(errors)


class InvalidTransitionError(CoreError):
    """Raised when a workflow status change is refused."""


class AssetError(CoreError):
    """Raised when a staged or permanent file is missing or unusable."""


class TranscodeError(AssetError):
    """Raised when the external transcoder is missing or fails."""

    def __init__(self, message: str, *, stderr: str = "") -> None:
        super().__init__(message)
        self.stderr = stderr


class TransportError(CoreError):
    """Raised when an upload cannot be accepted as transferred."""


class UploadTooLargeError(TransportError):
    """Raised when a payload exceeds the configured size ceiling."""

    def __init__(self, limit: int) -> None:
        super().__init__(f"Upload exceeds the maximum size of {limit} bytes")
        self.limit = limit


class ChunkSequenceError(TransportError):
    """Raised when a chunk arrives out of order."""

    def __init__(self, file_id: str, expected: int, received: int) -> None:
        super().__init__(
            f"Chunk {received} for {file_id} arrived out of order (expected {expected})"
        )
        self.file_id = file_id
        self.expected = expected
        self.received = received
