"""
Staged uploads.

Media files are uploaded before the release is submitted and held in a
staging area scoped by (user, artist, title):

    {upload_root}/tmp/{user_id}/{artist}/{title}/{field}{ext}

Two transfer modes are supported:

- whole-file: one multipart request carrying any number of named files
- chunked: the client sends ordered chunks (fileId, chunkIndex, totalChunks);
  bytes are appended to a per-fileId accumulator which is renamed to its final
  name when the last chunk arrives

Chunk ordering:
    Chunks must arrive strictly in order. Index 0 (re)starts an upload; any
    other index must be the next expected one or `ChunkSequenceError` is raised
    and nothing is written, so the client can resend the expected chunk.
    Progress is tracked per accumulator file (fileId inside one staging
    directory) and requests for it are serialized with a lock. Finished,
    failed and cleaned-up uploads leave no state behind.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Final, Iterable

from releasedesk.core import (
    AccessError,
    AssetError,
    ChunkSequenceError,
    PayloadError,
    UploadTooLargeError,
)
from releasedesk.core.models import Actor
from releasedesk.core.naming import (
    STAGING_DIR,
    resolve_public_path,
    sanitize_component,
    staging_dir,
    to_public_path,
)
from releasedesk.core.transcoder import AudioTranscoder

logger = logging.getLogger(__name__)

# Copy buffer for streaming uploads to disk (1 MiB)
COPY_BUFFER_SIZE: Final[int] = 1024 * 1024

DEFAULT_PREVIEW_SECONDS: Final[float] = 60.0


@dataclass(frozen=True, slots=True)
class UploadedFile:
    """A file part received in a request; `stream` is a readable binary file object."""

    field: str
    filename: str
    stream: BinaryIO


@dataclass(frozen=True, slots=True)
class ChunkInfo:
    file_id: str
    chunk_index: int
    total_chunks: int
    filename: str = ""
    field: str = ""


@dataclass(frozen=True, slots=True)
class ChunkAck:
    """Intermediate chunk accepted."""

    received: int
    done: bool = False


@dataclass(frozen=True, slots=True)
class ChunkComplete:
    """Last chunk accepted; the file is in place."""

    path: str
    size: int
    done: bool = True


@dataclass(slots=True)
class _ChunkState:
    """Progress of one chunked upload; `users` counts requests holding or awaiting the lock."""

    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    next_index: int = 0
    received: int = 0
    users: int = 0
    # Bumped by cleanup so an in-flight write knows its accumulator was dropped.
    epoch: int = 0

    def reset(self) -> None:
        self.next_index = 0
        self.received = 0


def file_extension(filename: str | None) -> str:
    """Lowercased extension of an uploaded filename, '' when there is none."""
    suffix = Path(filename or "").suffix.lower()
    # Only keep plain extensions (".wav", ".flac"); anything odd is dropped.
    if len(suffix) > 10 or not suffix[1:].isalnum():
        return ""
    return suffix


def write_stream(stream: BinaryIO, dest: Path, limit: int, *, append: bool = False) -> int:
    """
    Copy a binary stream into `dest` (synchronous; run it in a thread).

    Returns:
        Bytes written by this call.

    Raises:
        UploadTooLargeError: If the file would exceed `limit`; a fresh file is
            removed, an appended one is left for the caller to discard.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    existing = dest.stat().st_size if append and dest.exists() else 0
    written = 0

    with dest.open("ab" if append else "wb") as out:
        while True:
            block = stream.read(COPY_BUFFER_SIZE)
            if not block:
                break
            written += len(block)
            if existing + written > limit:
                out.close()
                if not append:
                    dest.unlink(missing_ok=True)
                raise UploadTooLargeError(limit)
            out.write(block)

    return written


class StagedUploadManager:
    """
    Writes uploads into the per-user staging area and manages their lifecycle.

    Staged files are orphaned if a wizard is abandoned without calling
    `cleanup`; nothing expires them automatically.
    """

    def __init__(
        self,
        upload_root: Path,
        *,
        max_upload_bytes: int,
        transcoder: AudioTranscoder | None = None,
    ) -> None:
        self._root = Path(upload_root)
        self._max_upload_bytes = int(max_upload_bytes)
        self._transcoder = transcoder or AudioTranscoder()

        # Chunk state per accumulator path
        self._chunks: dict[str, _ChunkState] = {}

    @property
    def upload_root(self) -> Path:
        return self._root

    @property
    def max_upload_bytes(self) -> int:
        return self._max_upload_bytes

    def staging_path(self, actor: Actor, artist: str | None, title: str | None) -> Path:
        return resolve_public_path(self._root, staging_dir(actor.user_id, artist, title))

    # ---------------------------------------------------------------------
    # Whole-file uploads
    # ---------------------------------------------------------------------

    async def store_files(
        self,
        actor: Actor,
        artist: str | None,
        title: str | None,
        files: Iterable[UploadedFile],
    ) -> dict[str, str]:
        """
        Store each file under the staging directory.

        Returns:
            Map of field name -> public path (tmp/...).
        """
        target_dir = self.staging_path(actor, artist, title)
        stored: dict[str, str] = {}

        for upload in files:
            name = sanitize_component(upload.field) + file_extension(upload.filename)
            dest = target_dir / name
            size = await asyncio.to_thread(
                write_stream, upload.stream, dest, self._max_upload_bytes
            )
            stored[upload.field] = to_public_path(self._root, dest)
            logger.info(
                "Staged %s for user %s (%d bytes)", stored[upload.field], actor.user_id, size
            )

        return stored

    # ---------------------------------------------------------------------
    # Chunked uploads
    # ---------------------------------------------------------------------

    async def append_chunk(
        self,
        actor: Actor,
        artist: str | None,
        title: str | None,
        chunk: ChunkInfo,
        data: BinaryIO,
    ) -> ChunkAck | ChunkComplete:
        """
        Append one chunk to the accumulator for `chunk.file_id`.

        Chunk state belongs to the accumulator file, so a chunk sent for a
        different (artist, title) than its predecessors, or after the staging
        directory was cleaned up, is refused with `expected == 0`.

        Raises:
            PayloadError: Invalid chunk metadata.
            ChunkSequenceError: Chunk index is not the next expected one.
            UploadTooLargeError: Accumulated size exceeds the ceiling.
        """
        if not chunk.file_id or not chunk.file_id.strip():
            raise PayloadError("fileId is required")
        if chunk.total_chunks <= 0:
            raise PayloadError("totalChunks must be positive")
        if chunk.chunk_index < 0 or chunk.chunk_index >= chunk.total_chunks:
            raise PayloadError(
                f"chunkIndex {chunk.chunk_index} out of range for {chunk.total_chunks} chunks"
            )

        safe_id = sanitize_component(chunk.file_id)
        target_dir = self.staging_path(actor, artist, title)
        part = target_dir / f".{safe_id}.part"
        key = str(part)

        state = self._chunks.get(key)
        if state is None:
            state = self._chunks[key] = _ChunkState()
        state.users += 1
        try:
            async with state.lock:
                result = await self._append_locked(state, part, chunk, data)
        finally:
            state.users -= 1
            # Idle entries with no upload in progress are dropped.
            if state.users == 0 and state.next_index == 0 and self._chunks.get(key) is state:
                del self._chunks[key]

        if isinstance(result, ChunkComplete):
            logger.info(
                "Chunked upload %s complete: %s (%d chunks, %d bytes)",
                chunk.file_id,
                result.path,
                chunk.total_chunks,
                result.size,
            )
        return result

    async def _append_locked(
        self,
        state: _ChunkState,
        part: Path,
        chunk: ChunkInfo,
        data: BinaryIO,
    ) -> ChunkAck | ChunkComplete:
        if chunk.chunk_index == 0:
            part.unlink(missing_ok=True)
            state.reset()
        else:
            if chunk.chunk_index != state.next_index:
                raise ChunkSequenceError(chunk.file_id, state.next_index, chunk.chunk_index)
            size = part.stat().st_size if part.is_file() else -1
            if size != state.received:
                # The accumulator vanished or changed under us; start over.
                logger.warning(
                    "Accumulator for %s is missing or has %d bytes (expected %d)",
                    chunk.file_id,
                    size,
                    state.received,
                )
                part.unlink(missing_ok=True)
                state.reset()
                raise ChunkSequenceError(chunk.file_id, 0, chunk.chunk_index)

        epoch = state.epoch
        try:
            written = await asyncio.to_thread(
                write_stream, data, part, self._max_upload_bytes, append=True
            )
        except Exception:
            part.unlink(missing_ok=True)
            state.reset()
            raise
        if state.epoch != epoch:
            part.unlink(missing_ok=True)
            raise ChunkSequenceError(chunk.file_id, 0, chunk.chunk_index)

        if chunk.chunk_index + 1 < chunk.total_chunks:
            state.next_index = chunk.chunk_index + 1
            state.received += written
            return ChunkAck(received=chunk.chunk_index)

        field_name = chunk.field or Path(chunk.filename).stem or sanitize_component(chunk.file_id)
        final = part.with_name(sanitize_component(field_name) + file_extension(chunk.filename))
        part.replace(final)
        state.reset()
        return ChunkComplete(path=to_public_path(self._root, final), size=final.stat().st_size)

    # ---------------------------------------------------------------------
    # Cleanup / previews
    # ---------------------------------------------------------------------

    async def cleanup(self, actor: Actor, artist: str | None, title: str | None) -> bool:
        """
        Remove the whole staging directory for (actor, artist, title).

        Returns:
            True if something was removed.
        """
        target_dir = self.staging_path(actor, artist, title)
        self._forget_chunks(target_dir)
        if not target_dir.exists():
            return False
        await asyncio.to_thread(shutil.rmtree, target_dir, True)
        logger.info("Removed staging directory %s", to_public_path(self._root, target_dir))
        return True

    def _forget_chunks(self, target_dir: Path) -> None:
        for key, state in list(self._chunks.items()):
            if Path(key).parent != target_dir:
                continue
            state.reset()
            state.epoch += 1
            if state.users == 0:
                del self._chunks[key]

    def _resolve_own_staged(self, actor: Actor, staged_path: str) -> Path:
        path = resolve_public_path(self._root, staged_path)
        own_root = resolve_public_path(self._root, f"{STAGING_DIR}/{int(actor.user_id)}")
        if own_root not in path.parents:
            raise AccessError("Staged file belongs to another user")
        if not path.is_file():
            raise AssetError(f"Staged file not found: {staged_path}")
        return path

    async def generate_preview(
        self,
        actor: Actor,
        staged_path: str,
        start_seconds: float,
        duration_seconds: float = DEFAULT_PREVIEW_SECONDS,
    ) -> str:
        """
        Cut a WAV preview clip out of a staged audio file.

        The clip is written next to the source as `{stem}-preview.wav`.

        Raises:
            AccessError: The staged path is outside the actor's staging area.
            AssetError: The staged file does not exist.
            TranscodeError: The transcoder is missing or failed.
        """
        src = self._resolve_own_staged(actor, staged_path)
        dst = src.with_name(f"{src.stem}-preview.wav")

        await self._transcoder.to_wav(
            src,
            dst,
            start_seconds=max(0.0, float(start_seconds)),
            duration_seconds=float(duration_seconds),
        )
        return to_public_path(self._root, dst)
