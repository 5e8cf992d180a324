"""
Transcoder for release audio.

Every delivered audio asset is normalized to 48 kHz / 24-bit PCM WAV through
an external `ffmpeg` executable. The transcoder is a black box: it either
produces the output file or raises `TranscodeError` (missing binary, non-zero
exit). Callers decide whether that is fatal.

Binary resolution follows the usual order:
1. third_party/bin/ directory
2. System PATH
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from mutagen import File as mutagen_file

from releasedesk.core import TranscodeError

logger = logging.getLogger(__name__)

THIRD_PARTY_BIN = Path(__file__).parent.parent.parent / "third_party" / "bin"

TARGET_SAMPLE_RATE: Final[int] = 48000
TARGET_CODEC: Final[str] = "pcm_s24le"

# Keep only the end of stderr in error messages; ffmpeg prints a banner first.
_STDERR_TAIL = 2000


@dataclass(frozen=True, slots=True)
class AudioInfo:
    """Technical metadata probed from an audio file."""

    duration_ms: int | None = None
    sample_rate: int | None = None
    bit_depth: int | None = None
    channels: int | None = None


def resolve_binary(name: str) -> Path | None:
    """
    Resolve a binary name to its full path.

    Args:
        name: Binary name (e.g., "ffmpeg") or an explicit path.

    Returns:
        Path to the binary, or None if not found.
    """
    explicit = Path(name)
    if explicit.is_absolute() or explicit.parent != Path("."):
        return explicit if explicit.exists() else None

    for ext in ["", ".exe"]:
        bin_path = THIRD_PARTY_BIN / f"{name}{ext}"
        if bin_path.exists():
            return bin_path

    system_path = shutil.which(name)
    if system_path:
        return Path(system_path)

    return None


def build_ffmpeg_command(
    binary: Path | str,
    src: Path,
    dst: Path,
    start_seconds: float | None = None,
    duration_seconds: float | None = None,
) -> list[str]:
    """
    Build the ffmpeg argument list for a WAV conversion.

    `-ss`/`-t` are placed after `-i` so the trim is sample accurate.
    """
    args = [str(binary), "-hide_banner", "-nostdin", "-y", "-i", str(src)]

    if start_seconds is not None and start_seconds > 0:
        args.extend(["-ss", f"{start_seconds:.3f}"])
    if duration_seconds is not None and duration_seconds > 0:
        args.extend(["-t", f"{duration_seconds:.3f}"])

    args.extend(
        [
            "-vn",
            "-ar",
            str(TARGET_SAMPLE_RATE),
            "-c:a",
            TARGET_CODEC,
            "-f",
            "wav",
            str(dst),
        ]
    )
    return args


class AudioTranscoder:
    """
    Converts audio files to the delivery format.

    Conversions run synchronously with respect to the caller's request; there
    is no timeout beyond normal process exit.
    """

    def __init__(self, binary: str = "ffmpeg") -> None:
        self._binary_name = binary

    @property
    def binary_name(self) -> str:
        return self._binary_name

    def available(self) -> bool:
        return resolve_binary(self._binary_name) is not None

    async def to_wav(
        self,
        src: Path,
        dst: Path,
        *,
        start_seconds: float | None = None,
        duration_seconds: float | None = None,
    ) -> Path:
        """
        Convert `src` to a 48 kHz/24-bit WAV at `dst`.

        Raises:
            TranscodeError: If the binary is missing, the source is missing,
                or the process exits non-zero.
        """
        binary = resolve_binary(self._binary_name)
        if binary is None:
            raise TranscodeError(f"Transcoder binary not found: {self._binary_name}")
        if not src.is_file():
            raise TranscodeError(f"Source file not found: {src}")

        dst.parent.mkdir(parents=True, exist_ok=True)
        cmd = build_ffmpeg_command(binary, src, dst, start_seconds, duration_seconds)
        logger.debug("Transcoding: %s", " ".join(cmd))

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TranscodeError(f"Failed to start transcoder: {e}") from e

        _, stderr_bytes = await proc.communicate()
        stderr = stderr_bytes.decode("utf-8", errors="replace")[-_STDERR_TAIL:]

        if proc.returncode != 0:
            with contextlib.suppress(OSError):
                dst.unlink()
            logger.warning(
                "Transcoder exited with code %s for %s: %s", proc.returncode, src, stderr.strip()
            )
            raise TranscodeError(
                f"Transcoder exited with code {proc.returncode}", stderr=stderr
            )

        if not dst.exists():
            raise TranscodeError(f"Transcoder produced no output for {src}", stderr=stderr)

        logger.info("Transcoded %s -> %s", src.name, dst.name)
        return dst


def probe_audio(path: Path) -> AudioInfo:
    """
    Read technical metadata using mutagen.

    Unreadable or unsupported files yield an empty AudioInfo; this is only
    informational and never blocks a submission.
    """
    try:
        audio = mutagen_file(path)
    except Exception as e:
        logger.debug("mutagen could not read %s: %s", path, e)
        return AudioInfo()

    info = getattr(audio, "info", None) if audio is not None else None
    if info is None:
        return AudioInfo()

    duration_ms: int | None = None
    length = getattr(info, "length", None)
    if isinstance(length, (int, float)) and length > 0:
        duration_ms = int(length * 1000)

    sample_rate = getattr(info, "sample_rate", None)
    bit_depth = getattr(info, "bits_per_sample", None)
    channels = getattr(info, "channels", None)

    return AudioInfo(
        duration_ms=duration_ms,
        sample_rate=sample_rate if isinstance(sample_rate, int) and sample_rate > 0 else None,
        bit_depth=bit_depth if isinstance(bit_depth, int) and bit_depth > 0 else None,
        channels=channels if isinstance(channels, int) and channels > 0 else None,
    )
