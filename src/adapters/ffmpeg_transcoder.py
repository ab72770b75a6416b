"""ffmpeg-backed media transcoder.

Sticker conversions go through temporary files because mp4 output needs a
seekable target.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
from typing import List, Optional

from core.errors import TranscodeFailed

LOGGER = logging.getLogger(__name__)

STICKER_SCALE = "scale=512:512:force_original_aspect_ratio=decrease,pad=512:512:(ow-iw)/2:(oh-ih)/2"
MAX_STICKER_SECONDS = "3"


def _output_args(from_kind: str, to_kind: str) -> List[str]:
    if to_kind == "mp4":
        return ["-vf", STICKER_SCALE, "-c:v", "libx264", "-pix_fmt", "yuv420p", "-t", MAX_STICKER_SECONDS, "-r", "30"]
    if to_kind == "webp":
        if from_kind in ("webm", "mp4", "gif"):
            return [
                "-vf", STICKER_SCALE,
                "-c:v", "libwebp",
                "-quality", "80",
                "-preset", "default",
                "-loop", "0",
                "-t", MAX_STICKER_SECONDS,
            ]
        return ["-vf", STICKER_SCALE]
    raise TranscodeFailed(f"Unsupported target format: {to_kind}")


class FFmpegTranscoder:
    """Transcoder port implementation that shells out to ffmpeg."""

    def __init__(self, binary: str = "ffmpeg", timeout: float = 60.0) -> None:
        self._binary = binary
        self._timeout = timeout

    def available(self) -> bool:
        return shutil.which(self._binary) is not None

    async def transcode(self, data: bytes, from_kind: str, to_kind: str) -> bytes:
        if not self.available():
            raise TranscodeFailed(f"{self._binary} is not available")
        args = _output_args(from_kind, to_kind)

        try:
            with tempfile.TemporaryDirectory(prefix="topicbridge-") as workdir:
                input_path = os.path.join(workdir, f"input.{from_kind}")
                output_path = os.path.join(workdir, f"output.{to_kind}")
                with open(input_path, "wb") as handle:
                    handle.write(data)

                stderr = await self._run([self._binary, "-y", "-i", input_path, *args, output_path])
                if not os.path.exists(output_path):
                    raise TranscodeFailed(f"ffmpeg produced no output for {from_kind} -> {to_kind}: {stderr}")
                with open(output_path, "rb") as handle:
                    converted = handle.read()
        except OSError as exc:
            raise TranscodeFailed(f"Cannot stage files for ffmpeg: {exc}") from exc

        LOGGER.debug("Converted %s -> %s (%s -> %s bytes)", from_kind, to_kind, len(data), len(converted))
        return converted

    async def _run(self, command: List[str]) -> Optional[str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise TranscodeFailed(f"Cannot start ffmpeg: {exc}") from exc
        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise TranscodeFailed("ffmpeg timed out") from exc
        err = stderr.decode(errors="replace").strip()
        if proc.returncode != 0:
            raise TranscodeFailed(f"ffmpeg exited with {proc.returncode}: {err[-500:]}")
        return err
