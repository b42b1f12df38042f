"""
Audio service for transcoding upstream renditions with FFmpeg.
Produces raw PCM for embedded players and MP3 for browsers.
Every call works on its own pair of scratch files, removed on every exit path.
"""
import asyncio
import os
import tempfile
from typing import List, Optional, Tuple
import logging

import aiofiles

from app.config import FFMPEG_PATH, TRANSCODE_TMP_DIR
from app.errors import TranscodeFailed

logger = logging.getLogger(__name__)


class AudioService:
    """Service for converting compressed audio into PCM or MP3."""

    # Fixed FFmpeg output arguments per target
    FORMAT_CONFIG = {
        "pcm": {
            "ext": ".pcm",
            "mime": "application/octet-stream",
            "args": ["-f", "s16le", "-acodec", "pcm_s16le", "-ar", "44100", "-ac", "2"]
        },
        "mp3": {
            "ext": ".mp3",
            "mime": "audio/mpeg",
            "args": ["-codec:a", "libmp3lame", "-qscale:a", "2"]
        },
    }

    def __init__(self, ffmpeg_path: str = FFMPEG_PATH, tmp_dir: Optional[str] = TRANSCODE_TMP_DIR):
        self.ffmpeg_path = ffmpeg_path
        self.tmp_dir = tmp_dir

    async def to_pcm(self, data: bytes, source_ext: str = "webm") -> bytes:
        """Convert to signed 16-bit little-endian, 44.1kHz, stereo raw PCM."""
        return await self.transcode(data, "pcm", source_ext)

    async def to_mp3(self, data: bytes, source_ext: str = "webm") -> bytes:
        """Convert to VBR MP3 (quality level 2)."""
        return await self.transcode(data, "mp3", source_ext)

    async def transcode(self, data: bytes, target: str, source_ext: str = "webm") -> bytes:
        config = self.FORMAT_CONFIG[target]
        input_path = None
        output_path = None
        try:
            try:
                with tempfile.NamedTemporaryFile(prefix="in_", suffix=f".{source_ext}", dir=self.tmp_dir, delete=False) as tmp_in:
                    input_path = tmp_in.name
                with tempfile.NamedTemporaryFile(prefix="out_", suffix=config["ext"], dir=self.tmp_dir, delete=False) as tmp_out:
                    output_path = tmp_out.name
            except OSError as e:
                raise TranscodeFailed(f"Could not create scratch files: {e}") from e

            async with aiofiles.open(input_path, 'wb') as f:
                await f.write(data)

            cmd = [
                self.ffmpeg_path,
                "-y",               # Overwrite the pre-created output file
                "-i", input_path,
                "-vn",              # No video
            ] + config["args"] + [
                output_path
            ]

            logger.info(f"Transcoding {len(data) / 1024 / 1024:.2f} MB to {target}")
            returncode, stderr = await self._run_codec(cmd)
            if returncode != 0:
                message = stderr.decode('utf-8', errors='ignore')[-500:].strip()
                logger.error(f"FFmpeg error ({returncode}): {message}")
                raise TranscodeFailed(message or f"FFmpeg exited with code {returncode}")

            async with aiofiles.open(output_path, 'rb') as f:
                output_data = await f.read()
            if not output_data:
                raise TranscodeFailed("FFmpeg produced no output")

            logger.info(f"Transcoded to {target}: {len(output_data) / 1024 / 1024:.2f} MB")
            return output_data
        finally:
            for path in (input_path, output_path):
                if path and os.path.exists(path):
                    try:
                        os.unlink(path)
                    except OSError as e:
                        logger.warning(f"Could not remove scratch file {path}: {e}")

    async def _run_codec(self, cmd: List[str]) -> Tuple[int, bytes]:
        """Run FFmpeg to completion and return (exit code, stderr)."""
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            logger.error("FFmpeg not found! Please install FFmpeg.")
            raise TranscodeFailed(f"FFmpeg not found at {self.ffmpeg_path}") from e
        except OSError as e:
            raise TranscodeFailed(f"Could not start FFmpeg: {e}") from e

        try:
            _, stderr = await process.communicate()
        except asyncio.CancelledError:
            # Reap the child before the scratch files are removed
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()
            raise
        return process.returncode, stderr or b""


# Singleton instance
audio_service = AudioService()
