"""Media preview pipeline.

Produces thumbnails for uploaded images and representative frames for video
sources. Output names are deterministic so repeated requests reuse the file
already on disk:

    thumb_<stored name>               resized image
    frame_<stem>_<timestamp>.jpg      frame from an uploaded video
    youtube_<videoId>_<timestamp>.jpg frame (or fallback image) for a YouTube URL
"""

import asyncio
import logging
import re
import shutil
import tempfile
from pathlib import Path
from urllib.parse import parse_qs, urlparse

import aiofiles
import aiofiles.os
import httpx
from PIL import Image, UnidentifiedImageError

from .config import Settings
from .errors import ThumbnailError, ValidationError

logger = logging.getLogger(__name__)

JPEG_QUALITY = 80
SEGMENT_SECONDS = 3
YOUTUBE_ID = re.compile(r"^[A-Za-z0-9_-]{11}$")
YOUTUBE_HOSTS = {"youtube.com", "www.youtube.com", "m.youtube.com", "music.youtube.com"}


def is_image(mime_type: str | None) -> bool:
    return bool(mime_type) and mime_type.startswith("image/")


def is_video(mime_type: str | None) -> bool:
    return bool(mime_type) and mime_type.startswith("video/")


def format_timestamp(seconds: float) -> str:
    # 1.0 -> "1", 2.5 -> "2.5"
    return f"{seconds:g}"


def parse_youtube_id(url: str) -> str | None:
    parsed = urlparse(url.strip())
    host = (parsed.hostname or "").lower()
    candidate = None

    if host in ("youtu.be", "www.youtu.be"):
        candidate = parsed.path.lstrip("/").split("/")[0]
    elif host in YOUTUBE_HOSTS:
        if parsed.path == "/watch":
            candidate = parse_qs(parsed.query).get("v", [None])[0]
        else:
            parts = [p for p in parsed.path.split("/") if p]
            if len(parts) >= 2 and parts[0] in ("embed", "shorts", "live", "v"):
                candidate = parts[1]

    if candidate and YOUTUBE_ID.match(candidate):
        return candidate
    return None


class MediaPreviewPipeline:
    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None):
        self.thumbnail_root = Path(settings.thumbnail_root).resolve()
        self.thumbnail_size = tuple(settings.thumbnail_size)
        self.ffmpeg_path = settings.ffmpeg_path
        self.ytdlp_path = settings.ytdlp_path
        self.timeout = settings.extraction_timeout
        self.fallback_url = settings.fallback_thumbnail_url
        self._http_client = http_client

    # ---------- Images ----------

    async def generate_thumbnail(self, file_path: str | Path, mime_type: str) -> str | None:
        """Resize an image into the thumbnail root.

        Returns None for non-image types; raises ThumbnailError when an image
        cannot be processed.
        """
        if not is_image(mime_type):
            return None

        source = Path(file_path)
        target = self.thumbnail_root / f"thumb_{source.name}"
        if await aiofiles.os.path.isfile(target):
            return str(target)

        try:
            await aiofiles.os.makedirs(self.thumbnail_root, exist_ok=True)
            await asyncio.to_thread(self._resize, source, target)
        except (
            OSError,
            UnidentifiedImageError,
            Image.DecompressionBombError,
            ValueError,
        ) as exc:
            logger.error("Thumbnail generation failed for %s: %s", source, exc)
            await self._discard(target)
            raise ThumbnailError("Failed to generate thumbnail", file_path=str(source)) from exc

        logger.debug("Thumbnail generated %s -> %s", source, target)
        return str(target)

    def _resize(self, source: Path, target: Path) -> None:
        with Image.open(source) as img:
            img.thumbnail(self.thumbnail_size)
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            img.save(target, format="JPEG", quality=JPEG_QUALITY)

    # ---------- Video frames ----------

    async def extract_video_frame(self, file_path: str | Path, timestamp: float = 1.0) -> str:
        source = Path(file_path)
        target = self.thumbnail_root / f"frame_{source.stem}_{format_timestamp(timestamp)}.jpg"
        if await aiofiles.os.path.isfile(target):
            logger.debug("Reusing extracted frame %s", target)
            return str(target)

        if not await aiofiles.os.path.isfile(source):
            raise ThumbnailError("Video file is missing on disk", file_path=str(source))

        await aiofiles.os.makedirs(self.thumbnail_root, exist_ok=True)
        try:
            await self._grab_frame(source, target, timestamp)
        except ThumbnailError:
            await self._discard(target)
            raise

        logger.info("Video frame extracted %s at %ss", source.name, timestamp)
        return str(target)

    async def extract_youtube_frame(self, url: str, timestamp: float = 1.0) -> str:
        video_id = parse_youtube_id(url)
        if not video_id:
            raise ValidationError("Invalid YouTube URL", field="youtubeUrl", value=url)

        target = self.thumbnail_root / f"youtube_{video_id}_{format_timestamp(timestamp)}.jpg"
        if await aiofiles.os.path.isfile(target):
            logger.debug("Reusing YouTube frame %s", target)
            return str(target)

        await aiofiles.os.makedirs(self.thumbnail_root, exist_ok=True)
        workdir = Path(await asyncio.to_thread(tempfile.mkdtemp, prefix="filevault-yt-"))
        try:
            segment = await self._download_segment(url, workdir, timestamp)
            await self._grab_frame(segment, target, 0)
            logger.info("YouTube frame extracted video=%s at %ss", video_id, timestamp)
            return str(target)
        except ThumbnailError as exc:
            logger.warning("YouTube extraction failed for %s, using fallback: %s", video_id, exc)
            await self._discard(target)
            await self._fetch_fallback(video_id, target)
            return str(target)
        finally:
            await asyncio.to_thread(shutil.rmtree, workdir, ignore_errors=True)

    async def _download_segment(self, url: str, workdir: Path, timestamp: float) -> Path:
        start = max(timestamp, 0)
        await self._run(
            self.ytdlp_path,
            "--quiet",
            "--no-playlist",
            "-f",
            "best[height<=720]/best",
            "--download-sections",
            f"*{start:g}-{start + SEGMENT_SECONDS:g}",
            "-o",
            str(workdir / "segment.%(ext)s"),
            url,
        )
        segments = await asyncio.to_thread(lambda: sorted(workdir.glob("segment.*")))
        if not segments:
            raise ThumbnailError("Video segment download produced no output", url=url)
        return segments[0]

    async def _grab_frame(self, source: Path, target: Path, timestamp: float) -> None:
        await self._run(
            self.ffmpeg_path,
            "-y",
            "-loglevel",
            "error",
            "-ss",
            f"{timestamp:g}",
            "-i",
            str(source),
            "-frames:v",
            "1",
            "-q:v",
            "2",
            str(target),
        )
        if not await aiofiles.os.path.isfile(target):
            raise ThumbnailError("Frame extraction produced no output", file_path=str(source))

    async def _fetch_fallback(self, video_id: str, target: Path) -> None:
        url = self.fallback_url.format(video_id=video_id)
        client = self._http_client or httpx.AsyncClient()
        try:
            response = await client.get(url, timeout=self.timeout, follow_redirects=True)
            response.raise_for_status()
            async with aiofiles.open(target, "wb") as f:
                await f.write(response.content)
        except (httpx.HTTPError, OSError) as exc:
            logger.error("Fallback thumbnail download failed for %s: %s", video_id, exc)
            await self._discard(target)
            raise ThumbnailError(
                "Failed to extract frame and fallback thumbnail is unavailable",
                video_id=video_id,
            ) from exc
        finally:
            if self._http_client is None:
                await client.aclose()
        logger.info("Fallback thumbnail stored for video=%s", video_id)

    async def _run(self, *command: str) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ThumbnailError(f"Unable to start {command[0]}", tool=command[0]) from exc

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("%s timed out after %ss, killing", command[0], self.timeout)
            process.kill()
            await process.wait()
            raise ThumbnailError(f"{command[0]} timed out", tool=command[0]) from None

        if process.returncode != 0:
            detail = (stderr or b"").decode(errors="replace").strip()[-500:]
            raise ThumbnailError(
                f"{command[0]} exited with code {process.returncode}",
                tool=command[0],
                detail=detail,
            )

    async def _discard(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to remove partial output %s: %s", path, exc)
