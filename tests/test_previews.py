"""
Media preview pipeline tests.

External tools are never invoked: the settings fixture points ffmpeg and
yt-dlp at paths that do not exist, and the fallback image is served by an
httpx MockTransport.
"""

import sys
from pathlib import Path

import httpx
import pytest
from PIL import Image

from filevault.errors import ThumbnailError, ValidationError
from filevault.previews import MediaPreviewPipeline, format_timestamp, parse_youtube_id

from .conftest import make_png, png_header

VIDEO_ID = "dQw4w9WgXcQ"


@pytest.mark.parametrize(
    "url, expected",
    [
        (f"https://www.youtube.com/watch?v={VIDEO_ID}", VIDEO_ID),
        (f"https://youtube.com/watch?v={VIDEO_ID}&t=42s", VIDEO_ID),
        (f"https://youtu.be/{VIDEO_ID}", VIDEO_ID),
        (f"https://www.youtube.com/embed/{VIDEO_ID}", VIDEO_ID),
        (f"https://www.youtube.com/shorts/{VIDEO_ID}", VIDEO_ID),
        ("https://www.youtube.com/watch?v=short", None),
        (f"https://vimeo.com/{VIDEO_ID}", None),
        ("not a url", None),
    ],
)
def test_parse_youtube_id(url, expected):
    assert parse_youtube_id(url) == expected


def test_format_timestamp():
    assert format_timestamp(1.0) == "1"
    assert format_timestamp(2.5) == "2.5"


def fallback_client(calls, status_code=200):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        return httpx.Response(status_code, content=b"fallback-jpeg")

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestThumbnails:
    """Image thumbnails."""

    @pytest.mark.asyncio
    async def test_thumbnail_is_bounded(self, settings, tmp_path):
        source = tmp_path / "wide.png"
        source.write_bytes(make_png(size=(800, 400)))
        pipeline = MediaPreviewPipeline(settings)

        path = await pipeline.generate_thumbnail(source, "image/png")

        with Image.open(path) as img:
            assert img.format == "JPEG"
            assert img.size == (200, 100)

    @pytest.mark.asyncio
    async def test_non_image_skipped(self, settings, tmp_path):
        source = tmp_path / "doc.pdf"
        source.write_bytes(b"%PDF")

        assert await MediaPreviewPipeline(settings).generate_thumbnail(source, "application/pdf") is None

    @pytest.mark.asyncio
    async def test_existing_thumbnail_reused(self, settings, tmp_path):
        source = tmp_path / "pic.png"
        source.write_bytes(b"garbage that Pillow cannot read")
        target = Path(settings.thumbnail_root).resolve() / "thumb_pic.png"
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(b"cached")

        path = await MediaPreviewPipeline(settings).generate_thumbnail(source, "image/png")

        assert Path(path) == target

    @pytest.mark.asyncio
    async def test_oversized_dimensions_raise_thumbnail_error(self, settings, tmp_path):
        source = tmp_path / "huge.png"
        source.write_bytes(png_header(20000, 20000))

        with pytest.raises(ThumbnailError):
            await MediaPreviewPipeline(settings).generate_thumbnail(source, "image/png")

        assert not (Path(settings.thumbnail_root).resolve() / "thumb_huge.png").exists()


class TestYouTubeFrames:
    """YouTube extraction with fallback."""

    @pytest.mark.asyncio
    async def test_invalid_url(self, settings):
        with pytest.raises(ValidationError):
            await MediaPreviewPipeline(settings).extract_youtube_frame("https://example.com/x")

    @pytest.mark.asyncio
    async def test_successful_extraction_cleans_workdir(self, settings, monkeypatch):
        calls = []
        workdirs = []
        pipeline = MediaPreviewPipeline(settings, fallback_client(calls))

        async def download(url, workdir, timestamp):
            workdirs.append(workdir)
            segment = workdir / "segment.mp4"
            segment.write_bytes(b"video")
            return segment

        async def grab_frame(source, target, timestamp):
            assert source.read_bytes() == b"video"
            target.write_bytes(b"frame-jpeg")

        monkeypatch.setattr(pipeline, "_download_segment", download)
        monkeypatch.setattr(pipeline, "_grab_frame", grab_frame)

        path = await pipeline.extract_youtube_frame(f"https://youtu.be/{VIDEO_ID}", 2.5)

        assert Path(path).name == f"youtube_{VIDEO_ID}_2.5.jpg"
        assert Path(path).read_bytes() == b"frame-jpeg"
        assert not workdirs[0].exists()
        assert calls == []

    @pytest.mark.asyncio
    async def test_fallback_when_download_fails(self, settings, monkeypatch):
        calls = []
        workdirs = []
        pipeline = MediaPreviewPipeline(settings, fallback_client(calls))

        async def failing_download(url, workdir, timestamp):
            workdirs.append(workdir)
            (workdir / "segment.part").write_bytes(b"partial")
            raise ThumbnailError("download failed")

        monkeypatch.setattr(pipeline, "_download_segment", failing_download)

        path = await pipeline.extract_youtube_frame(f"https://youtu.be/{VIDEO_ID}", 1.0)

        assert Path(path).name == f"youtube_{VIDEO_ID}_1.jpg"
        assert Path(path).read_bytes() == b"fallback-jpeg"
        assert calls == [f"https://img.youtube.com/vi/{VIDEO_ID}/hqdefault.jpg"]
        assert not workdirs[0].exists()

    @pytest.mark.asyncio
    async def test_second_request_reuses_file(self, settings, monkeypatch):
        calls = []
        pipeline = MediaPreviewPipeline(settings, fallback_client(calls))

        async def failing_download(url, workdir, timestamp):
            raise ThumbnailError("download failed")

        monkeypatch.setattr(pipeline, "_download_segment", failing_download)
        url = f"https://www.youtube.com/watch?v={VIDEO_ID}"

        first = await pipeline.extract_youtube_frame(url, 3)
        second = await pipeline.extract_youtube_frame(url, 3)

        assert first == second
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_fallback_failure_raises(self, settings, monkeypatch):
        pipeline = MediaPreviewPipeline(settings, fallback_client([], status_code=404))

        async def failing_download(url, workdir, timestamp):
            raise ThumbnailError("download failed")

        monkeypatch.setattr(pipeline, "_download_segment", failing_download)

        with pytest.raises(ThumbnailError):
            await pipeline.extract_youtube_frame(f"https://youtu.be/{VIDEO_ID}")

        assert not (Path(settings.thumbnail_root).resolve() / f"youtube_{VIDEO_ID}_1.jpg").exists()


class TestSubprocess:
    """Bounded external tool execution."""

    @pytest.mark.asyncio
    async def test_missing_tool(self, settings):
        with pytest.raises(ThumbnailError):
            await MediaPreviewPipeline(settings)._run(settings.ffmpeg_path, "-version")

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, settings):
        pipeline = MediaPreviewPipeline(settings.model_copy(update={"extraction_timeout": 0.2}))

        with pytest.raises(ThumbnailError) as exc_info:
            await pipeline._run(sys.executable, "-c", "import time; time.sleep(10)")

        assert "timed out" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, settings):
        pipeline = MediaPreviewPipeline(settings)

        with pytest.raises(ThumbnailError) as exc_info:
            await pipeline._run(sys.executable, "-c", "import sys; sys.exit(3)")

        assert "code 3" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_missing_video_source(self, settings, tmp_path):
        with pytest.raises(ThumbnailError):
            await MediaPreviewPipeline(settings).extract_video_frame(tmp_path / "gone.mp4")
