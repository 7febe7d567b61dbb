"""
Shared fixtures: temporary storage roots, a throwaway SQLite database and
session-bound services built the same way the HTTP adapter builds them.
"""

import io
import struct
import zlib
from pathlib import Path

import pytest
import pytest_asyncio
from PIL import Image

from filevault.config import Settings
from filevault.database import create_engine, create_session_factory, create_tables
from filevault.factory import ServiceFactory
from filevault.schemas import UploadPayload


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        upload_root=tmp_path / "uploads",
        thumbnail_root=tmp_path / "thumbnails",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'filevault.db'}",
        max_file_size=1024 * 1024,
        allowed_mime_types=["image/*", "video/*", "application/pdf", "text/plain"],
        ffmpeg_path=str(tmp_path / "missing-ffmpeg"),
        ytdlp_path=str(tmp_path / "missing-yt-dlp"),
        extraction_timeout=5,
        secret_key="test-secret",
    )


@pytest_asyncio.fixture
async def engine(settings):
    engine = create_engine(settings.database_url)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def factory(settings) -> ServiceFactory:
    factory = ServiceFactory(settings)
    await factory.storage.ensure_roots()
    return factory


@pytest.fixture
def folder_service(factory, session):
    return factory.folder_service(session)


@pytest.fixture
def file_service(factory, session):
    return factory.file_service(session)


def make_png(size=(400, 300), color=(200, 30, 30)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def png_header(width: int, height: int) -> bytes:
    """A tiny PNG whose IHDR claims the given dimensions, with no pixel data."""

    def chunk(tag: bytes, data: bytes) -> bytes:
        crc = zlib.crc32(tag + data) & 0xFFFFFFFF
        return struct.pack(">I", len(data)) + tag + data + struct.pack(">I", crc)

    ihdr = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", ihdr) + chunk(b"IDAT", b"") + chunk(b"IEND", b"")


def make_upload(data: bytes, name: str, mime_type: str) -> UploadPayload:
    return UploadPayload(data=data, original_name=name, mime_type=mime_type, size=len(data))


@pytest.fixture
def png_upload() -> UploadPayload:
    return make_upload(make_png(), "photo.png", "image/png")


@pytest.fixture
def pdf_upload() -> UploadPayload:
    return make_upload(b"%PDF-1.4\n% test document\n", "report.pdf", "application/pdf")
