"""Physical storage adapter.

Mirrors folder identifiers as directories under the upload root:

    uploads/
    ├── <fileId>.<ext>           # files without a folder
    └── <folderId>/
        └── <fileId>.<ext>

Thumbnails and extracted frames live flat under the thumbnail root.
The metadata store is canonical; everything here is a best-effort mirror.
"""

import logging
from pathlib import Path

import aiofiles
import aiofiles.os

from .config import Settings
from .errors import ConfigurationError, FileNotFound, UploadError

logger = logging.getLogger(__name__)


class LocalStorage:
    def __init__(self, settings: Settings):
        self.upload_root = Path(settings.upload_root).resolve()
        self.thumbnail_root = Path(settings.thumbnail_root).resolve()

    async def ensure_roots(self) -> None:
        for directory in (self.upload_root, self.thumbnail_root):
            try:
                await aiofiles.os.makedirs(directory, exist_ok=True)
            except OSError as exc:
                logger.error("Failed to create storage root %s: %s", directory, exc)
                raise ConfigurationError(
                    "Failed to create upload directories", config_key=str(directory)
                ) from exc
        logger.debug(
            "Storage roots ensured upload=%s thumbnails=%s",
            self.upload_root,
            self.thumbnail_root,
        )

    # ---------- Paths ----------

    def folder_path(self, folder_id: str) -> Path:
        return self.upload_root / folder_id

    def file_path(self, filename: str, folder_id: str | None = None) -> Path:
        if folder_id:
            return self.folder_path(folder_id) / filename
        return self.upload_root / filename

    # ---------- Directories ----------

    async def create_folder_dir(self, folder_id: str) -> Path:
        path = self.folder_path(folder_id)
        try:
            await aiofiles.os.makedirs(path, exist_ok=True)
        except OSError as exc:
            logger.error("Failed to create physical directory %s: %s", path, exc)
            raise ConfigurationError(
                "Failed to create physical directory", config_key=str(path)
            ) from exc
        logger.debug("Physical directory created %s", path)
        return path

    async def remove_folder_dir(self, folder_id: str) -> bool:
        path = self.folder_path(folder_id)
        try:
            await aiofiles.os.rmdir(path)
        except OSError as exc:
            logger.warning("Failed to remove physical directory %s: %s", path, exc)
            return False
        logger.debug("Physical directory removed %s", path)
        return True

    # ---------- Files ----------

    async def write_file(self, path: Path, data: bytes) -> None:
        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(data)
        except OSError as exc:
            logger.error("Failed to write %s: %s", path, exc)
            raise UploadError("Failed to save uploaded file", file_path=str(path)) from exc

    async def remove_file(self, path: str | Path | None) -> bool:
        """Delete a stored object; never raises."""
        if not path:
            return False
        try:
            await aiofiles.os.remove(path)
        except OSError as exc:
            logger.warning("Failed to delete physical file %s: %s", path, exc)
            return False
        return True

    async def exists(self, path: str | Path | None) -> bool:
        if not path:
            return False
        return await aiofiles.os.path.isfile(path)

    async def thumbnail_file(self, name: str) -> Path:
        """Resolve a bare thumbnail name to an existing file under the thumbnail root."""
        path = self.thumbnail_root / name
        if Path(name).name != name or not await self.exists(path):
            raise FileNotFound(name, message="Thumbnail not found")
        return path
