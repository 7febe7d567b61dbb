import logging
import os
import re
from pathlib import Path

from . import models
from .access import AccessResolver, is_owner
from .config import Settings
from .errors import FileNotFound, FileVaultError, FolderNotFound, ThumbnailError, ValidationError
from .previews import MediaPreviewPipeline, is_video
from .repositories import FileShareStore, FileStore, FolderStore, ReferenceCleaner
from .schemas import DownloadInfo, UploadPayload
from .storage import LocalStorage

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 255


def mime_allowed(mime_type: str | None, allowed: list[str]) -> bool:
    """Match against an allow-list whose entries may end in ``/*``."""
    if not mime_type:
        return False
    mime_type = mime_type.lower()
    for entry in allowed:
        entry = entry.strip().lower()
        if not entry:
            continue
        if entry.endswith("/*"):
            if mime_type.startswith(entry[:-1]):
                return True
        elif entry == mime_type:
            return True
    return False


class FileService:
    def __init__(
        self,
        settings: Settings,
        files: FileStore,
        folders: FolderStore,
        file_shares: FileShareStore,
        references: ReferenceCleaner,
        storage: LocalStorage,
        previews: MediaPreviewPipeline,
        access: AccessResolver,
    ):
        self.max_file_size = settings.max_file_size
        self.allowed_mime_types = list(settings.allowed_mime_types)
        self.enable_thumbnails = settings.enable_thumbnails
        self.files = files
        self.folders = folders
        self.file_shares = file_shares
        self.references = references
        self.storage = storage
        self.previews = previews
        self.access = access

    # ---------- Upload / download ----------

    async def upload(
        self,
        upload: UploadPayload,
        owner_id: str | None,
        folder_id: str | None = None,
    ) -> models.File:
        size = len(upload.data)
        self._validate_upload(upload, size)

        if folder_id and await self.folders.get(folder_id) is None:
            raise FolderNotFound(folder_id)

        file_id = models.generate_id()
        filename = f"{file_id}{Path(upload.original_name).suffix.lower()}"
        path = self.storage.file_path(filename, folder_id)

        await self.storage.write_file(path, upload.data)

        thumbnail_path = None
        if self.enable_thumbnails:
            try:
                thumbnail_path = await self.previews.generate_thumbnail(path, upload.mime_type)
            except ThumbnailError:
                await self.storage.remove_file(path)
                raise

        try:
            db_file = await self.files.create(
                id=file_id,
                filename=filename,
                original_name=upload.original_name,
                file_path=str(path),
                thumbnail_path=thumbnail_path,
                file_size=size,
                mime_type=upload.mime_type,
                folder_id=folder_id,
                user_id=owner_id,
            )
        except FileVaultError:
            await self.storage.remove_file(path)
            await self.storage.remove_file(thumbnail_path)
            raise

        logger.info(
            "File uploaded id=%s name=%s size=%d owner=%s",
            db_file.id,
            upload.original_name,
            size,
            owner_id,
        )
        return db_file

    async def download(self, file_id: str, user_id: str | None = None) -> DownloadInfo:
        db_file = await self.get_file(file_id)
        logger.debug("File download requested id=%s user=%s", file_id, user_id)

        if not await self.access.can_access_file(db_file, user_id):
            logger.warning("File download access denied id=%s user=%s", file_id, user_id)
            raise ValidationError("You do not have access to this file")

        if not await self.storage.exists(db_file.file_path):
            logger.warning("File metadata without disk object id=%s path=%s", file_id, db_file.file_path)
            raise FileNotFound(file_id)

        return DownloadInfo(
            path=db_file.file_path,
            name=db_file.original_name,
            mime_type=db_file.mime_type,
        )

    # ---------- Queries ----------

    async def get_file(self, file_id: str) -> models.File:
        db_file = await self.files.get(file_id)
        if db_file is None:
            raise FileNotFound(file_id)
        return db_file

    async def get_files(
        self, folder_id: str | None = None, user_id: str | None = None
    ) -> list[models.File]:
        files = await self._accessible(await self.files.list_by_folder(folder_id), user_id)
        logger.debug("Files retrieved folder=%s count=%d", folder_id, len(files))
        return files

    async def search_files(self, query: str, user_id: str | None = None) -> list[models.File]:
        if not query or not query.strip():
            return []
        files = await self._accessible(await self.files.search(query), user_id)
        logger.debug("Files searched query=%r count=%d", query, len(files))
        return files

    async def get_files_shared_with_user(self, user_id: str) -> list[models.File]:
        files = []
        seen = set()
        for share in await self.file_shares.list_by_user(user_id):
            if share.file_id in seen:
                continue
            seen.add(share.file_id)
            db_file = await self.files.get(share.file_id)
            if db_file is not None:
                files.append(db_file)
        logger.debug("Files shared with user=%s count=%d", user_id, len(files))
        return files

    # ---------- Mutations ----------

    async def delete_file(self, file_id: str, user_id: str | None = None) -> bool:
        db_file = await self.get_file(file_id)
        if not is_owner(db_file, user_id):
            raise ValidationError("You do not have permission to delete this file")

        await self.storage.remove_file(db_file.file_path)
        await self.storage.remove_file(db_file.thumbnail_path)

        try:
            await self.file_shares.delete_by_file(file_id)
            await self.references.remove_file_references(file_id)
        except FileVaultError as exc:
            logger.warning("Reference cleanup failed for file %s: %s", file_id, exc)

        deleted = await self.files.delete(file_id)
        logger.info("File deleted id=%s user=%s", file_id, user_id)
        return deleted

    async def rename_file(
        self, file_id: str, new_name: str, user_id: str | None = None
    ) -> models.File:
        db_file = await self.get_file(file_id)
        if not is_owner(db_file, user_id):
            raise ValidationError("You do not have permission to rename this file")

        trimmed = (new_name or "").strip()
        if not trimmed:
            raise ValidationError("File name is required", field="originalName")
        if len(trimmed) > MAX_NAME_LENGTH:
            raise ValidationError("File name is too long", field="originalName")

        original_ext = os.path.splitext(db_file.original_name or db_file.filename or "")[1]
        final_name = trimmed
        if not os.path.splitext(trimmed)[1] and original_ext:
            final_name = f"{trimmed}{original_ext}"

        sanitized = re.sub(r"[\r\n]+", "", final_name).strip()
        if not sanitized:
            raise ValidationError("File name is invalid", field="originalName")

        updated = await self.files.update(file_id, original_name=sanitized)
        logger.info("File renamed id=%s name=%s user=%s", file_id, sanitized, user_id)
        return updated

    # ---------- Sharing ----------

    async def share_file(
        self,
        file_id: str,
        owner_id: str,
        target_user_id: str | None = None,
        level: models.AccessLevel = models.AccessLevel.READ,
    ) -> models.FileShare:
        """Grant one user access; no target means a public grant."""
        db_file = await self.get_file(file_id)
        self._require_owner(db_file, owner_id, "share")
        share = (await self.file_shares.create_many(file_id, [target_user_id], level))[0]
        logger.info("File shared id=%s owner=%s share=%s", file_id, owner_id, share.id)
        return share

    async def share_file_with_users(
        self,
        file_id: str,
        owner_id: str,
        target_user_ids: list[str],
        level: models.AccessLevel = models.AccessLevel.READ,
    ) -> list[models.FileShare]:
        db_file = await self.get_file(file_id)
        self._require_owner(db_file, owner_id, "share")
        if not target_user_ids:
            raise ValidationError("At least one user must be selected", field="userIds")

        shares = await self.file_shares.create_many(file_id, target_user_ids, level)
        logger.info("File shared with users id=%s owner=%s count=%d", file_id, owner_id, len(shares))
        return shares

    async def unshare_file(self, file_id: str, owner_id: str, target_user_id: str | None) -> bool:
        db_file = await self.get_file(file_id)
        self._require_owner(db_file, owner_id, "unshare")
        removed = await self.file_shares.delete_by_file_and_user(file_id, target_user_id)
        logger.info("File share removed id=%s target=%s removed=%s", file_id, target_user_id, removed)
        return removed

    async def get_file_shares(self, file_id: str, owner_id: str) -> list[models.FileShare]:
        db_file = await self.get_file(file_id)
        self._require_owner(db_file, owner_id, "view shares of")
        return await self.file_shares.list_by_file(file_id)

    # ---------- Previews ----------

    async def extract_video_frame(
        self, file_id: str, timestamp: float = 1.0, user_id: str | None = None
    ) -> str:
        info = await self.download(file_id, user_id)
        if not is_video(info.mime_type):
            raise ValidationError("File is not a video", field="fileId", value=file_id)
        return await self.previews.extract_video_frame(info.path, timestamp)

    async def extract_youtube_frame(self, url: str, timestamp: float = 1.0) -> str:
        return await self.previews.extract_youtube_frame(url, timestamp)

    # ---------- Helpers ----------

    def _validate_upload(self, upload: UploadPayload, size: int) -> None:
        if max(size, upload.size) > self.max_file_size:
            max_mb = round(self.max_file_size / (1024 * 1024))
            raise ValidationError(
                f"File size exceeds maximum allowed size of {max_mb} MB",
                field="fileSize",
                value=size,
            )
        if not mime_allowed(upload.mime_type, self.allowed_mime_types):
            raise ValidationError(
                f"File type {upload.mime_type} is not allowed",
                field="mimeType",
                value=upload.mime_type,
            )

    def _require_owner(self, db_file: models.File, owner_id: str, action: str) -> None:
        if db_file.user_id != owner_id:
            raise ValidationError(f"You do not have permission to {action} this file")

    async def _accessible(
        self, files: list[models.File], user_id: str | None
    ) -> list[models.File]:
        return [f for f in files if await self.access.can_access_file(f, user_id)]
