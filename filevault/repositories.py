"""Metadata store: store interfaces and their SQLAlchemy implementations.

Services depend on the ``*Store`` protocols and receive concrete
repositories at construction time. Every write commits on its own; a single
row is the unit of consistency.
"""

import logging
from collections.abc import Iterable
from typing import Any, Protocol

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from . import models
from .errors import DatabaseError, ValidationError
from .models import AccessLevel, AccessType, utcnow

logger = logging.getLogger(__name__)

PUBLIC_FOLDER_NAME = "Public"


# ---------- Interfaces ----------


class FileStore(Protocol):
    async def create(self, **data: Any) -> models.File: ...
    async def get(self, file_id: str) -> models.File | None: ...
    async def list_by_folder(self, folder_id: str | None) -> list[models.File]: ...
    async def count_in_folder(self, folder_id: str) -> int: ...
    async def search(self, query: str) -> list[models.File]: ...
    async def update(self, file_id: str, **data: Any) -> models.File: ...
    async def delete(self, file_id: str) -> bool: ...


class FolderStore(Protocol):
    async def create(self, **data: Any) -> models.Folder: ...
    async def get(self, folder_id: str) -> models.Folder | None: ...
    async def list_by_parent(self, parent_id: str | None) -> list[models.Folder]: ...
    async def list_by_parent_for_user(
        self, parent_id: str | None, user_id: str
    ) -> list[models.Folder]: ...
    async def count_children(self, folder_id: str) -> int: ...
    async def update(self, folder_id: str, **data: Any) -> models.Folder: ...
    async def delete(self, folder_id: str) -> bool: ...


class FileShareStore(Protocol):
    async def create_many(
        self, file_id: str, user_ids: Iterable[str | None], level: AccessLevel
    ) -> list[models.FileShare]: ...
    async def list_by_file(self, file_id: str) -> list[models.FileShare]: ...
    async def list_by_user(self, user_id: str) -> list[models.FileShare]: ...
    async def delete_by_file(self, file_id: str) -> int: ...
    async def delete_by_file_and_user(self, file_id: str, user_id: str | None) -> bool: ...
    async def check_access(self, file_id: str, user_id: str) -> bool: ...


class FolderShareStore(Protocol):
    async def create_many(
        self, folder_id: str, user_ids: Iterable[str | None], level: AccessLevel
    ) -> list[models.FolderShare]: ...
    async def list_by_folder(self, folder_id: str) -> list[models.FolderShare]: ...
    async def list_by_user(self, user_id: str) -> list[models.FolderShare]: ...
    async def delete_by_folder(self, folder_id: str) -> int: ...
    async def delete_by_folder_and_user(self, folder_id: str, user_id: str | None) -> bool: ...
    async def check_access(self, folder_id: str, user_id: str) -> bool: ...


class ReferenceCleaner(Protocol):
    """Removes rows in other subsystems that point at a file id."""

    async def remove_file_references(self, file_id: str) -> int: ...


# ---------- Implementations ----------


class _Repository:
    table: str = ""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _fail(self, message: str, operation: str) -> DatabaseError:
        logger.exception("%s (table=%s)", message, self.table)
        await self.session.rollback()
        return DatabaseError(message, operation=operation, table=self.table)


class FileRepository(_Repository):
    table = "files"

    async def create(self, **data: Any) -> models.File:
        db_file = models.File(**data)
        self.session.add(db_file)
        try:
            await self.session.commit()
        except SQLAlchemyError as exc:
            raise await self._fail("Failed to create file", "create") from exc
        await self.session.refresh(db_file)
        logger.debug("File row created id=%s", db_file.id)
        return db_file

    async def get(self, file_id: str) -> models.File | None:
        try:
            return await self.session.get(models.File, file_id)
        except SQLAlchemyError as exc:
            raise await self._fail("Failed to find file by id", "select") from exc

    async def list_by_folder(self, folder_id: str | None) -> list[models.File]:
        stmt = select(models.File)
        if folder_id is None:
            stmt = stmt.where(models.File.folder_id.is_(None))
        else:
            stmt = stmt.where(models.File.folder_id == folder_id)
        stmt = stmt.order_by(models.File.created_at.desc())
        try:
            return list((await self.session.scalars(stmt)).all())
        except SQLAlchemyError as exc:
            raise await self._fail("Failed to list files by folder", "select") from exc

    async def count_in_folder(self, folder_id: str) -> int:
        stmt = select(func.count(models.File.id)).where(models.File.folder_id == folder_id)
        try:
            return (await self.session.scalar(stmt)) or 0
        except SQLAlchemyError as exc:
            raise await self._fail("Failed to count files in folder", "select") from exc

    async def search(self, query: str) -> list[models.File]:
        term = f"%{query.strip().lower()}%"
        stmt = (
            select(models.File)
            .where(func.lower(models.File.original_name).like(term))
            .order_by(models.File.created_at.desc())
        )
        try:
            return list((await self.session.scalars(stmt)).all())
        except SQLAlchemyError as exc:
            raise await self._fail("Failed to search files", "select") from exc

    async def update(self, file_id: str, **data: Any) -> models.File:
        data["updated_at"] = utcnow()
        try:
            await self.session.execute(
                update(models.File).where(models.File.id == file_id).values(**data)
            )
            await self.session.commit()
            db_file = await self.session.get(models.File, file_id, populate_existing=True)
        except SQLAlchemyError as exc:
            raise await self._fail("Failed to update file", "update") from exc
        if db_file is None:
            raise DatabaseError("File not found after update", operation="update", table=self.table)
        return db_file

    async def delete(self, file_id: str) -> bool:
        try:
            result = await self.session.execute(
                delete(models.File).where(models.File.id == file_id)
            )
            await self.session.commit()
        except SQLAlchemyError as exc:
            raise await self._fail("Failed to delete file", "delete") from exc
        return result.rowcount > 0


class FolderRepository(_Repository):
    table = "folders"

    async def create(self, **data: Any) -> models.Folder:
        parent_id = data.get("parent_id")
        if parent_id and "is_public" not in data:
            parent = await self.get(parent_id)
            data["is_public"] = bool(parent and parent.is_public)

        folder = models.Folder(
            **data,
            name_key=data["name"].lower(),
            parent_key=parent_id or "",
        )
        self.session.add(folder)
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raise ValidationError(
                f'Folder with name "{data["name"]}" already exists in this location',
                field="name",
                value=data["name"],
            ) from exc
        except SQLAlchemyError as exc:
            raise await self._fail("Failed to create folder", "create") from exc
        await self.session.refresh(folder)
        logger.debug("Folder row created id=%s", folder.id)
        return folder

    async def get(self, folder_id: str) -> models.Folder | None:
        try:
            return await self.session.get(models.Folder, folder_id)
        except SQLAlchemyError as exc:
            raise await self._fail("Failed to find folder by id", "select") from exc

    def _ordered(self, stmt, parent_id: str | None):
        if parent_id is None:
            # 'Public' always sits at the top of the root listing
            return stmt.order_by(
                case((models.Folder.name == PUBLIC_FOLDER_NAME, 0), else_=1),
                models.Folder.name,
            )
        return stmt.order_by(models.Folder.name)

    def _parent_filter(self, stmt, parent_id: str | None):
        if parent_id is None:
            return stmt.where(
                or_(models.Folder.parent_id.is_(None), models.Folder.parent_id == "")
            )
        return stmt.where(models.Folder.parent_id == parent_id)

    async def list_by_parent(self, parent_id: str | None) -> list[models.Folder]:
        stmt = self._parent_filter(select(models.Folder), parent_id)
        try:
            return list((await self.session.scalars(self._ordered(stmt, parent_id))).all())
        except SQLAlchemyError as exc:
            raise await self._fail("Failed to find folders by parent", "select") from exc

    async def list_by_parent_for_user(
        self, parent_id: str | None, user_id: str
    ) -> list[models.Folder]:
        shared = select(models.FolderShare.folder_id).where(
            models.FolderShare.shared_with_user_id == user_id
        )
        stmt = self._parent_filter(select(models.Folder), parent_id).where(
            or_(
                models.Folder.user_id == user_id,
                models.Folder.id.in_(shared),
                models.Folder.is_public.is_(True),
            )
        )
        try:
            return list((await self.session.scalars(self._ordered(stmt, parent_id))).all())
        except SQLAlchemyError as exc:
            raise await self._fail(
                "Failed to find folders by parent for user", "select"
            ) from exc

    async def count_children(self, folder_id: str) -> int:
        stmt = select(func.count(models.Folder.id)).where(models.Folder.parent_id == folder_id)
        try:
            return (await self.session.scalar(stmt)) or 0
        except SQLAlchemyError as exc:
            raise await self._fail("Failed to count child folders", "select") from exc

    async def update(self, folder_id: str, **data: Any) -> models.Folder:
        if "name" in data:
            data["name_key"] = data["name"].lower()
        if "parent_id" in data:
            data["parent_key"] = data["parent_id"] or ""
        data["updated_at"] = utcnow()
        try:
            await self.session.execute(
                update(models.Folder).where(models.Folder.id == folder_id).values(**data)
            )
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raise ValidationError(
                "Folder with this name already exists in this location",
                field="name",
                value=data.get("name"),
            ) from exc
        except SQLAlchemyError as exc:
            raise await self._fail("Failed to update folder", "update") from exc
        folder = await self.session.get(models.Folder, folder_id, populate_existing=True)
        if folder is None:
            raise DatabaseError("Folder not found after update", operation="update", table=self.table)
        return folder

    async def delete(self, folder_id: str) -> bool:
        try:
            result = await self.session.execute(
                delete(models.Folder).where(models.Folder.id == folder_id)
            )
            await self.session.commit()
        except SQLAlchemyError as exc:
            raise await self._fail("Failed to delete folder", "delete") from exc
        return result.rowcount > 0


class FileShareRepository(_Repository):
    table = "file_shares"

    async def create_many(
        self,
        file_id: str,
        user_ids: Iterable[str | None],
        level: AccessLevel = AccessLevel.READ,
    ) -> list[models.FileShare]:
        shares = []
        has_public = False
        try:
            for user_id in dict.fromkeys(user_ids):
                has_public = has_public or user_id is None
                existing = await self._find(file_id, user_id)
                if existing is not None:
                    existing.access_level = level
                    shares.append(existing)
                    continue
                share = models.FileShare(
                    file_id=file_id, shared_with_user_id=user_id, access_level=level
                )
                self.session.add(share)
                shares.append(share)

            access_type = AccessType.PUBLIC if has_public else AccessType.SHARED
            await self.session.execute(
                update(models.File)
                .where(models.File.id == file_id)
                .values(access_type=access_type)
            )
            await self.session.commit()
        except SQLAlchemyError as exc:
            raise await self._fail("Failed to create file shares", "create") from exc
        logger.debug("File shares created file=%s count=%d", file_id, len(shares))
        return shares

    async def _find(self, file_id: str, user_id: str | None) -> models.FileShare | None:
        stmt = select(models.FileShare).where(models.FileShare.file_id == file_id)
        if user_id is None:
            stmt = stmt.where(models.FileShare.shared_with_user_id.is_(None))
        else:
            stmt = stmt.where(models.FileShare.shared_with_user_id == user_id)
        return await self.session.scalar(stmt.limit(1))

    async def list_by_file(self, file_id: str) -> list[models.FileShare]:
        stmt = select(models.FileShare).where(models.FileShare.file_id == file_id)
        try:
            return list((await self.session.scalars(stmt)).all())
        except SQLAlchemyError as exc:
            raise await self._fail("Failed to find file shares by file", "select") from exc

    async def list_by_user(self, user_id: str) -> list[models.FileShare]:
        stmt = (
            select(models.FileShare)
            .where(models.FileShare.shared_with_user_id == user_id)
            .order_by(models.FileShare.created_at)
        )
        try:
            return list((await self.session.scalars(stmt)).all())
        except SQLAlchemyError as exc:
            raise await self._fail("Failed to find file shares by user", "select") from exc

    async def delete_by_file(self, file_id: str) -> int:
        try:
            result = await self.session.execute(
                delete(models.FileShare).where(models.FileShare.file_id == file_id)
            )
            await self.session.execute(
                update(models.File)
                .where(models.File.id == file_id)
                .values(access_type=AccessType.PRIVATE)
            )
            await self.session.commit()
        except SQLAlchemyError as exc:
            raise await self._fail("Failed to delete file shares by file", "delete") from exc
        return result.rowcount

    async def delete_by_file_and_user(self, file_id: str, user_id: str | None) -> bool:
        stmt = delete(models.FileShare).where(models.FileShare.file_id == file_id)
        if user_id is None:
            stmt = stmt.where(models.FileShare.shared_with_user_id.is_(None))
        else:
            stmt = stmt.where(models.FileShare.shared_with_user_id == user_id)
        try:
            result = await self.session.execute(stmt)
            remaining = await self.session.scalar(
                select(func.count(models.FileShare.id)).where(
                    models.FileShare.file_id == file_id
                )
            )
            if not remaining:
                await self.session.execute(
                    update(models.File)
                    .where(models.File.id == file_id)
                    .values(access_type=AccessType.PRIVATE)
                )
            await self.session.commit()
        except SQLAlchemyError as exc:
            raise await self._fail(
                "Failed to delete file share by file and user", "delete"
            ) from exc
        return result.rowcount > 0

    async def check_access(self, file_id: str, user_id: str) -> bool:
        stmt = (
            select(models.FileShare.id)
            .where(models.FileShare.file_id == file_id)
            .where(
                or_(
                    models.FileShare.shared_with_user_id == user_id,
                    models.FileShare.shared_with_user_id.is_(None),
                )
            )
            .limit(1)
        )
        try:
            return (await self.session.scalar(stmt)) is not None
        except SQLAlchemyError as exc:
            raise await self._fail("Failed to check file access", "select") from exc


class FolderShareRepository(_Repository):
    table = "folder_shares"

    async def create_many(
        self,
        folder_id: str,
        user_ids: Iterable[str | None],
        level: AccessLevel = AccessLevel.WRITE,
    ) -> list[models.FolderShare]:
        shares = []
        has_public = False
        try:
            for user_id in dict.fromkeys(user_ids):
                has_public = has_public or user_id is None
                existing = await self._find(folder_id, user_id)
                if existing is not None:
                    existing.access_level = level
                    shares.append(existing)
                    continue
                share = models.FolderShare(
                    folder_id=folder_id, shared_with_user_id=user_id, access_level=level
                )
                self.session.add(share)
                shares.append(share)

            access_type = AccessType.PUBLIC if has_public else AccessType.SHARED
            await self.session.execute(
                update(models.Folder)
                .where(models.Folder.id == folder_id)
                .values(access_type=access_type)
            )
            await self.session.commit()
        except SQLAlchemyError as exc:
            raise await self._fail("Failed to create folder shares", "create") from exc
        logger.debug("Folder shares created folder=%s count=%d", folder_id, len(shares))
        return shares

    async def _find(self, folder_id: str, user_id: str | None) -> models.FolderShare | None:
        stmt = select(models.FolderShare).where(models.FolderShare.folder_id == folder_id)
        if user_id is None:
            stmt = stmt.where(models.FolderShare.shared_with_user_id.is_(None))
        else:
            stmt = stmt.where(models.FolderShare.shared_with_user_id == user_id)
        return await self.session.scalar(stmt.limit(1))

    async def list_by_folder(self, folder_id: str) -> list[models.FolderShare]:
        stmt = select(models.FolderShare).where(models.FolderShare.folder_id == folder_id)
        try:
            return list((await self.session.scalars(stmt)).all())
        except SQLAlchemyError as exc:
            raise await self._fail("Failed to find folder shares by folder", "select") from exc

    async def list_by_user(self, user_id: str) -> list[models.FolderShare]:
        stmt = (
            select(models.FolderShare)
            .where(models.FolderShare.shared_with_user_id == user_id)
            .order_by(models.FolderShare.created_at)
        )
        try:
            return list((await self.session.scalars(stmt)).all())
        except SQLAlchemyError as exc:
            raise await self._fail("Failed to find folder shares by user", "select") from exc

    async def delete_by_folder(self, folder_id: str) -> int:
        try:
            result = await self.session.execute(
                delete(models.FolderShare).where(models.FolderShare.folder_id == folder_id)
            )
            await self.session.commit()
        except SQLAlchemyError as exc:
            raise await self._fail("Failed to delete folder shares", "delete") from exc
        return result.rowcount

    async def delete_by_folder_and_user(self, folder_id: str, user_id: str | None) -> bool:
        stmt = delete(models.FolderShare).where(models.FolderShare.folder_id == folder_id)
        if user_id is None:
            stmt = stmt.where(models.FolderShare.shared_with_user_id.is_(None))
        else:
            stmt = stmt.where(models.FolderShare.shared_with_user_id == user_id)
        try:
            result = await self.session.execute(stmt)
            remaining = await self.session.scalar(
                select(func.count(models.FolderShare.id)).where(
                    models.FolderShare.folder_id == folder_id
                )
            )
            if not remaining:
                await self.session.execute(
                    update(models.Folder)
                    .where(models.Folder.id == folder_id)
                    .values(access_type=AccessType.PRIVATE)
                )
            await self.session.commit()
        except SQLAlchemyError as exc:
            raise await self._fail(
                "Failed to delete folder share by folder and user", "delete"
            ) from exc
        return result.rowcount > 0

    async def check_access(self, folder_id: str, user_id: str) -> bool:
        stmt = (
            select(models.FolderShare.id)
            .where(models.FolderShare.folder_id == folder_id)
            .where(
                or_(
                    models.FolderShare.shared_with_user_id == user_id,
                    models.FolderShare.shared_with_user_id.is_(None),
                )
            )
            .limit(1)
        )
        try:
            return (await self.session.scalar(stmt)) is not None
        except SQLAlchemyError as exc:
            raise await self._fail("Failed to check folder access", "select") from exc


class AttachmentReferenceCleaner(_Repository):
    table = "post_attachments"

    async def remove_file_references(self, file_id: str) -> int:
        try:
            result = await self.session.execute(
                delete(models.PostAttachment).where(models.PostAttachment.file_id == file_id)
            )
            await self.session.commit()
        except SQLAlchemyError as exc:
            raise await self._fail("Failed to remove attachment references", "delete") from exc
        return result.rowcount
