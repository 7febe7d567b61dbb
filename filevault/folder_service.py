import logging
import re

from . import models
from .access import AccessResolver, is_owner
from .errors import DataIntegrityError, FolderNotFound, ValidationError
from .repositories import FileStore, FolderShareStore, FolderStore
from .schemas import FileRead, FolderRead, FolderTree, FolderUpdate
from .storage import LocalStorage

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 255
INVALID_NAME_CHARS = re.compile(r'[<>:"/\\|?*]')


def validate_folder_name(name: str | None) -> str:
    trimmed = (name or "").strip()
    if not trimmed:
        raise ValidationError("Folder name is required", field="name")
    if len(trimmed) > MAX_NAME_LENGTH:
        raise ValidationError(
            f"Folder name must be at most {MAX_NAME_LENGTH} characters", field="name"
        )
    if INVALID_NAME_CHARS.search(trimmed):
        raise ValidationError("Folder name contains invalid characters", field="name", value=name)
    return trimmed


class FolderService:
    def __init__(
        self,
        folders: FolderStore,
        files: FileStore,
        folder_shares: FolderShareStore,
        storage: LocalStorage,
        access: AccessResolver,
    ):
        self.folders = folders
        self.files = files
        self.folder_shares = folder_shares
        self.storage = storage
        self.access = access

    async def create_folder(
        self,
        name: str,
        parent_id: str | None = None,
        owner_id: str | None = None,
    ) -> models.Folder:
        name = validate_folder_name(name)
        if parent_id:
            await self.get_folder(parent_id)
        await self._check_duplicate_name(name, parent_id)

        # the store's sibling-name constraint rejects a concurrent duplicate here
        folder = await self.folders.create(name=name, parent_id=parent_id, user_id=owner_id)

        try:
            path = await self.storage.create_folder_dir(folder.id)
        except Exception:
            logger.warning("Rolling back folder row %s without backing directory", folder.id)
            await self.folders.delete(folder.id)
            raise

        logger.info(
            "Folder created id=%s name=%s parent=%s path=%s",
            folder.id,
            folder.name,
            folder.parent_id,
            path,
        )
        return folder

    async def get_folder(self, folder_id: str, user_id: str | None = None) -> models.Folder:
        folder = await self.folders.get(folder_id)
        if folder is None:
            raise FolderNotFound(folder_id)
        if user_id and not await self.access.can_access_folder(folder, user_id):
            logger.warning("Folder access denied id=%s user=%s", folder_id, user_id)
            raise ValidationError("You do not have access to this folder")
        return folder

    async def get_folders(
        self, parent_id: str | None = None, user_id: str | None = None
    ) -> list[models.Folder]:
        if user_id:
            folders = await self.folders.list_by_parent_for_user(parent_id, user_id)
        else:
            folders = await self.folders.list_by_parent(parent_id)
        logger.debug("Folders retrieved parent=%s count=%d", parent_id, len(folders))
        return folders

    async def get_folders_with_files(
        self, parent_id: str | None = None, user_id: str | None = None
    ) -> list[FolderTree]:
        """Nested folders under ``parent_id`` with their files.

        Raises DataIntegrityError if the stored parent chain loops back on
        itself instead of recursing forever.
        """
        visited: set[str] = set()
        if parent_id:
            visited.add(parent_id)
        tree = await self._build_tree(parent_id, user_id, visited)
        logger.debug("Folder tree assembled parent=%s folders=%d", parent_id, len(visited))
        return tree

    async def _build_tree(
        self, parent_id: str | None, user_id: str | None, visited: set[str]
    ) -> list[FolderTree]:
        nodes = []
        for folder in await self.get_folders(parent_id, user_id):
            if folder.id in visited:
                raise DataIntegrityError(
                    "Folder hierarchy contains a cycle", operation="tree", table="folders"
                )
            visited.add(folder.id)

            files = []
            for db_file in await self.files.list_by_folder(folder.id):
                if await self.access.can_access_file(db_file, user_id):
                    files.append(FileRead.model_validate(db_file))

            node = FolderTree(
                **FolderRead.model_validate(folder).model_dump(),
                files=files,
                subfolders=await self._build_tree(folder.id, user_id, visited),
            )
            nodes.append(node)
        return nodes

    async def update_folder(
        self,
        folder_id: str,
        changes: FolderUpdate,
        user_id: str | None = None,
    ) -> models.Folder:
        folder = await self.get_folder(folder_id)
        if not is_owner(folder, user_id):
            raise ValidationError("You do not have permission to modify this folder")

        data = changes.model_dump(exclude_unset=True)
        parent_id = data.get("parent_id", folder.parent_id)

        if "parent_id" in data and data["parent_id"] != folder.parent_id:
            await self._check_move(folder, data["parent_id"])

        if data.get("name") is not None:
            data["name"] = validate_folder_name(data["name"])
        else:
            data.pop("name", None)

        if "name" in data or "parent_id" in data:
            await self._check_duplicate_name(
                data.get("name", folder.name), parent_id, exclude_id=folder_id
            )

        if data.get("is_public") is None:
            data.pop("is_public", None)

        if not data:
            return folder

        updated = await self.folders.update(folder_id, **data)
        logger.info("Folder updated id=%s fields=%s", folder_id, sorted(data))
        return updated

    async def delete_folder(self, folder_id: str, user_id: str | None = None) -> bool:
        folder = await self.get_folder(folder_id)
        if not is_owner(folder, user_id):
            raise ValidationError("You do not have permission to delete this folder")

        if await self.folders.count_children(folder_id):
            raise ValidationError("Cannot delete folder with subfolders", field="hasChildren")
        if await self.files.count_in_folder(folder_id):
            raise ValidationError("Cannot delete folder with files", field="hasFiles")

        await self.folder_shares.delete_by_folder(folder_id)
        deleted = await self.folders.delete(folder_id)
        if deleted:
            await self.storage.remove_folder_dir(folder_id)

        logger.info("Folder deleted id=%s path=%s", folder_id, self.storage.folder_path(folder_id))
        return deleted

    # ---------- Sharing ----------

    async def share_folder_with_users(
        self,
        folder_id: str,
        owner_id: str,
        target_user_ids: list[str],
        level: models.AccessLevel = models.AccessLevel.WRITE,
    ) -> list[models.FolderShare]:
        folder = await self.get_folder(folder_id)
        self._require_owner(folder, owner_id, "share")
        if not target_user_ids:
            raise ValidationError("At least one user must be selected", field="userIds")

        shares = await self.folder_shares.create_many(folder_id, target_user_ids, level)
        logger.info(
            "Folder shared id=%s owner=%s count=%d level=%s",
            folder_id,
            owner_id,
            len(shares),
            level.value,
        )
        return shares

    async def unshare_folder(
        self, folder_id: str, owner_id: str, target_user_id: str | None
    ) -> bool:
        folder = await self.get_folder(folder_id)
        self._require_owner(folder, owner_id, "unshare")
        removed = await self.folder_shares.delete_by_folder_and_user(folder_id, target_user_id)
        logger.info("Folder share removed id=%s target=%s removed=%s", folder_id, target_user_id, removed)
        return removed

    async def get_folder_shares(self, folder_id: str, owner_id: str) -> list[models.FolderShare]:
        folder = await self.get_folder(folder_id)
        self._require_owner(folder, owner_id, "view shares of")
        return await self.folder_shares.list_by_folder(folder_id)

    async def get_folders_shared_with_user(self, user_id: str) -> list[models.Folder]:
        folders = []
        seen = set()
        for share in await self.folder_shares.list_by_user(user_id):
            if share.folder_id in seen:
                continue
            seen.add(share.folder_id)
            folder = await self.folders.get(share.folder_id)
            if folder is not None:
                folders.append(folder)
        logger.debug("Folders shared with user=%s count=%d", user_id, len(folders))
        return folders

    # ---------- Helpers ----------

    def _require_owner(self, folder: models.Folder, owner_id: str, action: str) -> None:
        if folder.user_id != owner_id:
            raise ValidationError(f"You do not have permission to {action} this folder")

    async def _check_duplicate_name(
        self, name: str, parent_id: str | None, exclude_id: str | None = None
    ) -> None:
        wanted = name.lower()
        for sibling in await self.folders.list_by_parent(parent_id):
            if sibling.id != exclude_id and sibling.name.lower() == wanted:
                raise ValidationError(
                    f'Folder with name "{name}" already exists in this location',
                    field="name",
                    value=name,
                )

    async def _check_move(self, folder: models.Folder, new_parent_id: str | None) -> None:
        if new_parent_id is None:
            return
        if new_parent_id == folder.id:
            raise ValidationError("A folder cannot be its own parent", field="parentId")

        seen: set[str] = set()
        current = await self.get_folder(new_parent_id)
        while current is not None:
            if current.id == folder.id:
                raise ValidationError(
                    "Cannot move a folder into one of its subfolders", field="parentId"
                )
            if current.id in seen:
                raise DataIntegrityError(
                    "Folder hierarchy contains a cycle", operation="move", table="folders"
                )
            seen.add(current.id)
            current = await self.folders.get(current.parent_id) if current.parent_id else None
