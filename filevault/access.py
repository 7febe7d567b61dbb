"""Read-access decisions for files and folders.

The checks run cheapest first and short-circuit:

1. anonymous requester -> allowed (public download path)
2. requester is the recorded owner -> allowed
3. resource sits in a folder flagged ``is_public`` -> allowed
4. share grant for the requester, or a public grant -> allowed
5. no share backend configured -> denied
"""

import enum
import logging

from . import models
from .repositories import FileShareStore, FolderShareStore, FolderStore

logger = logging.getLogger(__name__)


class ShareLookup(enum.Enum):
    """Whether share grants can be consulted; fixed when the resolver is built."""

    STORE = "store"
    DISABLED = "disabled"


class AccessResolver:
    def __init__(
        self,
        folders: FolderStore,
        file_shares: FileShareStore | None = None,
        folder_shares: FolderShareStore | None = None,
    ):
        self.folders = folders
        self.file_shares = file_shares
        self.folder_shares = folder_shares
        self.file_lookup = ShareLookup.STORE if file_shares is not None else ShareLookup.DISABLED
        self.folder_lookup = (
            ShareLookup.STORE if folder_shares is not None else ShareLookup.DISABLED
        )

    async def can_access_file(self, file: models.File, user_id: str | None) -> bool:
        if not user_id:
            logger.debug("File access granted: public download file=%s", file.id)
            return True

        if file.user_id and file.user_id == user_id:
            logger.debug("File access granted: owner file=%s user=%s", file.id, user_id)
            return True

        if file.folder_id and await self._in_public_folder(file.folder_id):
            logger.debug(
                "File access granted: public folder file=%s folder=%s",
                file.id,
                file.folder_id,
            )
            return True

        if self.file_lookup is ShareLookup.DISABLED:
            logger.debug("File access denied: no share backend file=%s user=%s", file.id, user_id)
            return False

        allowed = await self.file_shares.check_access(file.id, user_id)
        logger.debug("File access via shares file=%s user=%s allowed=%s", file.id, user_id, allowed)
        return allowed

    async def can_access_folder(self, folder: models.Folder, user_id: str | None) -> bool:
        if not user_id:
            return True
        if folder.user_id and folder.user_id == user_id:
            return True
        if folder.is_public:
            return True
        if self.folder_lookup is ShareLookup.DISABLED:
            return False
        return await self.folder_shares.check_access(folder.id, user_id)

    async def _in_public_folder(self, folder_id: str) -> bool:
        folder = await self.folders.get(folder_id)
        return bool(folder and folder.is_public)


def is_owner(resource: models.File | models.Folder, user_id: str | None) -> bool:
    """Owner-only mutations: allowed when no owner is recorded or no requester given."""
    if not user_id or not resource.user_id:
        return True
    return resource.user_id == user_id
