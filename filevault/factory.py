from sqlalchemy.ext.asyncio import AsyncSession

from .access import AccessResolver
from .config import Settings
from .file_service import FileService
from .folder_service import FolderService
from .previews import MediaPreviewPipeline
from .repositories import (
    AttachmentReferenceCleaner,
    FileRepository,
    FileShareRepository,
    FolderRepository,
    FolderShareRepository,
)
from .storage import LocalStorage


class ServiceFactory:
    """Process-wide collaborators; builds session-bound services per request."""

    def __init__(
        self,
        settings: Settings,
        storage: LocalStorage | None = None,
        previews: MediaPreviewPipeline | None = None,
    ):
        self.settings = settings
        self.storage = storage or LocalStorage(settings)
        self.previews = previews or MediaPreviewPipeline(settings)

    def access_resolver(self, session: AsyncSession) -> AccessResolver:
        return AccessResolver(
            FolderRepository(session),
            file_shares=FileShareRepository(session),
            folder_shares=FolderShareRepository(session),
        )

    def folder_service(self, session: AsyncSession) -> FolderService:
        return FolderService(
            folders=FolderRepository(session),
            files=FileRepository(session),
            folder_shares=FolderShareRepository(session),
            storage=self.storage,
            access=self.access_resolver(session),
        )

    def file_service(self, session: AsyncSession) -> FileService:
        return FileService(
            self.settings,
            files=FileRepository(session),
            folders=FolderRepository(session),
            file_shares=FileShareRepository(session),
            references=AttachmentReferenceCleaner(session),
            storage=self.storage,
            previews=self.previews,
            access=self.access_resolver(session),
        )
