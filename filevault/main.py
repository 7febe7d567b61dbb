from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated

import httpx
from fastapi import (
    APIRouter,
    Depends,
    FastAPI,
    File as FastFile,
    Form,
    Request,
    UploadFile,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from . import auth, schemas
from .config import Settings, configure_logging
from .database import create_engine, create_session_factory, create_tables
from .errors import ErrorType, FileVaultError, ValidationError
from .factory import ServiceFactory
from .file_service import FileService
from .folder_service import FolderService
from .models import AccessLevel
from .previews import MediaPreviewPipeline

STATUS_BY_ERROR = {
    ErrorType.VALIDATION_ERROR: 400,
    ErrorType.FILE_NOT_FOUND: 404,
    ErrorType.FOLDER_NOT_FOUND: 404,
    ErrorType.UPLOAD_ERROR: 422,
    ErrorType.THUMBNAIL_ERROR: 422,
    ErrorType.DATABASE_ERROR: 500,
    ErrorType.CONFIGURATION_ERROR: 500,
    ErrorType.INTERNAL_ERROR: 500,
}


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings.log_level)
        engine = create_engine(settings.database_url)
        await create_tables(engine)
        async with httpx.AsyncClient() as http_client:
            factory = ServiceFactory(
                settings, previews=MediaPreviewPipeline(settings, http_client)
            )
            await factory.storage.ensure_roots()
            app.state.factory = factory
            app.state.session_factory = create_session_factory(engine)
            yield
        await engine.dispose()

    app = FastAPI(title="filevault", lifespan=lifespan)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(FileVaultError)
    async def handle_filevault_error(request: Request, exc: FileVaultError):
        return JSONResponse(
            status_code=STATUS_BY_ERROR.get(exc.error_type, 500),
            content={"success": False, "error": exc.to_payload()},
        )

    app.include_router(router)
    return app


# ---------- Dependencies ----------

async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    async with request.app.state.session_factory() as session:
        yield session


SessionDep = Annotated[AsyncSession, Depends(get_session)]
OptionalUser = Annotated[str | None, Depends(auth.get_current_user_id)]
CurrentUser = Annotated[str, Depends(auth.require_user_id)]


def get_file_service(request: Request, session: SessionDep) -> FileService:
    return request.app.state.factory.file_service(session)


def get_folder_service(request: Request, session: SessionDep) -> FolderService:
    return request.app.state.factory.folder_service(session)


FileServiceDep = Annotated[FileService, Depends(get_file_service)]
FolderServiceDep = Annotated[FolderService, Depends(get_folder_service)]


router = APIRouter(prefix="/api")


# ---------- Folders ----------

@router.get("/folders", response_model=list[schemas.FolderTree])
async def list_folder_tree(
    folders: FolderServiceDep, user_id: OptionalUser, parentId: str | None = None
):
    return await folders.get_folders_with_files(parentId, user_id)


@router.post("/folders", response_model=schemas.FolderRead, status_code=201)
async def create_folder(
    body: schemas.FolderCreate, folders: FolderServiceDep, user_id: CurrentUser
):
    return await folders.create_folder(body.name, body.parent_id, user_id)


@router.get("/folders/shared", response_model=list[schemas.FolderRead])
async def list_shared_folders(folders: FolderServiceDep, user_id: CurrentUser):
    return await folders.get_folders_shared_with_user(user_id)


@router.get("/folders/{folder_id}", response_model=schemas.FolderRead)
async def get_folder(folder_id: str, folders: FolderServiceDep, user_id: OptionalUser):
    return await folders.get_folder(folder_id, user_id)


@router.patch("/folders/{folder_id}", response_model=schemas.FolderRead)
async def update_folder(
    folder_id: str,
    body: schemas.FolderUpdate,
    folders: FolderServiceDep,
    user_id: CurrentUser,
):
    return await folders.update_folder(folder_id, body, user_id)


@router.delete("/folders/{folder_id}", status_code=204)
async def delete_folder(folder_id: str, folders: FolderServiceDep, user_id: CurrentUser):
    await folders.delete_folder(folder_id, user_id)


@router.post(
    "/folders/{folder_id}/shares",
    response_model=list[schemas.FolderShareRead],
    status_code=201,
)
async def share_folder(
    folder_id: str,
    body: schemas.ShareRequest,
    folders: FolderServiceDep,
    user_id: CurrentUser,
):
    return await folders.share_folder_with_users(
        folder_id, user_id, body.user_ids, body.access_level or AccessLevel.WRITE
    )


@router.get("/folders/{folder_id}/shares", response_model=list[schemas.FolderShareRead])
async def list_folder_shares(folder_id: str, folders: FolderServiceDep, user_id: CurrentUser):
    return await folders.get_folder_shares(folder_id, user_id)


@router.delete("/folders/{folder_id}/shares/{target_user_id}", status_code=204)
async def unshare_folder(
    folder_id: str, target_user_id: str, folders: FolderServiceDep, user_id: CurrentUser
):
    await folders.unshare_folder(folder_id, user_id, target_user_id)


# ---------- Files ----------

@router.post("/files/upload", response_model=schemas.FileRead, status_code=201)
async def upload_file(
    files: FileServiceDep,
    user_id: CurrentUser,
    file: UploadFile = FastFile(...),
    folderId: str | None = Form(None),
):
    data = await file.read()
    payload = schemas.UploadPayload(
        data=data,
        original_name=file.filename or "file",
        mime_type=file.content_type or "application/octet-stream",
        size=len(data),
    )
    # FormData sends "null" for a missing folder
    folder_id = folderId if folderId and folderId != "null" else None
    return await files.upload(payload, user_id, folder_id)


@router.get("/files", response_model=list[schemas.FileRead])
async def list_files(files: FileServiceDep, user_id: OptionalUser, folderId: str | None = None):
    return await files.get_files(folderId, user_id)


@router.get("/files/search", response_model=list[schemas.FileRead])
async def search_files(files: FileServiceDep, user_id: OptionalUser, q: str = ""):
    return await files.search_files(q, user_id)


@router.get("/files/shared", response_model=list[schemas.FileRead])
async def list_shared_files(files: FileServiceDep, user_id: CurrentUser):
    return await files.get_files_shared_with_user(user_id)


@router.get("/files/{file_id}/download")
async def download_file(file_id: str, files: FileServiceDep, user_id: OptionalUser):
    info = await files.download(file_id, user_id)
    return FileResponse(info.path, media_type=info.mime_type, filename=info.name)


@router.patch("/files/{file_id}", response_model=schemas.FileRead)
async def rename_file(
    file_id: str, body: schemas.FileRename, files: FileServiceDep, user_id: CurrentUser
):
    return await files.rename_file(file_id, body.name, user_id)


@router.delete("/files/{file_id}", status_code=204)
async def delete_file(file_id: str, files: FileServiceDep, user_id: CurrentUser):
    await files.delete_file(file_id, user_id)


@router.post(
    "/files/{file_id}/shares",
    response_model=list[schemas.FileShareRead],
    status_code=201,
)
async def share_file(
    file_id: str, body: schemas.ShareRequest, files: FileServiceDep, user_id: CurrentUser
):
    return await files.share_file_with_users(
        file_id, user_id, body.user_ids, body.access_level or AccessLevel.READ
    )


@router.post("/files/{file_id}/shares/public", response_model=schemas.FileShareRead, status_code=201)
async def share_file_publicly(file_id: str, files: FileServiceDep, user_id: CurrentUser):
    return await files.share_file(file_id, user_id, None)


@router.get("/files/{file_id}/shares", response_model=list[schemas.FileShareRead])
async def list_file_shares(file_id: str, files: FileServiceDep, user_id: CurrentUser):
    return await files.get_file_shares(file_id, user_id)


@router.delete("/files/{file_id}/shares/{target_user_id}", status_code=204)
async def unshare_file(
    file_id: str, target_user_id: str, files: FileServiceDep, user_id: CurrentUser
):
    await files.unshare_file(file_id, user_id, target_user_id)


# ---------- Previews ----------

@router.post("/files/extract-thumbnail", response_model=schemas.ThumbnailRead)
async def extract_thumbnail(
    body: schemas.FrameRequest, files: FileServiceDep, user_id: CurrentUser
):
    if body.file_id:
        path = await files.extract_video_frame(body.file_id, body.timestamp, user_id)
    elif body.youtube_url:
        path = await files.extract_youtube_frame(body.youtube_url, body.timestamp)
    else:
        raise ValidationError("Either fileId or youtubeUrl is required")
    return schemas.ThumbnailRead(thumbnail_path=Path(path).name)


@router.get("/thumbnails/{name}")
async def get_thumbnail(name: str, request: Request):
    path = await request.app.state.factory.storage.thumbnail_file(name)
    return FileResponse(path, media_type="image/jpeg")

