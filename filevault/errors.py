"""Error taxonomy shared by the storage core.

Every error raised by the services carries an ``ErrorType``; the HTTP
adapter turns it into a ``{type, message, timestamp}`` payload.
"""

import enum
from datetime import datetime, timezone
from typing import Any


class ErrorType(str, enum.Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    FOLDER_NOT_FOUND = "FOLDER_NOT_FOUND"
    UPLOAD_ERROR = "UPLOAD_ERROR"
    THUMBNAIL_ERROR = "THUMBNAIL_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class FileVaultError(Exception):
    error_type = ErrorType.INTERNAL_ERROR

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}
        self.timestamp = datetime.now(timezone.utc)

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.error_type.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }


class ValidationError(FileVaultError):
    error_type = ErrorType.VALIDATION_ERROR

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        super().__init__(message, field=field, value=value)
        self.field = field


class FileNotFound(FileVaultError):
    error_type = ErrorType.FILE_NOT_FOUND

    def __init__(self, file_id: str, message: str = "File not found"):
        super().__init__(message, file_id=file_id)
        self.file_id = file_id


class FolderNotFound(FileVaultError):
    error_type = ErrorType.FOLDER_NOT_FOUND

    def __init__(self, folder_id: str, message: str = "Folder not found"):
        super().__init__(message, folder_id=folder_id)
        self.folder_id = folder_id


class UploadError(FileVaultError):
    error_type = ErrorType.UPLOAD_ERROR


class ThumbnailError(FileVaultError):
    error_type = ErrorType.THUMBNAIL_ERROR


class DatabaseError(FileVaultError):
    error_type = ErrorType.DATABASE_ERROR

    def __init__(self, message: str, operation: str | None = None, table: str | None = None):
        super().__init__(message, operation=operation, table=table)


class DataIntegrityError(DatabaseError):
    """Stored state violates a structural invariant, e.g. a folder cycle."""


class ConfigurationError(FileVaultError):
    error_type = ErrorType.CONFIGURATION_ERROR
