import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .errors import ConfigurationError

MB = 1024 * 1024

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}

DEFAULT_ALLOWED_MIME_TYPES = [
    "image/*",
    "video/*",
    "audio/*",
    "application/pdf",
    "text/*",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "application/rtf",
    "application/vnd.oasis.opendocument.text",
    "application/vnd.oasis.opendocument.spreadsheet",
    "application/vnd.oasis.opendocument.presentation",
]


class Settings(BaseModel):
    upload_root: Path = Path("uploads")
    thumbnail_root: Path = Path("thumbnails")
    max_file_size: int = 100 * MB
    allowed_mime_types: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_MIME_TYPES)
    )
    enable_thumbnails: bool = True

    database_url: str = "sqlite+aiosqlite:///./filevault.db"
    log_level: str = "INFO"

    ffmpeg_path: str = "ffmpeg"
    ytdlp_path: str = "yt-dlp"
    extraction_timeout: float = 30.0
    fallback_thumbnail_url: str = "https://img.youtube.com/vi/{video_id}/hqdefault.jpg"
    thumbnail_size: tuple[int, int] = (200, 200)

    secret_key: str = "change-me"
    algorithm: str = "HS256"

    @classmethod
    def from_env(cls, env_file: str | None = None) -> "Settings":
        load_dotenv(env_file)

        max_file_size = 100 * MB
        if os.getenv("MAX_FILE_SIZE_MB"):
            max_file_size = _parse_int("MAX_FILE_SIZE_MB") * MB
        elif os.getenv("MAX_FILE_SIZE"):
            max_file_size = _parse_int("MAX_FILE_SIZE")

        allowed = [
            s.strip()
            for s in os.getenv("ALLOWED_FILE_TYPES", "").split(",")
            if s.strip()
        ]

        settings = cls(
            upload_root=Path(os.getenv("UPLOAD_PATH", "uploads")),
            thumbnail_root=Path(os.getenv("THUMBNAIL_PATH", "thumbnails")),
            max_file_size=max_file_size,
            allowed_mime_types=allowed or list(DEFAULT_ALLOWED_MIME_TYPES),
            enable_thumbnails=_parse_bool("ENABLE_THUMBNAILS", True),
            database_url=os.getenv("DATABASE_URL", cls.model_fields["database_url"].default),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            ffmpeg_path=os.getenv("FFMPEG_PATH", "ffmpeg"),
            ytdlp_path=os.getenv("YTDLP_PATH", "yt-dlp"),
            extraction_timeout=_parse_float("EXTRACTION_TIMEOUT", 30.0),
            fallback_thumbnail_url=os.getenv(
                "FALLBACK_THUMBNAIL_URL",
                cls.model_fields["fallback_thumbnail_url"].default,
            ),
            secret_key=os.getenv("SECRET_KEY", "change-me"),
            algorithm=os.getenv("ALGORITHM", "HS256"),
        )
        settings.validate_limits()
        return settings

    def validate_limits(self) -> None:
        errors = []
        if self.max_file_size <= 0:
            errors.append("MAX_FILE_SIZE or MAX_FILE_SIZE_MB must be a positive number")
        if not self.allowed_mime_types:
            errors.append("ALLOWED_FILE_TYPES must contain at least one MIME type")
        if self.extraction_timeout <= 0:
            errors.append("EXTRACTION_TIMEOUT must be positive")
        if errors:
            raise ConfigurationError(
                "Configuration validation failed: " + "; ".join(errors)
            )


def _parse_int(name: str) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer", config_key=name) from None


def _parse_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number", config_key=name) from None


def _parse_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    if raw in TRUE_VALUES:
        return True
    if raw in FALSE_VALUES:
        return False
    raise ConfigurationError(
        f"{name} must be one of {sorted(TRUE_VALUES | FALSE_VALUES)}", config_key=name
    )


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
    )
    root = logging.getLogger("filevault")
    root.handlers[:] = [handler]
    root.setLevel(level)
    root.propagate = False
