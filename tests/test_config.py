"""
Settings loading from the environment.
"""

from pathlib import Path

import pytest

from filevault.config import DEFAULT_ALLOWED_MIME_TYPES, MB, Settings
from filevault.errors import ConfigurationError

ENV_VARS = [
    "UPLOAD_PATH",
    "THUMBNAIL_PATH",
    "MAX_FILE_SIZE_MB",
    "MAX_FILE_SIZE",
    "ALLOWED_FILE_TYPES",
    "ENABLE_THUMBNAILS",
    "DATABASE_URL",
    "LOG_LEVEL",
    "EXTRACTION_TIMEOUT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # setenv first so values written by load_dotenv are undone after each test
    for name in ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


def test_defaults():
    settings = Settings.from_env(env_file="missing.env")

    assert settings.upload_root == Path("uploads")
    assert settings.max_file_size == 100 * MB
    assert settings.allowed_mime_types == DEFAULT_ALLOWED_MIME_TYPES
    assert settings.enable_thumbnails is True


def test_overrides(monkeypatch):
    monkeypatch.setenv("UPLOAD_PATH", "/srv/files")
    monkeypatch.setenv("MAX_FILE_SIZE_MB", "5")
    monkeypatch.setenv("ALLOWED_FILE_TYPES", "image/*, application/pdf ,")
    monkeypatch.setenv("ENABLE_THUMBNAILS", "false")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings.from_env(env_file="missing.env")

    assert settings.upload_root == Path("/srv/files")
    assert settings.max_file_size == 5 * MB
    assert settings.allowed_mime_types == ["image/*", "application/pdf"]
    assert settings.enable_thumbnails is False
    assert settings.log_level == "DEBUG"


def test_size_in_bytes(monkeypatch):
    monkeypatch.setenv("MAX_FILE_SIZE", "2048")

    assert Settings.from_env(env_file="missing.env").max_file_size == 2048


def test_env_file(tmp_path):
    env_file = tmp_path / "filevault.env"
    env_file.write_text("MAX_FILE_SIZE_MB=7\n")

    assert Settings.from_env(env_file=str(env_file)).max_file_size == 7 * MB


@pytest.mark.parametrize(
    "name, value",
    [
        ("MAX_FILE_SIZE_MB", "lots"),
        ("MAX_FILE_SIZE", "0"),
        ("EXTRACTION_TIMEOUT", "-1"),
        ("EXTRACTION_TIMEOUT", "soon"),
    ],
)
def test_invalid_values(monkeypatch, name, value):
    monkeypatch.setenv(name, value)

    with pytest.raises(ConfigurationError):
        Settings.from_env(env_file="missing.env")


def test_empty_allow_list_rejected():
    with pytest.raises(ConfigurationError):
        Settings(allowed_mime_types=[]).validate_limits()


@pytest.mark.parametrize(
    "value, expected",
    [("0", False), ("no", False), ("OFF", False), ("false", False), ("1", True), ("yes", True)],
)
def test_thumbnail_flag_spellings(monkeypatch, value, expected):
    monkeypatch.setenv("ENABLE_THUMBNAILS", value)

    assert Settings.from_env(env_file="missing.env").enable_thumbnails is expected


def test_unknown_thumbnail_flag_rejected(monkeypatch):
    monkeypatch.setenv("ENABLE_THUMBNAILS", "maybe")

    with pytest.raises(ConfigurationError):
        Settings.from_env(env_file="missing.env")
