import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    String,
    UniqueConstraint,
)

from .database import Base


def utcnow():
    return datetime.now(timezone.utc)


def generate_id() -> str:
    return str(uuid.uuid4())


class AccessType(str, enum.Enum):
    PRIVATE = "private"
    PUBLIC = "public"
    SHARED = "shared"


class AccessLevel(str, enum.Enum):
    READ = "read"
    WRITE = "write"


class Folder(Base):
    __tablename__ = "folders"
    __table_args__ = (
        UniqueConstraint("parent_key", "name_key", name="uq_folders_sibling_name"),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)
    parent_id = Column(
        String(36),
        ForeignKey("folders.id"),
        nullable=True,
        index=True,
    )
    user_id = Column(String(64), nullable=True, index=True)
    access_type = Column(
        Enum(AccessType, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=AccessType.PRIVATE,
    )
    is_public = Column(Boolean, nullable=False, default=False)

    # sibling uniqueness: lower-cased name under a parent, "" for the root
    name_key = Column(String(255), nullable=False)
    parent_key = Column(String(36), nullable=False, default="")

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class File(Base):
    __tablename__ = "files"

    id = Column(String(36), primary_key=True, default=generate_id)
    filename = Column(String(255), nullable=False)
    original_name = Column(String(255), nullable=False)
    file_path = Column(String(1024), nullable=False, unique=True)
    thumbnail_path = Column(String(1024), nullable=True)
    file_size = Column(BigInteger, nullable=False, default=0)
    mime_type = Column(String(255), nullable=False)
    folder_id = Column(
        String(36),
        ForeignKey("folders.id"),
        nullable=True,
        index=True,
    )
    user_id = Column(String(64), nullable=True, index=True)
    access_type = Column(
        Enum(AccessType, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=AccessType.PRIVATE,
    )

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class FileShare(Base):
    __tablename__ = "file_shares"

    id = Column(String(36), primary_key=True, default=generate_id)
    file_id = Column(
        String(36),
        ForeignKey("files.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # NULL means the grant is public
    shared_with_user_id = Column(String(64), nullable=True, index=True)
    access_level = Column(
        Enum(AccessLevel, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=AccessLevel.READ,
    )
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class FolderShare(Base):
    __tablename__ = "folder_shares"

    id = Column(String(36), primary_key=True, default=generate_id)
    folder_id = Column(
        String(36),
        ForeignKey("folders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    shared_with_user_id = Column(String(64), nullable=True, index=True)
    access_level = Column(
        Enum(AccessLevel, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=AccessLevel.WRITE,
    )
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class PostAttachment(Base):
    """Publication attachments referencing stored files.

    Owned by the publication workflow; only the file-deletion cleanup
    touches it here.
    """

    __tablename__ = "post_attachments"

    id = Column(String(36), primary_key=True, default=generate_id)
    post_id = Column(String(36), nullable=False, index=True)
    file_id = Column(String(36), ForeignKey("files.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
