import enum
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
)
from sqlalchemy.orm import relationship

from .database import Base


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    # SQLite hands timezone-aware columns back naive
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Permission(str, enum.Enum):
    VIEW = "view"
    EDIT = "edit"
    ADMIN = "admin"


class ItemKind(str, enum.Enum):
    FILE = "file"
    FOLDER = "folder"


@dataclass(frozen=True)
class ItemRef:
    """A shareable item: exactly one file or one folder."""

    kind: ItemKind
    id: int

    @classmethod
    def file(cls, file_id: int) -> "ItemRef":
        return cls(ItemKind.FILE, file_id)

    @classmethod
    def folder(cls, folder_id: int) -> "ItemRef":
        return cls(ItemKind.FOLDER, folder_id)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    # absent for accounts created through an external identity provider
    hashed_password = Column(String(255), nullable=True)
    used_storage = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    folders = relationship("Folder", back_populates="user", cascade="all,delete-orphan", passive_deletes=True)
    files = relationship("File", back_populates="user", cascade="all,delete-orphan", passive_deletes=True)


class Folder(Base):
    __tablename__ = "folders"
    __table_args__ = (
        CheckConstraint("parent_id IS NULL OR parent_id <> id", name="ck_folder_not_own_parent"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(255), nullable=False)
    parent_id = Column(
        Integer,
        ForeignKey("folders.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    is_root = Column(Boolean, nullable=False, default=False)
    is_starred = Column(Boolean, nullable=False, default=False)
    is_trash = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="folders")
    files = relationship("File", back_populates="folder", passive_deletes=True)


class File(Base):
    __tablename__ = "files"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    folder_id = Column(
        Integer,
        ForeignKey("folders.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    name = Column(String(255), nullable=False)
    type = Column(String(255), nullable=False, default="application/octet-stream")
    size = Column(BigInteger, nullable=False)
    url = Column(String(1024), nullable=False)
    public_id = Column(String(512), nullable=False)
    thumbnail_url = Column(String(1024), nullable=True)

    is_starred = Column(Boolean, nullable=False, default=False)
    is_trash = Column(Boolean, nullable=False, default=False)

    viewed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="files")
    folder = relationship("Folder", back_populates="files")


class SharedItem(Base):
    __tablename__ = "shared_items"
    __table_args__ = (
        CheckConstraint(
            "(file_id IS NULL) <> (folder_id IS NULL)",
            name="ck_shared_item_exactly_one_target",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    file_id = Column(
        Integer,
        ForeignKey("files.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    folder_id = Column(
        Integer,
        ForeignKey("folders.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    shared_by_user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    shared_with_email = Column(String(255), nullable=False, index=True)
    permission = Column(
        Enum(Permission, values_callable=lambda e: [m.value for m in e], native_enum=False),
        nullable=False,
        default=Permission.VIEW,
    )
    # set while the invitation is pending, cleared on acceptance
    token = Column(String(36), unique=True, nullable=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    file = relationship("File")
    folder = relationship("Folder")
    shared_by = relationship("User")

    @property
    def item(self) -> ItemRef:
        if self.file_id is not None:
            return ItemRef.file(self.file_id)
        return ItemRef.folder(self.folder_id)

    @item.setter
    def item(self, ref: ItemRef) -> None:
        if ref.kind is ItemKind.FILE:
            self.file_id, self.folder_id = ref.id, None
        else:
            self.file_id, self.folder_id = None, ref.id

    @property
    def is_pending(self) -> bool:
        return not self.created


@dataclass(frozen=True)
class OwnerContext:
    """The authenticated caller every core operation acts on behalf of."""

    id: int
    email: str

    @classmethod
    def of(cls, user: User) -> "OwnerContext":
        return cls(id=user.id, email=user.email)
