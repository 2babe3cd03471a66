import re
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .models import ItemKind, ItemRef, Permission


class CamelModel(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


# ---------- Users ----------

class UserCreate(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(min_length=6, max_length=32)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        rules = [
            (r"[a-z]", "one lowercase letter"),
            (r"[A-Z]", "one uppercase letter"),
            (r"\d", "one digit"),
            (r"[^a-zA-Z0-9]", "one special character"),
        ]
        for pattern, label in rules:
            if not re.search(pattern, value):
                raise ValueError(f"Password must contain at least {label}")
        return value


class UserOut(CamelModel):
    id: int
    email: str
    name: Optional[str] = None
    used_storage: int
    created_at: datetime


class ProfileUpdate(CamelModel):
    name: str = Field(min_length=1, max_length=255)


class StorageOut(CamelModel):
    used_storage: int
    storage_limit: int


# ---------- Auth / JWT ----------

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


# ---------- Folders / Files ----------

class FolderCreate(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    parent_id: Optional[int] = None


class FolderUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    parent_id: Optional[int] = None
    is_starred: Optional[bool] = None


class ItemPatch(CamelModel):
    operation: Literal["star", "unstar", "restore"]


class FileUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    is_starred: Optional[bool] = None


class FolderOut(CamelModel):
    id: int
    name: str
    parent_id: Optional[int] = None
    user_id: int
    is_root: bool
    is_starred: bool
    is_trash: bool
    created_at: datetime
    updated_at: datetime


class FileOut(CamelModel):
    id: int
    name: str
    type: str
    size: int
    url: str
    public_id: str
    thumbnail_url: Optional[str] = None
    is_starred: bool
    is_trash: bool
    folder_id: Optional[int] = None
    user_id: int
    viewed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class FolderDetail(FolderOut):
    children: List[FolderOut] = []
    files: List[FileOut] = []


class DeleteResult(CamelModel):
    message: str
    permanent: bool
    freed_storage: int = 0


class TrashOut(CamelModel):
    folders: List[FolderOut]
    files: List[FileOut]


class EmptyTrashOut(CamelModel):
    message: str
    deleted_files: int
    deleted_folders: int
    freed_storage: int


class StarredOut(CamelModel):
    folders: List[FolderOut]
    files: List[FileOut]


class SearchResultOut(CamelModel):
    id: int
    name: str
    type: ItemKind
    file_type: Optional[str] = None
    path: str


# ---------- Sharing ----------

class ShareCreate(CamelModel):
    file_id: Optional[int] = None
    folder_id: Optional[int] = None
    shared_with_email: EmailStr
    permission: Permission

    @model_validator(mode="after")
    def exactly_one_item(self):
        if (self.file_id is None) == (self.folder_id is None):
            raise ValueError("Exactly one of fileId or folderId must be provided")
        return self

    def ref(self) -> ItemRef:
        if self.file_id is not None:
            return ItemRef.file(self.file_id)
        return ItemRef.folder(self.folder_id)


class ShareCreated(CamelModel):
    message: str
    share_id: int
    token: str


class SharePermissionUpdate(CamelModel):
    permission: Permission


class ShareOut(CamelModel):
    id: int
    file_id: Optional[int] = None
    folder_id: Optional[int] = None
    shared_by_user_id: int
    shared_with_email: str
    permission: Permission
    created: bool
    expires_at: Optional[datetime] = None
    created_at: datetime


class InvitationOut(CamelModel):
    id: int
    item_type: ItemKind
    item_name: Optional[str] = None
    shared_by: str
    permission: Permission
    expires_at: Optional[datetime] = None


class InvitationAccepted(CamelModel):
    message: str
    id: int


class SharerOut(CamelModel):
    id: int
    name: str


class SharedWithMeOut(CamelModel):
    id: int
    item_id: int
    item_type: ItemKind
    item_name: str
    created_at: datetime
    shared_by: SharerOut
    permission: Permission
    type: Optional[str] = None
    size: Optional[int] = None
    url: Optional[str] = None
    thumbnail_url: Optional[str] = None


class MessageOut(CamelModel):
    message: str
