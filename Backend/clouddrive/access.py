"""Who may read a file or folder.

Access is granted to the item's owner, or to a user whose email is named on
an accepted share of *that exact item*. Shares on a parent folder do not
reach into its contents, and pending invitations grant nothing.
"""
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import Forbidden, NotFound
from .models import File, Folder, ItemKind, ItemRef, OwnerContext, Permission, SharedItem

OWNER = "owner"

Item = Union[File, Folder]


def item_clause(ref: ItemRef):
    if ref.kind is ItemKind.FILE:
        return SharedItem.file_id == ref.id
    return SharedItem.folder_id == ref.id


def load_item(db: Session, ref: ItemRef) -> Optional[Item]:
    model = File if ref.kind is ItemKind.FILE else Folder
    return db.get(model, ref.id)


def accepted_share(db: Session, user: OwnerContext, ref: ItemRef) -> Optional[SharedItem]:
    return db.scalar(
        select(SharedItem)
        .where(item_clause(ref))
        .where(SharedItem.shared_with_email == user.email.lower())
        .where(SharedItem.created.is_(True))
    )


def _permission_on(db: Session, user: OwnerContext, ref: ItemRef, item: Item) -> Optional[Union[str, Permission]]:
    if item.user_id == user.id:
        return OWNER
    share = accepted_share(db, user, ref)
    return share.permission if share else None


def effective_permission(db: Session, user: OwnerContext, ref: ItemRef) -> Optional[Union[str, Permission]]:
    item = load_item(db, ref)
    if item is None:
        return None
    return _permission_on(db, user, ref, item)


def can_access(db: Session, user: OwnerContext, ref: ItemRef) -> bool:
    return effective_permission(db, user, ref) is not None


def require_access(db: Session, user: OwnerContext, ref: ItemRef) -> Item:
    item = load_item(db, ref)
    if item is None:
        raise NotFound(f"{ref.kind.value.capitalize()} not found")
    if _permission_on(db, user, ref, item) is None:
        raise Forbidden(f"You don't have permission to access this {ref.kind.value}")
    return item
