"""Sharing files and folders with other users by email.

A share starts as a pending invitation (random token, expiry
``INVITATION_TTL_DAYS`` out, ``created`` false). Accepting it clears the
token and sets ``created``; revoking deletes the row. An accepted share
never goes back to pending.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Union

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import config
from .access import item_clause, load_item
from .errors import Conflict, Forbidden, Gone, InvalidRequest, NotFound
from .models import (
    File,
    Folder,
    ItemKind,
    ItemRef,
    OwnerContext,
    Permission,
    SharedItem,
    User,
    as_utc,
    utcnow,
)


@dataclass
class InvitationDetails:
    id: int
    item_type: ItemKind
    item_name: Optional[str]
    shared_by: str
    permission: Permission
    expires_at: Optional[datetime]


@dataclass
class SharedWithMe:
    share: SharedItem
    item: Union[File, Folder]
    shared_by: User

    @property
    def item_type(self) -> ItemKind:
        return self.share.item.kind


def normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if not email:
        raise InvalidRequest("Email is required")
    return email


def is_expired(share: SharedItem, now: Optional[datetime] = None) -> bool:
    if share.expires_at is None:
        return False
    return as_utc(share.expires_at) < (now or utcnow())


def _display_name(user: User) -> str:
    return user.name or user.email


def share(
    db: Session,
    owner: OwnerContext,
    ref: ItemRef,
    email: str,
    permission: Union[Permission, str] = Permission.VIEW,
) -> SharedItem:
    item = load_item(db, ref)
    if item is None:
        raise NotFound(f"{ref.kind.value.capitalize()} not found")
    if item.user_id != owner.id:
        raise Forbidden(f"You can only share your own {ref.kind.value}s")

    email = normalize_email(email)
    if email == owner.email.lower():
        raise InvalidRequest("You cannot share with yourself")

    existing = db.scalar(
        select(SharedItem)
        .where(SharedItem.shared_by_user_id == owner.id)
        .where(SharedItem.shared_with_email == email)
        .where(item_clause(ref))
    )
    if existing is not None:
        if not (existing.is_pending and is_expired(existing)):
            raise Conflict("Already shared with this email")
        # a lapsed invitation is replaced by a fresh one
        db.delete(existing)
        db.flush()

    shared_item = SharedItem(
        shared_by_user_id=owner.id,
        shared_with_email=email,
        permission=Permission(permission),
        token=str(uuid.uuid4()),
        expires_at=utcnow() + timedelta(days=config.INVITATION_TTL_DAYS),
        created=False,
    )
    shared_item.item = ref
    db.add(shared_item)
    db.commit()
    db.refresh(shared_item)
    logger.info("User {} shared {} {} with {}", owner.id, ref.kind.value, ref.id, email)
    return shared_item


def _pending_by_token(db: Session, token: str) -> SharedItem:
    shared_item = db.scalar(select(SharedItem).where(SharedItem.token == token))
    if shared_item is None:
        raise NotFound("Invalid or expired invitation")
    if is_expired(shared_item):
        raise Gone("Invitation has expired")
    return shared_item


def get_invitation(db: Session, token: str) -> InvitationDetails:
    shared_item = _pending_by_token(db, token)
    item = load_item(db, shared_item.item)
    return InvitationDetails(
        id=shared_item.id,
        item_type=shared_item.item.kind,
        item_name=item.name if item is not None else None,
        shared_by=_display_name(shared_item.shared_by),
        permission=shared_item.permission,
        expires_at=shared_item.expires_at,
    )


def accept_invitation(db: Session, user: OwnerContext, token: str) -> SharedItem:
    shared_item = _pending_by_token(db, token)
    if shared_item.shared_with_email != user.email.lower():
        raise Forbidden("This invitation is not for you")

    shared_item.created = True
    shared_item.token = None
    db.commit()
    db.refresh(shared_item)
    logger.info("User {} accepted share {}", user.id, shared_item.id)
    return shared_item


def _involves(shared_item: SharedItem, user: OwnerContext) -> bool:
    return (
        shared_item.shared_by_user_id == user.id
        or shared_item.shared_with_email == user.email.lower()
    )


def get_share(db: Session, user: OwnerContext, share_id: int) -> SharedItem:
    shared_item = db.get(SharedItem, share_id)
    if shared_item is None:
        raise NotFound("Share not found")
    if not _involves(shared_item, user):
        raise Forbidden("You don't have permission to view this share")
    return shared_item


def update_permission(
    db: Session,
    owner: OwnerContext,
    share_id: int,
    permission: Union[Permission, str],
) -> SharedItem:
    shared_item = db.get(SharedItem, share_id)
    if shared_item is None:
        raise NotFound("Share not found")
    if shared_item.shared_by_user_id != owner.id:
        raise Forbidden("Only the user who shared this item can change its permission")

    shared_item.permission = Permission(permission)
    db.commit()
    db.refresh(shared_item)
    return shared_item


def revoke(db: Session, requester: OwnerContext, share_id: int) -> None:
    shared_item = db.get(SharedItem, share_id)
    if shared_item is None:
        raise NotFound("Share not found")
    if not _involves(shared_item, requester):
        raise Forbidden("You don't have permission to delete this share")

    db.delete(shared_item)
    db.commit()
    logger.info("User {} revoked share {}", requester.id, share_id)


def list_for_item(db: Session, owner: OwnerContext, ref: ItemRef) -> List[SharedItem]:
    item = load_item(db, ref)
    if item is None:
        raise NotFound(f"{ref.kind.value.capitalize()} not found")
    if item.user_id != owner.id:
        raise Forbidden(f"You don't have permission to access this {ref.kind.value}")

    return list(
        db.scalars(
            select(SharedItem)
            .where(item_clause(ref))
            .where(SharedItem.shared_by_user_id == owner.id)
            .order_by(SharedItem.created_at.asc())
        ).all()
    )


def list_shared_with_me(db: Session, user: OwnerContext) -> List[SharedWithMe]:
    accepted = db.scalars(
        select(SharedItem)
        .where(SharedItem.shared_with_email == user.email.lower())
        .where(SharedItem.created.is_(True))
        .order_by(SharedItem.updated_at.desc())
    ).all()

    entries = []
    for shared_item in accepted:
        item = load_item(db, shared_item.item)
        if item is None:
            continue
        entries.append(SharedWithMe(share=shared_item, item=item, shared_by=shared_item.shared_by))
    return entries
