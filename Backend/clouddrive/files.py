"""File entities: upload, listing, renaming, starring, trash and purge.

A file's ``size`` counts against its owner's quota from upload until purge.
Upload writes the blob before the row, so a failed commit can leave an
orphaned blob; we try to delete it again and re-raise.
"""
import uuid
from datetime import timedelta
from typing import List, Optional

from loguru import logger
from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import config, storage
from .access import require_access
from .blobstore import BlobStore, delete_quietly, discard, wants_thumbnail
from .errors import InvalidRequest, NotFound
from .folders import get_owned_folder
from .models import File, ItemRef, OwnerContext, SharedItem, utcnow


def get_owned_file(db: Session, owner: OwnerContext, file_id: int) -> File:
    file = db.scalar(
        select(File)
        .where(File.id == file_id)
        .where(File.user_id == owner.id)
    )
    if file is None:
        raise NotFound("File not found")
    return file


def _blob_key(owner: OwnerContext, name: str) -> str:
    # unique per upload, even for the same name within one millisecond
    stamp = int(utcnow().timestamp() * 1000)
    return f"{owner.id}-{stamp}-{uuid.uuid4().hex}-{name}"


def upload(
    db: Session,
    blobs: BlobStore,
    owner: OwnerContext,
    data: bytes,
    name: str,
    content_type: Optional[str] = None,
    folder_id: Optional[int] = None,
) -> File:
    name = (name or "").strip()
    if not name:
        raise InvalidRequest("File is required")
    content_type = content_type or "application/octet-stream"
    size = len(data)

    storage.ensure_within_limits(db, owner, size)
    if folder_id is not None:
        get_owned_folder(db, owner, folder_id)

    result = blobs.upload(data, _blob_key(owner, name))
    thumbnail_url = blobs.thumbnail_url(result.public_id) if wants_thumbnail(content_type) else None

    db_file = File(
        user_id=owner.id,
        folder_id=folder_id,
        name=name,
        type=content_type,
        size=size,
        url=result.url,
        public_id=result.public_id,
        thumbnail_url=thumbnail_url,
        is_starred=False,
        is_trash=False,
    )
    try:
        db.add(db_file)
        storage.charge(db, owner, size)
        db.commit()
    except Exception:
        db.rollback()
        logger.error("Upload of {} failed after storing blob {}; removing it", name, result.public_id)
        delete_quietly(blobs, result.public_id)
        raise
    db.refresh(db_file)
    logger.info("User {} uploaded file {} ({} bytes)", owner.id, db_file.id, size)
    return db_file


def list_files(
    db: Session,
    owner: OwnerContext,
    folder_id: Optional[int] = None,
    is_trash: Optional[bool] = None,
) -> List[File]:
    stmt = select(File).where(File.user_id == owner.id)
    if folder_id is None:
        stmt = stmt.where(File.folder_id.is_(None))
    else:
        stmt = stmt.where(File.folder_id == folder_id)
    if is_trash is not None:
        stmt = stmt.where(File.is_trash == is_trash)
    return list(db.scalars(stmt.order_by(File.name.asc())).all())


def mark_viewed(db: Session, file: File) -> None:
    """Stamp ``viewed_at``. Never fails the read it accompanies."""
    try:
        db.execute(
            update(File)
            .where(File.id == file.id)
            .values(viewed_at=utcnow(), updated_at=File.updated_at)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Could not update viewed_at for file {}: {}", file.id, exc)
    else:
        db.refresh(file)


def get_file(db: Session, owner: OwnerContext, file_id: int) -> File:
    file = require_access(db, owner, ItemRef.file(file_id))
    mark_viewed(db, file)
    return file


def update_file(
    db: Session,
    owner: OwnerContext,
    file_id: int,
    name: Optional[str] = None,
    is_starred: Optional[bool] = None,
) -> File:
    file = get_owned_file(db, owner, file_id)
    if name is not None:
        name = name.strip()
        if not name:
            raise InvalidRequest("Name is required")
        file.name = name
    if is_starred is not None:
        file.is_starred = is_starred
    db.commit()
    db.refresh(file)
    return file


def rename(db: Session, owner: OwnerContext, file_id: int, name: str) -> File:
    return update_file(db, owner, file_id, name=name)


def set_starred(db: Session, owner: OwnerContext, file_id: int, starred: bool) -> File:
    return update_file(db, owner, file_id, is_starred=starred)


def toggle_star(db: Session, owner: OwnerContext, file_id: int) -> File:
    file = get_owned_file(db, owner, file_id)
    return update_file(db, owner, file_id, is_starred=not file.is_starred)


def soft_delete(db: Session, owner: OwnerContext, file_id: int) -> File:
    file = get_owned_file(db, owner, file_id)
    file.is_trash = True
    db.commit()
    db.refresh(file)
    return file


def restore(db: Session, owner: OwnerContext, file_id: int) -> File:
    file = get_owned_file(db, owner, file_id)
    file.is_trash = False
    db.commit()
    db.refresh(file)
    return file


def purge(db: Session, blobs: BlobStore, owner: OwnerContext, file_id: int) -> int:
    """Remove the file for good and return the bytes given back to the quota."""
    file = get_owned_file(db, owner, file_id)
    size, public_id = file.size, file.public_id

    try:
        db.execute(
            delete(SharedItem)
            .where(SharedItem.file_id == file.id)
            .execution_options(synchronize_session=False)
        )
        db.delete(file)
        db.flush()
        storage.release(db, owner, size)
        db.commit()
    except Exception:
        db.rollback()
        raise
    discard(blobs, [public_id])
    logger.info("User {} purged file {} ({} bytes freed)", owner.id, file_id, size)
    return size


def list_starred(db: Session, owner: OwnerContext) -> List[File]:
    return list(
        db.scalars(
            select(File)
            .where(File.user_id == owner.id)
            .where(File.is_starred.is_(True))
            .where(File.is_trash.is_(False))
            .order_by(File.updated_at.desc())
        ).all()
    )


def list_recent(db: Session, owner: OwnerContext) -> List[File]:
    since = utcnow() - timedelta(days=config.RECENT_DAYS)
    return list(
        db.scalars(
            select(File)
            .where(File.user_id == owner.id)
            .where(File.is_trash.is_(False))
            .where(File.created_at >= since)
            .order_by(File.created_at.desc())
            .limit(config.RECENT_LIMIT)
        ).all()
    )
