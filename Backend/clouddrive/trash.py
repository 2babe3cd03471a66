from dataclasses import dataclass
from typing import List, Tuple

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from . import files as file_service
from . import folders as folder_service
from . import storage
from .blobstore import BlobStore, discard
from .errors import Internal
from .models import File, Folder, ItemKind, ItemRef, OwnerContext, SharedItem


@dataclass
class EmptyTrashResult:
    deleted_files: int
    deleted_folders: int
    freed_storage: int


def list_trash(db: Session, owner: OwnerContext) -> Tuple[List[Folder], List[File]]:
    trashed_folders = db.scalars(
        select(Folder)
        .where(Folder.user_id == owner.id)
        .where(Folder.is_trash.is_(True))
        .order_by(Folder.updated_at.desc())
    ).all()
    trashed_files = db.scalars(
        select(File)
        .where(File.user_id == owner.id)
        .where(File.is_trash.is_(True))
        .order_by(File.updated_at.desc())
    ).all()
    return list(trashed_folders), list(trashed_files)


def restore_item(db: Session, owner: OwnerContext, ref: ItemRef):
    if ref.kind is ItemKind.FILE:
        return file_service.restore(db, owner, ref.id)
    return folder_service.restore(db, owner, ref.id)


def empty_trash(db: Session, blobs: BlobStore, owner: OwnerContext) -> EmptyTrashResult:
    """Purge every trashed file and folder of ``owner`` in one transaction.

    Trashed folders take their whole subtree with them. Blobs are deleted in
    the background after the commit, best-effort.
    """
    try:
        trashed_files = db.scalars(
            select(File)
            .where(File.user_id == owner.id)
            .where(File.is_trash.is_(True))
        ).all()
        file_ids = [file.id for file in trashed_files]
        blob_ids = [file.public_id for file in trashed_files]
        freed = sum(file.size for file in trashed_files)
        if file_ids:
            db.execute(
                delete(SharedItem)
                .where(SharedItem.file_id.in_(file_ids))
                .execution_options(synchronize_session=False)
            )
            db.execute(
                delete(File)
                .where(File.id.in_(file_ids))
                .execution_options(synchronize_session=False)
            )
        storage.release(db, owner, freed)

        trashed_folder_ids = db.scalars(
            select(Folder.id)
            .where(Folder.user_id == owner.id)
            .where(Folder.is_trash.is_(True))
            .where(Folder.is_root.is_(False))
        ).all()
        subtree = folder_service.purge_subtrees(db, owner, trashed_folder_ids)
        blob_ids += subtree.blob_ids
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.opt(exception=exc).error("Emptying trash failed for user {}", owner.id)
        raise Internal("Failed to empty trash")
    db.expire_all()
    discard(blobs, blob_ids)

    result = EmptyTrashResult(
        deleted_files=len(file_ids) + subtree.deleted_files,
        deleted_folders=subtree.deleted_folders,
        freed_storage=freed + subtree.freed_storage,
    )
    logger.info(
        "Emptied trash for user {}: {} files, {} folders, {} bytes freed",
        owner.id, result.deleted_files, result.deleted_folders, result.freed_storage,
    )
    return result
