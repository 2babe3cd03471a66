"""Folder tree operations.

Every user owns exactly one root folder (``is_root``), created lazily by
``ensure_root_folder``. Other folders hang off a parent owned by the same
user, or sit at root level with ``parent_id`` NULL. Trashing only flags the
folder itself; ``purge`` removes the whole subtree, its files and their
blobs, and gives the bytes back to the owner's quota.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from loguru import logger
from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from . import storage
from .access import can_access, require_access
from .blobstore import BlobStore, discard
from .errors import Conflict, Forbidden, InvalidRequest, NotFound
from .models import File, Folder, ItemRef, OwnerContext, SharedItem

ROOT_FOLDER_NAME = "Root"


@dataclass
class PurgeResult:
    deleted_files: int = 0
    deleted_folders: int = 0
    freed_storage: int = 0
    blob_ids: List[str] = field(default_factory=list)


@dataclass
class FolderContents:
    folder: Folder
    children: List[Folder] = field(default_factory=list)
    files: List[File] = field(default_factory=list)


def ensure_root_folder(db: Session, user) -> Folder:
    root = db.scalar(
        select(Folder)
        .where(Folder.user_id == user.id)
        .where(Folder.is_root.is_(True))
    )
    if root:
        return root
    root = Folder(
        user_id=user.id,
        name=ROOT_FOLDER_NAME,
        parent_id=None,
        is_root=True,
    )
    db.add(root)
    db.commit()
    db.refresh(root)
    logger.info("Created root folder {} for user {}", root.id, user.id)
    return root


def _clean_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise InvalidRequest("Name is required")
    return name


def get_owned_folder(db: Session, owner: OwnerContext, folder_id: int) -> Folder:
    folder = db.scalar(
        select(Folder)
        .where(Folder.id == folder_id)
        .where(Folder.user_id == owner.id)
    )
    if folder is None:
        raise NotFound("Folder not found")
    return folder


def _folder_for_update(db: Session, owner: OwnerContext, folder_id: int) -> Folder:
    folder = db.get(Folder, folder_id)
    if folder is None:
        raise NotFound("Folder not found")
    if folder.user_id != owner.id:
        raise Forbidden("You don't have permission to modify this folder")
    return folder


def _sibling_exists(
    db: Session,
    owner_id: int,
    name: str,
    parent_id: Optional[int],
    exclude_id: Optional[int] = None,
) -> bool:
    stmt = (
        select(Folder.id)
        .where(Folder.user_id == owner_id)
        .where(Folder.name == name)
        .where(Folder.is_trash.is_(False))
        .where(Folder.is_root.is_(False))
    )
    if parent_id is None:
        stmt = stmt.where(Folder.parent_id.is_(None))
    else:
        stmt = stmt.where(Folder.parent_id == parent_id)
    if exclude_id is not None:
        stmt = stmt.where(Folder.id != exclude_id)
    return db.scalar(stmt.limit(1)) is not None


def descendant_folder_ids(db: Session, folder_ids: Iterable[int]) -> Set[int]:
    """Ids of every folder strictly below ``folder_ids``, one query per level."""
    seen: Set[int] = set(folder_ids)
    found: Set[int] = set()
    frontier = list(seen)
    while frontier:
        children = db.scalars(select(Folder.id).where(Folder.parent_id.in_(frontier))).all()
        frontier = [child for child in children if child not in seen]
        seen.update(frontier)
        found.update(frontier)
    return found


def _is_within(db: Session, folder_id: int, ancestor_id: int) -> bool:
    current: Optional[int] = folder_id
    visited: Set[int] = set()
    while current is not None and current not in visited:
        if current == ancestor_id:
            return True
        visited.add(current)
        current = db.scalar(select(Folder.parent_id).where(Folder.id == current))
    return False


def create_folder(db: Session, owner: OwnerContext, name: str, parent_id: Optional[int] = None) -> Folder:
    name = _clean_name(name)
    if parent_id is not None:
        try:
            get_owned_folder(db, owner, parent_id)
        except NotFound:
            raise NotFound("Parent folder not found")

    if _sibling_exists(db, owner.id, name, parent_id):
        raise Conflict("A folder with this name already exists")

    folder = Folder(
        user_id=owner.id,
        name=name,
        parent_id=parent_id,
        is_starred=False,
        is_trash=False,
    )
    db.add(folder)
    db.commit()
    db.refresh(folder)
    return folder


def get_folder(db: Session, owner: OwnerContext, folder_id: int) -> FolderContents:
    """The folder with its direct subfolders and files.

    A share recipient only sees the entries they can access in their own
    right; a share on the folder does not extend to its contents.
    """
    folder = require_access(db, owner, ItemRef.folder(folder_id))
    children = db.scalars(
        select(Folder)
        .where(Folder.parent_id == folder.id)
        .order_by(Folder.name.asc())
    ).all()
    files = db.scalars(
        select(File)
        .where(File.folder_id == folder.id)
        .order_by(File.name.asc())
    ).all()
    if folder.user_id != owner.id:
        children = [f for f in children if can_access(db, owner, ItemRef.folder(f.id))]
        files = [f for f in files if can_access(db, owner, ItemRef.file(f.id))]
    return FolderContents(folder=folder, children=list(children), files=list(files))


def rename_or_move(db: Session, owner: OwnerContext, folder_id: int, changes: Dict[str, Any]) -> Folder:
    """Apply the supplied subset of ``name``, ``parent_id`` and ``is_starred``.

    A ``parent_id`` key that is present with value ``None`` moves the folder
    to root level; an absent key leaves the parent alone.
    """
    folder = _folder_for_update(db, owner, folder_id)

    moving = "parent_id" in changes
    target_parent = changes["parent_id"] if moving else folder.parent_id
    if moving:
        if folder.is_root:
            raise Forbidden("Cannot move root folder")
        if target_parent == folder.id:
            raise Conflict("Folder cannot be its own parent")
        if target_parent is not None:
            try:
                get_owned_folder(db, owner, target_parent)
            except NotFound:
                raise NotFound("Parent folder not found")
            if _is_within(db, target_parent, folder.id):
                raise Conflict("Cannot move a folder into one of its own subfolders")

    new_name = folder.name
    if changes.get("name") is not None:
        new_name = _clean_name(changes["name"])

    renaming = new_name != folder.name
    if (renaming or moving) and not folder.is_root and not folder.is_trash:
        if _sibling_exists(db, owner.id, new_name, target_parent, exclude_id=folder.id):
            raise Conflict("A folder with this name already exists")

    folder.name = new_name
    if moving:
        folder.parent_id = target_parent
    if changes.get("is_starred") is not None:
        folder.is_starred = changes["is_starred"]

    db.commit()
    db.refresh(folder)
    return folder


def set_starred(db: Session, owner: OwnerContext, folder_id: int, starred: bool) -> Folder:
    folder = _folder_for_update(db, owner, folder_id)
    folder.is_starred = starred
    db.commit()
    db.refresh(folder)
    return folder


def soft_delete(db: Session, owner: OwnerContext, folder_id: int) -> Folder:
    folder = _folder_for_update(db, owner, folder_id)
    if folder.is_root:
        raise Forbidden("Cannot delete root folder")
    folder.is_trash = True
    db.commit()
    db.refresh(folder)
    return folder


def restore(db: Session, owner: OwnerContext, folder_id: int) -> Folder:
    folder = _folder_for_update(db, owner, folder_id)
    if folder.is_trash and _sibling_exists(db, owner.id, folder.name, folder.parent_id, exclude_id=folder.id):
        raise Conflict("A folder with this name already exists")
    folder.is_trash = False
    db.commit()
    db.refresh(folder)
    return folder


def purge_subtrees(db: Session, owner: OwnerContext, folder_ids: Iterable[int]) -> PurgeResult:
    """Delete the rows of ``folder_ids`` and everything beneath them.

    Does not commit and does not touch the blob host: the caller hands
    ``blob_ids`` to ``blobstore.discard`` once the transaction is committed.
    """
    top = set(folder_ids)
    if not top:
        return PurgeResult()
    all_ids = top | descendant_folder_ids(db, top)

    files = db.scalars(select(File).where(File.folder_id.in_(all_ids))).all()
    file_ids = [file.id for file in files]
    freed = sum(file.size for file in files)

    share_targets = [SharedItem.folder_id.in_(all_ids)]
    if file_ids:
        share_targets.append(SharedItem.file_id.in_(file_ids))
    db.execute(delete(SharedItem).where(or_(*share_targets)).execution_options(synchronize_session=False))
    if file_ids:
        db.execute(delete(File).where(File.id.in_(file_ids)).execution_options(synchronize_session=False))
    db.execute(delete(Folder).where(Folder.id.in_(all_ids)).execution_options(synchronize_session=False))
    storage.release(db, owner, freed)

    return PurgeResult(
        deleted_files=len(files),
        deleted_folders=len(all_ids),
        freed_storage=freed,
        blob_ids=[file.public_id for file in files],
    )


def purge(db: Session, blobs: BlobStore, owner: OwnerContext, folder_id: int) -> PurgeResult:
    folder = _folder_for_update(db, owner, folder_id)
    if folder.is_root:
        raise Forbidden("Cannot delete root folder")

    try:
        result = purge_subtrees(db, owner, [folder.id])
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.expire_all()
    discard(blobs, result.blob_ids)
    logger.info(
        "Purged folder {} for user {}: {} folders, {} files, {} bytes freed",
        folder_id, owner.id, result.deleted_folders, result.deleted_files, result.freed_storage,
    )
    return result


def list_children(
    db: Session,
    owner: OwnerContext,
    parent_id: Optional[int] = None,
    is_trash: Optional[bool] = None,
) -> List[Folder]:
    stmt = (
        select(Folder)
        .where(Folder.user_id == owner.id)
        .where(Folder.is_root.is_(False))
    )
    if parent_id is None:
        stmt = stmt.where(Folder.parent_id.is_(None))
    else:
        stmt = stmt.where(Folder.parent_id == parent_id)
    if is_trash is not None:
        stmt = stmt.where(Folder.is_trash == is_trash)
    return list(db.scalars(stmt.order_by(Folder.name.asc())).all())


def breadcrumbs(db: Session, owner: OwnerContext, folder_id: int) -> List[Folder]:
    trail: List[Folder] = []
    visited: Set[int] = set()
    current_id: Optional[int] = folder_id
    while current_id is not None and current_id not in visited:
        visited.add(current_id)
        folder = db.scalar(
            select(Folder)
            .where(Folder.id == current_id)
            .where(Folder.user_id == owner.id)
            .where(Folder.is_root.is_(False))
        )
        if folder is None:
            break
        trail.insert(0, folder)
        current_id = folder.parent_id
    return trail


def list_starred(db: Session, owner: OwnerContext) -> List[Folder]:
    return list(
        db.scalars(
            select(Folder)
            .where(Folder.user_id == owner.id)
            .where(Folder.is_starred.is_(True))
            .where(Folder.is_trash.is_(False))
            .order_by(Folder.updated_at.desc())
        ).all()
    )
