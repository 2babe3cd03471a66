from dataclasses import dataclass

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from . import config
from .errors import NotFound, PayloadTooLarge, QuotaExceeded
from .models import OwnerContext, User


@dataclass(frozen=True)
class StorageUsage:
    used: int
    limit: int

    @property
    def available(self) -> int:
        return max(self.limit - self.used, 0)


def get_used_storage(db: Session, owner: OwnerContext) -> int:
    used = db.scalar(select(User.used_storage).where(User.id == owner.id))
    if used is None:
        raise NotFound("User not found")
    return used


def usage(db: Session, owner: OwnerContext) -> StorageUsage:
    return StorageUsage(used=get_used_storage(db, owner), limit=config.STORAGE_LIMIT)


def ensure_within_limits(db: Session, owner: OwnerContext, size: int) -> None:
    if size > config.MAX_FILE_SIZE:
        raise PayloadTooLarge(f"File size exceeds {config.MAX_FILE_SIZE // config.MIB}MB limit")
    if get_used_storage(db, owner) + size > config.STORAGE_LIMIT:
        raise QuotaExceeded()


def charge(db: Session, owner: OwnerContext, size: int) -> None:
    """Add ``size`` bytes to the owner's usage, refusing to cross the quota.

    The check and the increment are one statement, so two concurrent uploads
    cannot both squeeze under the limit. The caller commits.
    """
    result = db.execute(
        update(User)
        .where(User.id == owner.id)
        .where(User.used_storage + size <= config.STORAGE_LIMIT)
        .values(used_storage=User.used_storage + size)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise QuotaExceeded()


def release(db: Session, owner: OwnerContext, size: int) -> None:
    if size <= 0:
        return
    db.execute(
        update(User)
        .where(User.id == owner.id)
        .values(
            used_storage=case(
                (User.used_storage < size, 0),
                else_=User.used_storage - size,
            )
        )
        .execution_options(synchronize_session=False)
    )
