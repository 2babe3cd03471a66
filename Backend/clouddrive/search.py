from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from . import config
from .errors import InvalidRequest
from .models import File, Folder, ItemKind, OwnerContext


@dataclass
class SearchResult:
    id: int
    name: str
    type: ItemKind
    path: str
    file_type: Optional[str] = None


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def search(db: Session, owner: OwnerContext, query: Optional[str]) -> List[SearchResult]:
    """Case-insensitive substring match over the owner's folder and file names."""
    query = (query or "").strip()
    if not query:
        raise InvalidRequest("Query parameter 'q' is required")
    pattern = f"%{_escape_like(query.lower())}%"

    folders = db.scalars(
        select(Folder)
        .where(Folder.user_id == owner.id)
        .where(Folder.is_root.is_(False))
        .where(func.lower(Folder.name).like(pattern, escape="\\"))
        .order_by(Folder.name.asc())
        .limit(config.SEARCH_LIMIT)
    ).all()
    files = db.scalars(
        select(File)
        .where(File.user_id == owner.id)
        .where(func.lower(File.name).like(pattern, escape="\\"))
        .order_by(File.name.asc())
        .limit(config.SEARCH_LIMIT)
    ).all()

    results = [
        SearchResult(id=f.id, name=f.name, type=ItemKind.FOLDER, path=f"/dashboard/{f.id}")
        for f in folders
    ]
    results += [
        SearchResult(
            id=f.id,
            name=f.name,
            type=ItemKind.FILE,
            file_type=f.type,
            path=f"/dashboard/{f.folder_id}" if f.folder_id is not None else "/dashboard",
        )
        for f in files
    ]
    return results
