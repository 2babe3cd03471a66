from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import auth
from .errors import Conflict, InvalidRequest, NotFound, Unauthorized
from .folders import ensure_root_folder
from .models import OwnerContext, User
from .sharing import normalize_email


def get_by_email(db: Session, email: str) -> Optional[User]:
    return db.scalar(select(User).where(User.email == normalize_email(email)))


def register(db: Session, name: str, email: str, password: str) -> User:
    email = normalize_email(email)
    if get_by_email(db, email) is not None:
        raise Conflict("Email already in use")

    user = User(
        name=(name or "").strip() or None,
        email=email,
        hashed_password=auth.get_password_hash(password),
        used_storage=0,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    ensure_root_folder(db, user)
    return user


def authenticate(db: Session, email: str, password: str) -> User:
    user = get_by_email(db, email)
    if user is None or not auth.verify_password(password, user.hashed_password):
        raise Unauthorized("Incorrect email or password")
    return user


def update_profile(db: Session, owner: OwnerContext, name: str) -> User:
    name = (name or "").strip()
    if not name:
        raise InvalidRequest("Name is required")
    user = db.get(User, owner.id)
    if user is None:
        raise NotFound("User not found")
    user.name = name
    db.commit()
    db.refresh(user)
    return user
