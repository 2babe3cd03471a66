from datetime import timedelta
from typing import Annotated, Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from . import config, folders
from .database import get_db
from .errors import Unauthorized
from .models import OwnerContext, User, utcnow

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

DBDep = Annotated[Session, Depends(get_db)]


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = utcnow() + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def decode_access_token(token: str) -> int:
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
        subject = payload.get("sub")
        if subject is None:
            raise Unauthorized("Could not validate credentials")
        return int(subject)
    except (JWTError, ValueError):
        raise Unauthorized("Could not validate credentials")


def get_current_user(db: DBDep, token: Optional[str] = Depends(oauth2_scheme)) -> User:
    if not token:
        raise Unauthorized()
    user = db.get(User, decode_access_token(token))
    if user is None:
        raise Unauthorized("Could not validate credentials")
    folders.ensure_root_folder(db, user)
    return user


def get_owner_context(user: User = Depends(get_current_user)) -> OwnerContext:
    return OwnerContext.of(user)


CurrentUser = Annotated[User, Depends(get_current_user)]
Owner = Annotated[OwnerContext, Depends(get_owner_context)]
