from contextlib import asynccontextmanager
from typing import Annotated, List, Optional

from fastapi import Depends, FastAPI, File as UploadFileParam, Form, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordRequestForm

from . import auth, config, schemas
from . import files as file_service
from . import folders as folder_service
from . import search as search_service
from . import sharing, storage, trash, users
from .blobstore import BlobStore, drain, get_blob_store
from .database import Base, engine
from .errors import InvalidRequest, register_exception_handlers
from .log import configure_logging
from .models import ItemKind, ItemRef

DBDep = auth.DBDep
Owner = auth.Owner
CurrentUser = auth.CurrentUser
BlobsDep = Annotated[BlobStore, Depends(get_blob_store)]


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    Base.metadata.create_all(bind=engine)
    yield
    drain(timeout=config.BLOB_DELETE_TIMEOUT_SECONDS)


app = FastAPI(title="Cloud Drive API (FastAPI + SQLAlchemy)", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


def _parse_folder_id(raw: Optional[str]) -> Optional[int]:
    # multipart fields arrive as strings; the web client sends "null" for root level
    if raw is None or raw in ("", "null", "undefined"):
        return None
    try:
        return int(raw)
    except ValueError:
        raise InvalidRequest("folderId must be an integer")


def _item_ref(file_id: Optional[int], folder_id: Optional[int]) -> ItemRef:
    if (file_id is None) == (folder_id is None):
        raise InvalidRequest("Either fileId or folderId must be provided")
    return ItemRef.file(file_id) if file_id is not None else ItemRef.folder(folder_id)


# ---------- Auth ----------

@app.get("/health")
def health():
    return {"ok": True}


@app.post("/auth/register", response_model=schemas.UserOut, status_code=201)
def register(body: schemas.UserCreate, db: DBDep):
    return users.register(db, body.name, body.email, body.password)


@app.post("/auth/login", response_model=schemas.Token)
def login(db: DBDep, form_data: OAuth2PasswordRequestForm = Depends()):
    user = users.authenticate(db, form_data.username, form_data.password)
    access_token = auth.create_access_token(data={"sub": str(user.id)})
    return schemas.Token(access_token=access_token)


@app.get("/auth/me", response_model=schemas.UserOut)
def read_users_me(current_user: CurrentUser):
    return current_user


# ---------- Users ----------

@app.get("/users/storage", response_model=schemas.StorageOut)
def get_storage(owner: Owner, db: DBDep):
    current = storage.usage(db, owner)
    return schemas.StorageOut(used_storage=current.used, storage_limit=current.limit)


@app.patch("/users/profile", response_model=schemas.UserOut)
def update_profile(body: schemas.ProfileUpdate, owner: Owner, db: DBDep):
    return users.update_profile(db, owner, body.name)


# ---------- Files ----------

@app.post("/files", response_model=schemas.FileOut, status_code=201)
def upload_file(
    owner: Owner,
    db: DBDep,
    blobs: BlobsDep,
    file: UploadFile = UploadFileParam(...),
    folderId: Optional[str] = Form(None),
):
    # one byte past the ceiling is enough to reject without buffering the rest
    data = file.file.read(config.MAX_FILE_SIZE + 1)
    return file_service.upload(
        db,
        blobs,
        owner,
        data,
        name=file.filename or "",
        content_type=file.content_type,
        folder_id=_parse_folder_id(folderId),
    )


@app.get("/files", response_model=List[schemas.FileOut])
def list_files(
    owner: Owner,
    db: DBDep,
    folderId: Optional[int] = None,
    isTrash: Optional[bool] = None,
):
    return file_service.list_files(db, owner, folder_id=folderId, is_trash=isTrash)


@app.get("/files/{file_id}", response_model=schemas.FileOut)
def get_file(file_id: int, owner: Owner, db: DBDep):
    return file_service.get_file(db, owner, file_id)


@app.put("/files/{file_id}", response_model=schemas.FileOut)
def update_file(file_id: int, body: schemas.FileUpdate, owner: Owner, db: DBDep):
    return file_service.update_file(db, owner, file_id, name=body.name, is_starred=body.is_starred)


@app.patch("/files/{file_id}", response_model=schemas.FileOut)
def patch_file(file_id: int, body: schemas.ItemPatch, owner: Owner, db: DBDep):
    if body.operation == "restore":
        return file_service.restore(db, owner, file_id)
    return file_service.set_starred(db, owner, file_id, body.operation == "star")


@app.delete("/files/{file_id}", response_model=schemas.DeleteResult)
def delete_file(file_id: int, owner: Owner, db: DBDep, blobs: BlobsDep, permanent: bool = False):
    if permanent:
        freed = file_service.purge(db, blobs, owner, file_id)
        return schemas.DeleteResult(message="File permanently deleted", permanent=True, freed_storage=freed)
    file_service.soft_delete(db, owner, file_id)
    return schemas.DeleteResult(message="File moved to trash", permanent=False)


# ---------- Folders ----------

@app.post("/folders", response_model=schemas.FolderOut, status_code=201)
def create_folder(body: schemas.FolderCreate, owner: Owner, db: DBDep):
    return folder_service.create_folder(db, owner, body.name, body.parent_id)


@app.get("/folders", response_model=List[schemas.FolderOut])
def list_folders(
    owner: Owner,
    db: DBDep,
    parentId: Optional[int] = None,
    isTrash: Optional[bool] = None,
):
    return folder_service.list_children(db, owner, parent_id=parentId, is_trash=isTrash)


@app.get("/folders/{folder_id}", response_model=schemas.FolderDetail)
def get_folder(folder_id: int, owner: Owner, db: DBDep):
    contents = folder_service.get_folder(db, owner, folder_id)
    detail = schemas.FolderDetail.model_validate(contents.folder)
    detail.children = [schemas.FolderOut.model_validate(f) for f in contents.children]
    detail.files = [schemas.FileOut.model_validate(f) for f in contents.files]
    return detail


@app.put("/folders/{folder_id}", response_model=schemas.FolderOut)
def update_folder(folder_id: int, body: schemas.FolderUpdate, owner: Owner, db: DBDep):
    return folder_service.rename_or_move(db, owner, folder_id, body.model_dump(exclude_unset=True))


@app.patch("/folders/{folder_id}", response_model=schemas.FolderOut)
def patch_folder(folder_id: int, body: schemas.ItemPatch, owner: Owner, db: DBDep):
    if body.operation == "restore":
        return folder_service.restore(db, owner, folder_id)
    return folder_service.set_starred(db, owner, folder_id, body.operation == "star")


@app.delete("/folders/{folder_id}", response_model=schemas.DeleteResult)
def delete_folder(folder_id: int, owner: Owner, db: DBDep, blobs: BlobsDep, permanent: bool = False):
    if permanent:
        result = folder_service.purge(db, blobs, owner, folder_id)
        return schemas.DeleteResult(
            message="Folder and all contents permanently deleted",
            permanent=True,
            freed_storage=result.freed_storage,
        )
    folder_service.soft_delete(db, owner, folder_id)
    return schemas.DeleteResult(message="Folder moved to trash", permanent=False)


@app.get("/folders/{folder_id}/breadcrumbs", response_model=List[schemas.FolderOut])
def get_breadcrumbs(folder_id: int, owner: Owner, db: DBDep):
    return folder_service.breadcrumbs(db, owner, folder_id)


# ---------- Trash / starred / recent / search ----------

@app.get("/trash", response_model=schemas.TrashOut)
def get_trash(owner: Owner, db: DBDep):
    trashed_folders, trashed_files = trash.list_trash(db, owner)
    return schemas.TrashOut(folders=trashed_folders, files=trashed_files)


@app.delete("/trash/empty", response_model=schemas.EmptyTrashOut)
def empty_trash(owner: Owner, db: DBDep, blobs: BlobsDep):
    result = trash.empty_trash(db, blobs, owner)
    return schemas.EmptyTrashOut(
        message="Trash emptied successfully",
        deleted_files=result.deleted_files,
        deleted_folders=result.deleted_folders,
        freed_storage=result.freed_storage,
    )


@app.get("/starred", response_model=schemas.StarredOut)
def get_starred(owner: Owner, db: DBDep):
    return schemas.StarredOut(
        folders=folder_service.list_starred(db, owner),
        files=file_service.list_starred(db, owner),
    )


@app.get("/recent", response_model=List[schemas.FileOut])
def get_recent(owner: Owner, db: DBDep):
    return file_service.list_recent(db, owner)


@app.get("/search", response_model=List[schemas.SearchResultOut])
def search(owner: Owner, db: DBDep, q: Optional[str] = Query(None)):
    return search_service.search(db, owner, q)


# ---------- Sharing ----------

@app.post("/share", response_model=schemas.ShareCreated, status_code=201)
def create_share(body: schemas.ShareCreate, owner: Owner, db: DBDep):
    shared_item = sharing.share(db, owner, body.ref(), body.shared_with_email, body.permission)
    return schemas.ShareCreated(
        message="Item shared successfully",
        share_id=shared_item.id,
        token=shared_item.token,
    )


@app.get("/share", response_model=List[schemas.ShareOut])
def list_shares(
    owner: Owner,
    db: DBDep,
    fileId: Optional[int] = None,
    folderId: Optional[int] = None,
):
    return sharing.list_for_item(db, owner, _item_ref(fileId, folderId))


@app.get("/share/user", response_model=List[schemas.SharedWithMeOut])
def shared_with_me(owner: Owner, db: DBDep):
    out = []
    for entry in sharing.list_shared_with_me(db, owner):
        file_fields = {}
        if entry.item_type is ItemKind.FILE:
            file_fields = dict(
                type=entry.item.type,
                size=entry.item.size,
                url=entry.item.url,
                thumbnail_url=entry.item.thumbnail_url,
            )
        out.append(
            schemas.SharedWithMeOut(
                id=entry.share.id,
                item_id=entry.item.id,
                item_type=entry.item_type,
                item_name=entry.item.name,
                created_at=entry.item.created_at,
                shared_by=schemas.SharerOut(
                    id=entry.shared_by.id,
                    name=entry.shared_by.name or entry.shared_by.email,
                ),
                permission=entry.share.permission,
                **file_fields,
            )
        )
    return out


@app.get("/share/invitation/{token}", response_model=schemas.InvitationOut)
def get_invitation(token: str, owner: Owner, db: DBDep):
    details = sharing.get_invitation(db, token)
    return schemas.InvitationOut(
        id=details.id,
        item_type=details.item_type,
        item_name=details.item_name,
        shared_by=details.shared_by,
        permission=details.permission,
        expires_at=details.expires_at,
    )


@app.post("/share/invitation/{token}", response_model=schemas.InvitationAccepted)
def accept_invitation(token: str, owner: Owner, db: DBDep):
    shared_item = sharing.accept_invitation(db, owner, token)
    return schemas.InvitationAccepted(message="Share invitation accepted", id=shared_item.id)


@app.get("/share/{share_id}", response_model=schemas.ShareOut)
def get_share(share_id: int, owner: Owner, db: DBDep):
    return sharing.get_share(db, owner, share_id)


@app.put("/share/{share_id}", response_model=schemas.ShareOut)
def update_share(share_id: int, body: schemas.SharePermissionUpdate, owner: Owner, db: DBDep):
    return sharing.update_permission(db, owner, share_id, body.permission)


@app.delete("/share/{share_id}", response_model=schemas.MessageOut)
def delete_share(share_id: int, owner: Owner, db: DBDep):
    sharing.revoke(db, owner, share_id)
    return schemas.MessageOut(message="Share deleted successfully")
