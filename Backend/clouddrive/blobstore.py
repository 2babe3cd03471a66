"""External blob storage used for file contents.

The core only needs three calls from the blob host: store bytes under a key,
remove them again, and derive a thumbnail URL. ``LocalBlobStore`` keeps the
bytes on disk under ``UPLOAD_DIR`` and hands out URLs under
``PUBLIC_BASE_URL``. Every call runs on a worker thread and is abandoned
after ``timeout`` seconds, surfacing as ``DependencyUnavailable``.
"""
import re
import threading
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional, Protocol, Set, TypeVar

from loguru import logger

from . import config
from .errors import DependencyUnavailable

T = TypeVar("T")

THUMBNAIL_SIZE = 200

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class UploadResult:
    url: str
    public_id: str


class BlobStore(Protocol):
    def upload(self, data: bytes, key: str, timeout: Optional[float] = None) -> UploadResult:
        ...

    def delete(self, public_id: str, timeout: Optional[float] = None) -> None:
        ...

    def thumbnail_url(self, public_id: str) -> Optional[str]:
        ...


def safe_key(key: str) -> str:
    cleaned = _UNSAFE_KEY_CHARS.sub("_", key).strip("._")
    return cleaned or "file"


class LocalBlobStore:
    def __init__(
        self,
        root: str | Path = config.UPLOAD_DIR,
        base_url: str = config.PUBLIC_BASE_URL,
        folder: str = "drive",
        timeout: float = config.BLOB_TIMEOUT_SECONDS,
    ):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self.folder = folder
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="blobstore")

    def _call(self, action: str, fn: Callable[[], T], timeout: Optional[float]) -> T:
        limit = self.timeout if timeout is None else timeout
        future = self._executor.submit(fn)
        try:
            return future.result(timeout=limit)
        except FutureTimeout:
            future.cancel()
            raise DependencyUnavailable(f"Blob {action} timed out after {limit}s")
        except OSError as exc:
            raise DependencyUnavailable(f"Blob {action} failed: {exc}")

    def path_for(self, public_id: str) -> Path:
        path = (self.root / public_id).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"public id escapes blob root: {public_id!r}")
        return path

    def upload(self, data: bytes, key: str, timeout: Optional[float] = None) -> UploadResult:
        public_id = f"{self.folder}/{safe_key(key)}"

        def write() -> UploadResult:
            path = self.path_for(public_id)
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("wb") as buffer:
                buffer.write(data)
            return UploadResult(url=f"{self.base_url}/{public_id}", public_id=public_id)

        result = self._call("upload", write, timeout)
        logger.debug("Stored blob {} ({} bytes)", public_id, len(data))
        return result

    def delete(self, public_id: str, timeout: Optional[float] = None) -> None:
        def remove() -> None:
            path = self.path_for(public_id)
            if path.exists():
                path.unlink()

        self._call("delete", remove, timeout)

    def thumbnail_url(self, public_id: str) -> Optional[str]:
        return f"{self.base_url}/{public_id}?w={THUMBNAIL_SIZE}&h={THUMBNAIL_SIZE}&crop=fill&format=jpg"


def wants_thumbnail(content_type: str) -> bool:
    return content_type.startswith("image/") or content_type == "application/pdf"


def delete_quietly(blobs: BlobStore, public_id: str) -> bool:
    """Delete a blob, logging instead of raising. Returns whether it succeeded."""
    try:
        blobs.delete(public_id, timeout=config.BLOB_DELETE_TIMEOUT_SECONDS)
        return True
    except DependencyUnavailable as exc:
        logger.warning("Could not delete blob {}: {}", public_id, exc.message)
    except Exception:
        logger.exception("Unexpected error deleting blob {}", public_id)
    return False


_default_store: Optional[LocalBlobStore] = None


def get_blob_store() -> BlobStore:
    global _default_store
    if _default_store is None:
        _default_store = LocalBlobStore()
    return _default_store


_cleanup_pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="blob-cleanup")
_pending: Set[Future] = set()
_pending_lock = threading.Lock()


def _forget(future: Future) -> None:
    with _pending_lock:
        _pending.discard(future)


def discard(blobs: BlobStore, public_ids: Iterable[str]) -> None:
    """Delete blobs in the background without waiting on the blob host.

    Call only after the rows pointing at them are committed away. Failures
    are logged by ``delete_quietly``.
    """
    for public_id in public_ids:
        future = _cleanup_pool.submit(delete_quietly, blobs, public_id)
        with _pending_lock:
            _pending.add(future)
        future.add_done_callback(_forget)


def drain(timeout: Optional[float] = None) -> bool:
    """Wait for queued background deletes. Returns False if some are still running."""
    with _pending_lock:
        pending = list(_pending)
    if not pending:
        return True
    _, not_done = wait(pending, timeout=timeout)
    return not not_done
