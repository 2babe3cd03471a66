"""Pytest fixtures: an in-memory database, a temp-dir blob store, users and an API client."""
import time

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from clouddrive import auth, blobstore
from clouddrive.blobstore import LocalBlobStore, get_blob_store
from clouddrive.database import Base, get_db, make_engine
from clouddrive.errors import DependencyUnavailable
from clouddrive.folders import ensure_root_folder
from clouddrive.main import app
from clouddrive.models import OwnerContext, User

PASSWORD = "Secret1!"


class FlakyBlobStore(LocalBlobStore):
    """Uploads work, deletes always fail."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.delete_attempts = []

    def delete(self, public_id, timeout=None):
        self.delete_attempts.append(public_id)
        raise DependencyUnavailable("blob host unreachable")


class SlowBlobStore(LocalBlobStore):
    """Uploads never finish within the timeout."""

    def upload(self, data, key, timeout=None):
        return self._call("upload", lambda: time.sleep(0.5), 0.01)


class SlowDeleteBlobStore(LocalBlobStore):
    """Deletes hang for a while before succeeding."""

    delay = 1.0

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.deleted = []

    def delete(self, public_id, timeout=None):
        time.sleep(self.delay)
        super().delete(public_id, timeout)
        self.deleted.append(public_id)


@pytest.fixture(autouse=True)
def settle_blob_cleanup():
    yield
    blobstore.drain(timeout=5)


@pytest.fixture
def engine():
    engine = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def blobs(tmp_path):
    return LocalBlobStore(root=tmp_path / "blobs", base_url="http://testserver/blobs")


@pytest.fixture
def flaky_blobs(tmp_path):
    return FlakyBlobStore(root=tmp_path / "flaky", base_url="http://testserver/blobs")


@pytest.fixture
def slow_blobs(tmp_path):
    return SlowBlobStore(root=tmp_path / "slow", base_url="http://testserver/blobs")


@pytest.fixture
def slow_delete_blobs(tmp_path):
    return SlowDeleteBlobStore(root=tmp_path / "blobs", base_url="http://testserver/blobs")


def make_user(db, email, name=None):
    user = User(
        email=email,
        name=name,
        hashed_password=auth.get_password_hash(PASSWORD),
        used_storage=0,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    ensure_root_folder(db, user)
    return user


@pytest.fixture
def alice(db):
    return make_user(db, "alice@example.com", "Alice")


@pytest.fixture
def bob(db):
    return make_user(db, "bob@example.com", "Bob")


@pytest.fixture
def carol(db):
    return make_user(db, "carol@example.com")


@pytest.fixture
def alice_ctx(alice):
    return OwnerContext.of(alice)


@pytest.fixture
def bob_ctx(bob):
    return OwnerContext.of(bob)


@pytest.fixture
def carol_ctx(carol):
    return OwnerContext.of(carol)


@pytest.fixture
def client(session_factory, blobs):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_blob_store] = lambda: blobs
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers(user):
    token = auth.create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for():
    return auth_headers


@pytest.fixture
def user_factory(db):
    def factory(email, name=None):
        return make_user(db, email, name)

    return factory
