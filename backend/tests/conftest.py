import os

os.environ.setdefault("ACCESS_TOKEN_SECRET", "test-access-secret")
os.environ.setdefault("REFRESH_TOKEN_SECRET", "test-refresh-secret")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from collections.abc import Generator
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from backoffice.core.clock import utc_now_naive
from backoffice.core.errors import UpstreamFailure
from backoffice.core.metrics import reset_metrics
from backoffice.core.security import create_access_token, hash_password
from backoffice.db import models  # noqa: F401
from backoffice.db.base import Base
from backoffice.db.models.client import Client
from backoffice.db.models.user import User
from backoffice.db.session import get_db
from backoffice.main import app
from backoffice.storage.object_store import StoredObject, get_object_store

PASSWORD = "correct-horse"


class FakeObjectStore:
    """In-memory stand-in for the S3 wrapper; records every call."""

    def __init__(self, bucket: str = "test-bucket") -> None:
        self.bucket = bucket
        self.objects: dict[str, dict] = {}
        self.calls: list[tuple] = []
        self.fail = False

    def _check(self, action: str) -> None:
        if self.fail:
            raise UpstreamFailure("Storage operation failed")

    def put(self, key, body, content_type=None, metadata=None):
        self.calls.append(("put", key))
        self._check("put")
        self.objects[key] = {
            "body": body,
            "content_type": content_type,
            "metadata": metadata or {},
            "last_modified": datetime.now(),
        }
        return key

    def list(self, prefix, max_keys=50):
        self.calls.append(("list", prefix))
        self._check("list")
        items = [
            StoredObject(key=key, size=len(obj["body"]), last_modified=obj["last_modified"])
            for key, obj in sorted(self.objects.items())
            if key.startswith(prefix)
        ]
        return items[:max_keys]

    def exists(self, key):
        self.calls.append(("exists", key))
        return key in self.objects

    def delete(self, key):
        self.calls.append(("delete", key))
        self._check("delete")
        self.objects.pop(key, None)

    def delete_prefix(self, prefix):
        self.calls.append(("delete_prefix", prefix))
        self._check("delete_prefix")
        doomed = [key for key in self.objects if key.startswith(prefix)]
        for key in doomed:
            del self.objects[key]
        return len(doomed)

    def signed_download_url(self, key, expires_in=600, filename=None):
        self.calls.append(("presign", key))
        self._check("presign")
        return f"https://storage.test/{key}?ttl={expires_in}"


@pytest.fixture(autouse=True)
def _clean_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    try:
        yield factory
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def object_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture()
def api(session_factory, object_store) -> Generator[TestClient, None, None]:
    def _get_db() -> Generator[Session, None, None]:
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_object_store] = lambda: object_store
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def make_user(db_session):
    def _make_user(
        email: str,
        *,
        role: str = "user",
        active: bool = True,
        activated: bool | None = None,
        name: str | None = None,
        document_number: str | None = None,
        password: str = PASSWORD,
    ) -> User:
        activated = active if activated is None else activated
        user = User(
            email=email,
            name=name or email.split("@")[0],
            hashed_password=hash_password(password),
            role=role,
            is_active=active,
            activated_at=utc_now_naive() if activated else None,
            document_number=document_number,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def make_client(db_session):
    def _make_client(user: User, document_number: str, *, full_name: str | None = None) -> Client:
        client = Client(
            user_id=user.id,
            full_name=full_name or user.name,
            document_number=document_number,
            email=user.email,
        )
        db_session.add(client)
        db_session.commit()
        db_session.refresh(client)
        return client

    return _make_client


def auth_header(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user)}"}


def success_data(response):
    payload = response.json()
    assert payload["ok"] is True, payload
    assert "request_id" in payload
    return payload["data"]


def error_of(response) -> dict:
    payload = response.json()
    assert payload["ok"] is False, payload
    assert "request_id" in payload
    return payload["error"]
