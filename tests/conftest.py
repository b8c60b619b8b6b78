import os
import uuid
from unittest.mock import patch

# Configure the app for an in-memory database before anything imports it.
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["APPROVAL_SWEEPER_ENABLED"] = "false"
os.environ.setdefault("SMTP_HOST", "")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import app.models  # noqa: E402,F401
from app.db import Base, SessionLocal, engine  # noqa: E402
from app.models.ecm import (  # noqa: E402
    Category,
    Document,
    DocumentShare,
    StorageBucket,
    StorageProvider,
)
from app.models.person import Person  # noqa: E402
from app.models.rbac import Permission, PersonRole, Role, RolePermission  # noqa: E402
from app.services import approval_settings as approval_settings_service  # noqa: E402


@pytest.fixture()
def db_session():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def fresh_settings_cache():
    approval_settings_service.invalidate()
    yield
    approval_settings_service.invalidate()


@pytest.fixture(autouse=True)
def outbox_delay():
    """Keep post-commit dispatch away from a real broker."""
    with patch("app.tasks.events.dispatch_outbox.delay") as delay:
        yield delay


def _make_person(db_session, first_name="Test", last_name="User"):
    p = Person(
        first_name=first_name,
        last_name=last_name,
        email=f"{first_name.lower()}-{uuid.uuid4().hex[:8]}@example.com",
    )
    db_session.add(p)
    db_session.commit()
    db_session.refresh(p)
    return p


def _make_role(db_session, name, permission_keys=()):
    role = Role(name=name, description=f"{name} role")
    db_session.add(role)
    db_session.flush()
    for key in permission_keys:
        permission = db_session.query(Permission).filter(Permission.key == key).first()
        if permission is None:
            permission = Permission(key=key)
            db_session.add(permission)
            db_session.flush()
        db_session.add(RolePermission(role_id=role.id, permission_id=permission.id))
    db_session.commit()
    db_session.refresh(role)
    return role


def _add_to_role(db_session, person, role):
    db_session.add(PersonRole(person_id=person.id, role_id=role.id))
    db_session.commit()


def _make_share(db_session, document, creator, **kwargs):
    share = DocumentShare(
        document_id=document.id,
        share_code=kwargs.pop("share_code", uuid.uuid4().hex[:12]),
        created_by=creator.id,
        **kwargs,
    )
    db_session.add(share)
    db_session.commit()
    db_session.refresh(share)
    return share


@pytest.fixture()
def person(db_session):
    return _make_person(db_session, "Owner", "Person")


@pytest.fixture()
def admin_role(db_session):
    return _make_role(db_session, "Admin", ("Admin.Access",))


@pytest.fixture()
def provider(db_session):
    p = StorageProvider(name=f"provider-{uuid.uuid4().hex[:8]}", provider_type="minio")
    db_session.add(p)
    db_session.commit()
    db_session.refresh(p)
    return p


@pytest.fixture()
def bucket(db_session, provider):
    b = StorageBucket(provider_id=provider.id, path="reports")
    db_session.add(b)
    db_session.commit()
    db_session.refresh(b)
    return b


@pytest.fixture()
def category(db_session):
    c = Category(name=f"category-{uuid.uuid4().hex[:8]}")
    db_session.add(c)
    db_session.commit()
    db_session.refresh(c)
    return c


@pytest.fixture()
def document(db_session, person, provider, bucket, category):
    doc = Document(
        name="Quarterly report",
        file_name="report.pdf",
        content_type="application/pdf",
        file_size=1024 * 1024,
        category_id=category.id,
        storage_provider_id=provider.id,
        bucket_id=bucket.id,
        created_by=person.id,
    )
    db_session.add(doc)
    db_session.commit()
    db_session.refresh(doc)
    return doc


@pytest.fixture()
def share(db_session, document, person):
    return _make_share(db_session, document, person)


@pytest.fixture()
def client(db_session):
    from app.api.approvals import get_db
    from app.main import app

    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def person_factory(db_session):
    def _factory(first_name="Test", last_name="User"):
        return _make_person(db_session, first_name, last_name)

    return _factory


@pytest.fixture()
def role_factory(db_session):
    def _factory(name, permission_keys=(), members=()):
        role = _make_role(db_session, name, permission_keys)
        for member in members:
            _add_to_role(db_session, member, role)
        return role

    return _factory


@pytest.fixture()
def share_factory(db_session, document, person):
    def _factory(doc=None, creator=None, **kwargs):
        return _make_share(db_session, doc or document, creator or person, **kwargs)

    return _factory
