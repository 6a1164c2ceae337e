"""Shared pytest fixtures for all tests."""

import datetime
import os

os.environ.setdefault("CARBONSYNC_DATABASE_URL", "sqlite://")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from carbonsync.auth import create_access_token, get_password_hash  # noqa: E402
from carbonsync.chain import MockWalletGateway, get_wallet_gateway  # noqa: E402
from carbonsync.database import Base, get_db  # noqa: E402
from carbonsync.ipfs import get_ipfs_client  # noqa: E402
from carbonsync.main import app  # noqa: E402
from carbonsync.models import Organization, Project, User  # noqa: E402

PASSWORD = "correct horse battery staple"
FIXED_IPFS_HASH = "QmTestHash000000000000000000000000000000000000"


def utc(*args):
    return datetime.datetime(*args, tzinfo=datetime.timezone.utc)


def new_project(**overrides) -> Project:
    """Build a transient Project with sensible defaults."""
    fields = {
        "title": "Sundarbans Mangrove Restoration",
        "project_type": "reforestation",
        "location_name": "West Bengal, India",
        "latitude": 21.9497,
        "longitude": 89.1833,
        "area_hectares": 10.0,
        "tree_species": ["Rhizophora mucronata", "Avicennia marina"],
        "media_urls": [],
        "submitted_by": 1,
        "created_at": utc(2024, 1, 1, 9, 0),
        "status": "pending",
        "verification_date": None,
        "verification_notes": None,
        "estimated_co2_tons": 100.0,
    }
    fields.update(overrides)
    return Project(**fields)


class FakeIPFSClient:
    ipfs_hash = FIXED_IPFS_HASH

    def __init__(self):
        self.uploads = []

    def upload_json(self, payload):
        self.uploads.append(payload)
        return self.ipfs_hash

    def fetch_json(self, ipfs_hash):
        if ipfs_hash != self.ipfs_hash or not self.uploads:
            return None
        return self.uploads[-1]


@pytest.fixture
def user_password():
    return PASSWORD


@pytest.fixture
def project_factory():
    return new_project


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def fake_ipfs():
    return FakeIPFSClient()


@pytest.fixture
def wallet_gateway():
    return MockWalletGateway()


@pytest.fixture
def client(session_factory, fake_ipfs, wallet_gateway):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ipfs_client] = lambda: fake_ipfs
    app.dependency_overrides[get_wallet_gateway] = lambda: wallet_gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create_user(db, email, role, organization_name):
    org = Organization(organization_name=organization_name, organization_type="NGO")
    db.add(org)
    db.flush()
    user = User(
        email=email,
        password_hash=get_password_hash(PASSWORD),
        full_name=email.split("@")[0].title(),
        role=role,
        organization_id=org.organization_id,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin_user(db_session):
    return _create_user(db_session, "admin@carbonsync.org", "admin", "CarbonSync Registry")


@pytest.fixture
def ngo_user(db_session):
    return _create_user(db_session, "field@bluecarbon.org", "ngo", "Blue Carbon Trust")


@pytest.fixture
def other_ngo_user(db_session):
    return _create_user(db_session, "team@greenbelt.org", "ngo", "Green Belt Movement")


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
def admin_headers(admin_user):
    return auth_headers(admin_user)


@pytest.fixture
def ngo_headers(ngo_user):
    return auth_headers(ngo_user)


@pytest.fixture
def stored_project(db_session, ngo_user):
    """Persist a project submitted by ``ngo_user``."""

    def _store(**overrides):
        overrides.setdefault("submitted_by", ngo_user.user_id)
        project = new_project(**overrides)
        db_session.add(project)
        db_session.commit()
        db_session.refresh(project)
        return project

    return _store
