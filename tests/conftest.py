import os
import uuid
from datetime import datetime

import pytest
import pytz

# Pin configuration before the application modules read it
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["TZ_DEFAULT"] = "America/Vancouver"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["RATE_LIMIT"] = "10000/minute"
os.environ["ENABLE_PUSH"] = "true"
os.environ["ENABLE_EMAIL"] = "false"
os.environ["OVERTIME_THRESHOLD_MINUTES"] = "2280"
os.environ["CLOCK_GRACE_MINUTES"] = "30"

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cleanops.db import Base, get_db
from cleanops.main import app
from cleanops.auth.router import ensure_role
from cleanops.auth.security import create_access_token, get_password_hash
from cleanops.models.models import Client, Job, Site, User


UTC = pytz.UTC


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def make_user(db):
    def _make_user(role: str, name: str = None, email: str = None, password: str = "secret123") -> User:
        suffix = uuid.uuid4().hex[:8]
        user = User(
            email=email or f"{role.lower()}-{suffix}@harbourclean.com",
            name=name or f"{role.title()} {suffix}",
            password_hash=get_password_hash(password),
            employee_id=f"E-{suffix}",
        )
        user.roles.append(ensure_role(db, role))
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make_user


@pytest.fixture
def auth_headers():
    def _auth_headers(user: User) -> dict:
        token = create_access_token(str(user.id), [r.name for r in user.roles])
        return {"Authorization": f"Bearer {token}"}
    return _auth_headers


@pytest.fixture
def hr(make_user):
    return make_user("HR", name="Harriet HR")


@pytest.fixture
def supervisor(make_user):
    return make_user("SUPERVISOR", name="Sam Supervisor")


@pytest.fixture
def cleaner(make_user):
    return make_user("CLEANER", name="Casey Cleaner")


@pytest.fixture
def site(db, hr):
    client_row = Client(name="Harbour Offices", created_by=hr.id)
    db.add(client_row)
    db.flush()
    site = Site(
        client_id=client_row.id,
        name="Harbour Tower",
        lat=49.2827,
        lng=-123.1207,
        geofence_radius_meters=150,
        created_by=hr.id,
    )
    db.add(site)
    db.commit()
    db.refresh(site)
    return site


@pytest.fixture
def make_job(db, site, hr):
    def _make_job(
        status: str = "PUBLISHED",
        cleaner: User = None,
        start: datetime = utc(2024, 3, 6, 17, 0),
        end: datetime = utc(2024, 3, 7, 1, 0),
    ) -> Job:
        job = Job(
            site_id=site.id,
            scheduled_start=start,
            scheduled_end=end,
            assigned_cleaner_id=cleaner.id if cleaner else None,
            status=status,
            created_by=hr.id,
        )
        db.add(job)
        db.commit()
        db.refresh(job)
        return job
    return _make_job
