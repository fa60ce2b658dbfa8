import os
os.environ["TESTING"] = "1"
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import sys
from pathlib import Path
from datetime import datetime, timezone
from types import SimpleNamespace

import uuid

sys.path.append(str(Path(__file__).resolve().parents[2]))

from reforestation.main import app
from reforestation.database import Base, configure_sqlite, get_db
from reforestation import models, notify

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = configure_sqlite(
    create_engine(
        SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base.metadata.drop_all(bind=engine)
Base.metadata.create_all(bind=engine)

def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db

START = datetime(2024, 3, 1, tzinfo=timezone.utc)
END = datetime(2024, 3, 2, tzinfo=timezone.utc)
SQUARE = {
    "type": "Polygon",
    "coordinates": [[[72.0, 19.0], [72.1, 19.0], [72.1, 19.1], [72.0, 19.1], [72.0, 19.0]]],
}


def point_feature(lon: float = 72.8777, lat: float = 19.0760, *extra: float) -> dict:
    return {
        "type": "Feature",
        "properties": {},
        "geometry": {"type": "Point", "coordinates": [lon, lat, *extra]},
    }


@pytest.fixture(autouse=True)
def clear_outbox():
    notify.EMAIL_OUTBOX.clear()
    yield
    notify.EMAIL_OUTBOX.clear()

@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


def make_user(session, *, is_active: bool = True) -> models.User:
    suffix = uuid.uuid4().hex[:10]
    user = models.User(
        uid=f"usr_{suffix}",
        email=f"{suffix}@example.com",
        display_name=f"User {suffix}",
        is_active=is_active,
    )
    session.add(user)
    session.flush()
    return user


def add_member(session, project: models.Project, user: models.User, role: str) -> None:
    session.add(models.ProjectMember(project_id=project.id, user_id=user.id, role=role))
    session.flush()


def make_species(session, name: str | None = None) -> models.ScientificSpecies:
    suffix = uuid.uuid4().hex[:8]
    species = models.ScientificSpecies(
        uid=f"sspec_{suffix}",
        scientific_name=name or f"Species {suffix}",
    )
    session.add(species)
    session.flush()
    return species


@pytest.fixture
def project_setup():
    """
    Seed a project with an owner-contributor, an admin, a second contributor,
    an observer, a site and three catalog species; returns their ids.
    """

    session = TestingSessionLocal()
    try:
        owner = make_user(session)
        admin = make_user(session)
        contributor = make_user(session)
        observer = make_user(session)
        project = models.Project(
            uid=f"proj_{uuid.uuid4().hex[:10]}", name="Coastal restoration", created_by_id=owner.id
        )
        session.add(project)
        session.flush()
        add_member(session, project, owner, "contributor")
        add_member(session, project, admin, "admin")
        add_member(session, project, contributor, "contributor")
        add_member(session, project, observer, "observer")
        site = models.Site(uid=f"site_{uuid.uuid4().hex[:10]}", project_id=project.id, name="North plot")
        session.add(site)
        species = [make_species(session) for _ in range(3)]
        session.commit()
        return SimpleNamespace(
            project_id=project.id,
            project_uid=project.uid,
            owner_id=owner.id,
            admin_id=admin.id,
            contributor_id=contributor.id,
            observer_id=observer.id,
            site_id=site.id,
            site_uid=site.uid,
            species_ids=[row.id for row in species],
            species_names=[row.scientific_name for row in species],
        )
    finally:
        session.close()
