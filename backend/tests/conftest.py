"""Shared fixtures: isolated in-memory databases for the server and the device."""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOCAL_DATABASE_URL"] = "sqlite://"
os.environ["SEED_DEMO_DATA"] = "false"

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.models.base import Base, SessionLocal, engine
from app.services.local_store import LocalStore


@pytest.fixture(autouse=True)
def fresh_server_db():
    """Every test starts from empty server tables."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture()
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture()
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def store():
    return LocalStore("sqlite://")


@pytest.fixture()
def demo_user(client):
    resp = client.post("/api/v1/users/", json={"name": "Asha Devi", "phone": "9000000001", "language": "hi"})
    assert resp.status_code == 201
    return resp.json()
