import os
import tempfile

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STATIC_DIR"] = tempfile.mkdtemp(prefix="ecoreport-static-")
os.environ["GEMINI_API_KEY"] = ""
os.environ["ADMIN_EMAILS"] = "admin@example.com"

import pytest

import models
from database import Base, SessionLocal, engine


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    def _make(email="alice@example.com", name="Alice"):
        user = models.User(email=email, name=name, password_hash="not-a-real-hash")
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make
