from __future__ import annotations

import os
import tempfile
from datetime import date
from typing import Generator, Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.database import Base, get_db
from app.core.deps import get_current_user, get_today
from app.main import app
from app import models


# Clock pinned for every request; tests that need another day pass `today=` explicitly
TODAY = date(2025, 1, 5)


@pytest.fixture(scope="session")
def test_db_url() -> Generator[str, Any, Any]:
    # temp-file SQLite so the developer's db.sqlite3 is never touched
    fd, path = tempfile.mkstemp(prefix="pfm_test_", suffix=".sqlite3")
    os.close(fd)
    url = f"sqlite:///{path}"
    yield url
    try:
        os.remove(path)
    except OSError:
        pass


@pytest.fixture(scope="session")
def engine(test_db_url: str):
    eng = create_engine(test_db_url, connect_args={"check_same_thread": False})
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture(scope="session")
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="function")
def db_session(engine, session_factory) -> Generator[Any, Any, Any]:
    session = session_factory()
    # demo user(1) owns everything by default; other@example.com(2) checks ownership
    for email, name in (("demo@example.com", "Demo"), ("other@example.com", "Other")):
        user = models.User(email=email, is_active=True)
        session.add(user)
        session.flush()
        session.add(models.UserProfile(user_id=user.id, display_name=name, base_currency="BRL"))
    session.commit()

    try:
        yield session
    finally:
        session.close()
        with engine.begin() as conn:
            if engine.dialect.name == "sqlite":
                conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
            for tbl in reversed(Base.metadata.sorted_tables):
                conn.execute(tbl.delete())
            if engine.dialect.name == "sqlite":
                conn.exec_driver_sql("PRAGMA foreign_keys=ON")


@pytest.fixture()
def demo_user(db_session) -> models.User:
    return db_session.query(models.User).filter_by(email="demo@example.com").one()


@pytest.fixture()
def other_user(db_session) -> models.User:
    return db_session.query(models.User).filter_by(email="other@example.com").one()


@pytest.fixture(autouse=True)
def override_dependency(db_session):
    # FastAPI DI override
    def _get_db_override():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = _get_db_override
    app.dependency_overrides[get_today] = lambda: TODAY
    yield
    app.dependency_overrides.clear()


@pytest.fixture()
def act_as(db_session):
    """Switch the request identity: ``act_as(user)``."""
    def _act_as(user: models.User) -> None:
        app.dependency_overrides[get_current_user] = lambda: user

    return _act_as


@pytest.fixture()
def client(db_session):
    from fastapi.testclient import TestClient
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def make_account(db_session, demo_user):
    def _make(balance=1000, name="Conta Corrente", user=None, is_active=True) -> models.Account:
        acc = models.Account(
            user_id=(user or demo_user).id,
            name=name,
            current_balance=balance,
            is_active=is_active,
        )
        db_session.add(acc)
        db_session.commit()
        db_session.refresh(acc)
        return acc

    return _make
