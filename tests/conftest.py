import os

# settings are read once, before the app modules import them
os.environ.setdefault("CACHE_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "warning")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from flagsvc.deps import get_db, get_recorder
from flagsvc.main import app
from flagsvc.services.recorder import SqlEvaluationRecorder

SCHEMA = [
    """CREATE TABLE environments (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        sdk_key TEXT UNIQUE NOT NULL
    )""",
    """CREATE TABLE feature_flags (
        id TEXT PRIMARY KEY,
        environment_id TEXT NOT NULL REFERENCES environments(id),
        key TEXT NOT NULL,
        name TEXT NOT NULL,
        description TEXT,
        enabled BOOLEAN NOT NULL DEFAULT 0,
        rollout_percentage INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP,
        updated_at TIMESTAMP,
        UNIQUE (environment_id, key)
    )""",
    """CREATE TABLE flag_rules (
        id TEXT PRIMARY KEY,
        flag_id TEXT NOT NULL REFERENCES feature_flags(id),
        rule_type TEXT NOT NULL,
        rule_value TEXT NOT NULL,
        enabled BOOLEAN NOT NULL DEFAULT 1,
        priority INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP
    )""",
    """CREATE TABLE flag_evaluations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        flag_id TEXT NOT NULL,
        user_identifier TEXT NOT NULL,
        result BOOLEAN NOT NULL,
        reason TEXT NOT NULL,
        evaluated_at TIMESTAMP
    )""",
    """CREATE TABLE audits (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        environment_id TEXT,
        feature_key TEXT NOT NULL,
        actor TEXT NOT NULL,
        action TEXT NOT NULL,
        before_state TEXT,
        after_state TEXT,
        created_at TIMESTAMP
    )""",
]

ENV_ID = "11111111-1111-1111-1111-111111111111"
SDK_KEY = "sdk-test-key"


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    with engine.begin() as conn:
        for stmt in SCHEMA:
            conn.execute(text(stmt))
        conn.execute(
            text("INSERT INTO environments (id, name, sdk_key) VALUES (:id, 'production', :k)"),
            {"id": ENV_ID, "k": SDK_KEY},
        )
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):
    def override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_recorder] = lambda: SqlEvaluationRecorder(session_factory)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
