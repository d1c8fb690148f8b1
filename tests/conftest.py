import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("SECRETS_KEY", "YWFhYWFhYWFhYWFhYWFhYWFhYWFhYWFhYWFhYWFhYWE=")
os.environ.setdefault("PORTAL_BASE_URL", "https://feedback.example.com")
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "true")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import app.models  # noqa: E402,F401
from app.db import Base, SessionLocal, engine  # noqa: E402
from app.models.feedback import (  # noqa: E402
    Board,
    Post,
    Principal,
    PrincipalRole,
    User,
    WorkspaceSettings,
)
from app.services.hooks.registry import hook_registry  # noqa: E402


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture()
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture()
def client(db_session):
    from app.api import notifications, subscriptions, unsubscribe, webhooks
    from app.main import app

    def _override_get_db():
        yield db_session

    for module in (notifications, subscriptions, unsubscribe, webhooks):
        app.dependency_overrides[module.get_db] = _override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    hook_registry.clear()


def _make_principal(db_session, email, name, role=PrincipalRole.user):
    user = User(email=email, name=name)
    db_session.add(user)
    db_session.flush()
    principal = Principal(user_id=user.id, role=role, display_name=name)
    db_session.add(principal)
    db_session.commit()
    db_session.refresh(principal)
    return principal


@pytest.fixture()
def workspace(db_session):
    ws = WorkspaceSettings(name="Acme", slug="acme")
    db_session.add(ws)
    db_session.commit()
    db_session.refresh(ws)
    return ws


@pytest.fixture()
def principal(db_session):
    return _make_principal(db_session, "author@example.com", "Ada Author")


@pytest.fixture()
def other_principal(db_session):
    return _make_principal(db_session, "voter@example.com", "Val Voter")


@pytest.fixture()
def admin_principal(db_session):
    return _make_principal(
        db_session, "admin@example.com", "Ash Admin", role=PrincipalRole.admin
    )


@pytest.fixture()
def board(db_session):
    b = Board(name="Feature Requests", slug="features")
    db_session.add(b)
    db_session.commit()
    db_session.refresh(b)
    return b


@pytest.fixture()
def post(db_session, board, principal):
    p = Post(
        board_id=board.id,
        principal_id=principal.id,
        title="Dark mode",
        content="<p>Please add dark mode</p>",
    )
    db_session.add(p)
    db_session.commit()
    db_session.refresh(p)
    return p
