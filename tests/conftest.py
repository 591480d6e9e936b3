import sys
from typing import Iterator

import pytest
from sqlalchemy.orm import Session, sessionmaker

from tests.consts import PROJECT_ROOT

# Ensure the project modules are importable without an install
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from database import get_session, init_db, make_engine  # noqa: E402
from inventory import InventoryStore  # noqa: E402
from repository import Repository  # noqa: E402


@pytest.fixture
def engine():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Iterator[Session]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def repo(session: Session) -> Repository:
    return Repository(session)


@pytest.fixture
def inventory(repo: Repository) -> InventoryStore:
    return InventoryStore(repo)


@pytest.fixture
def widget(inventory: InventoryStore):
    return inventory.create_item("Widget", "100", 10)


@pytest.fixture
def gadget(inventory: InventoryStore):
    return inventory.create_item("Gadget", "2.50", 4)


def _override_session(session_factory):
    def _get_session():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    return _get_session


@pytest.fixture
def app_factory(session_factory):
    import main

    created = []

    def _make(auth: bool = False):
        main.app.dependency_overrides[get_session] = _override_session(session_factory)
        if not auth:
            main.app.dependency_overrides[main.require_session] = lambda: None
            main.app.dependency_overrides[main.require_csrf] = lambda: None
        created.append(main.app)
        return main.app

    yield _make
    for app in created:
        app.dependency_overrides.clear()


@pytest.fixture
def client(app_factory):
    from fastapi.testclient import TestClient

    return TestClient(app_factory())


@pytest.fixture
def auth_client(app_factory, monkeypatch):
    from fastapi.testclient import TestClient

    import main
    from auth import LoginRateLimiter

    monkeypatch.setattr(main, "login_limiter", LoginRateLimiter(max_attempts=5, window_seconds=900))
    return TestClient(app_factory(auth=True))
