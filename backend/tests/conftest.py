import os

# Настройки подменяются до импорта модулей приложения
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CACHE_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["DB_TIMEOUT"] = "2"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import database
import models
from main import app


@pytest.fixture
def session_factory(tmp_path):
    url = f"sqlite:///{tmp_path / 'restaurant.db'}"
    engine = database.make_engine(url)
    models.Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


# PostgreSQL проверяется, только если задан TEST_POSTGRES_URL (пустая БД)
@pytest.fixture(params=["sqlite", "postgresql"])
def shared_session_factory(request, tmp_path):
    """Фабрика сессий для тестов с несколькими одновременными писателями."""
    if request.param == "sqlite":
        url = f"sqlite:///{tmp_path / 'shared.db'}"
    else:
        url = os.getenv("TEST_POSTGRES_URL")
        if not url:
            pytest.skip("TEST_POSTGRES_URL is not set")

    engine = database.make_engine(url)
    models.Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    models.Base.metadata.drop_all(bind=engine)
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
    database.init_restaurant_data(session_factory)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[database.get_db] = override_get_db
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
