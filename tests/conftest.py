import pytest
from fastapi.testclient import TestClient
from listing_studio.config import Settings
from listing_studio.database.memory import InMemoryDatabase
from listing_studio.dependencies import build_memory_services
from listing_studio.main import create_app
from listing_studio.utils.logger import set_log_sink
from helpers import FakeDesignAdapter, WEBHOOK_SECRET


@pytest.fixture(autouse=True)
def reset_log_sink():
    yield
    set_log_sink(None)


@pytest.fixture
def settings():
    return Settings(
        data_backend="memory",
        gemini_api_key="",
        stripe_secret_key="",
        stripe_webhook_secret=WEBHOOK_SECRET,
        analysis_timeout_seconds=5.0,
        prompts_timeout_seconds=5.0,
        image_timeout_seconds=5.0)


@pytest.fixture
def db():
    return InMemoryDatabase()


@pytest.fixture
def adapter():
    return FakeDesignAdapter()


@pytest.fixture
def services(settings, db, adapter):
    services = build_memory_services(settings, db=db, adapter=adapter)
    set_log_sink(services.system_logs.insert_log)
    return services


@pytest.fixture
def pipeline(services):
    return services.pipeline


@pytest.fixture
def user(db):
    return db.create_user(email="seller@example.com", credits=10)


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


@pytest.fixture
def auth_headers(db, user):
    db.register_token("token-seller", str(user.id), user.email)
    return {"Authorization": "Bearer token-seller"}
