import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from chow_bot.app_factory import create_app
from chow_bot.db import configure_database
from chow_bot.dependencies import get_payment_coordinator
from chow_bot.menu_catalog import MenuCatalog, seed_menu
from chow_bot.payment_provider import PaystackClient
from chow_bot.routes import limiter
from chow_bot.services.payment import PaymentCoordinator
from chow_bot.services.session import get_or_create_user
from chow_bot.storage import MemoryStorage, SqlStorage, set_storage
from tests.test_helpers import BASE_URL


def make_sql_storage(max_attempts: int = 5) -> SqlStorage:
    """SQL backend over an in-memory SQLite DB.

    Uses StaticPool so all connections share the same in-memory database.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    session_factory = configure_database("sqlite://", bind=engine)
    return SqlStorage(session_factory, max_attempts=max_attempts)


@pytest.fixture
def memory_storage():
    storage = MemoryStorage()
    seed_menu(storage)
    return storage


@pytest.fixture
def sql_storage():
    storage = make_sql_storage()
    seed_menu(storage)
    return storage


@pytest.fixture(params=["memory", "sql"])
def storage(request):
    """Runs a test once per storage backend."""
    if request.param == "memory":
        backend = MemoryStorage()
    else:
        backend = make_sql_storage()
    seed_menu(backend)
    return backend


@pytest.fixture
def catalog(storage):
    return MenuCatalog(storage)


@pytest.fixture
def menu(storage):
    """Seeded menu items keyed by name."""
    return {item.name: item for item in storage.list_menu_items(available_only=False)}


@pytest.fixture
def user(storage):
    return get_or_create_user(storage, "session-abc")


@pytest.fixture
def payments(storage):
    """Coordinator without a provider: every payment is simulated."""
    return PaymentCoordinator(storage, provider=None, base_url=BASE_URL, allow_simulation=True)


@pytest.fixture
def paystack():
    return PaystackClient("sk_test_secret", base_url="https://api.paystack.test", timeout=5)


@pytest.fixture
def client(memory_storage, monkeypatch):
    """Shared FastAPI TestClient over a seeded in-memory backend.

    Rate limiting is disabled so tests are independent of request counts.
    """
    monkeypatch.setattr(limiter, "enabled", False)
    app = create_app(storage=memory_storage, seed=False)

    def override_payments():
        return PaymentCoordinator(memory_storage, provider=None, base_url=BASE_URL, allow_simulation=True)

    app.dependency_overrides[get_payment_coordinator] = override_payments

    with TestClient(app) as test_client:
        test_client.app_storage = memory_storage
        yield test_client

    app.dependency_overrides.clear()
    set_storage(None)
