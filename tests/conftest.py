import httpx
import pytest
from fastapi.testclient import TestClient

from shared.order_status import StatusStateMachine
from shared.security_config import limiter
from services.orders_service.main import create_app
from services.orders_service.store import InMemoryOrderStore
from services.storefront.client import OrderRepositoryClient

BASE_URL = "http://orders.test"


@pytest.fixture(autouse=True)
def no_rate_limit():
    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest.fixture
def memory_store():
    return InMemoryOrderStore()


@pytest.fixture
def orders_app(memory_store):
    return create_app(store=memory_store, state_machine=StatusStateMachine(strict=True))


@pytest.fixture
def api(orders_app):
    with TestClient(orders_app) as client:
        yield client


@pytest.fixture
def make_client(orders_app):
    """Storefront client talking to the in-process orders service."""
    def _make(**kwargs):
        kwargs.setdefault("state_machine", StatusStateMachine(strict=True))
        return OrderRepositoryClient(
            base_url=BASE_URL,
            transport=httpx.ASGITransport(app=orders_app),
            **kwargs,
        )
    return _make


@pytest.fixture
def cart():
    return [
        {
            "id": "logo",
            "name": "Desain Logo",
            "price": 150000,
            "tier": "basic",
            "instanceId": "logo-1",
            "briefDetails": "Logo minimalis untuk kedai kopi.",
        },
        {
            "id": "poster",
            "name": "Desain Poster",
            "price": 200000,
            "promoPrice": 175000,
            "tier": "premium",
            "instanceId": "poster-1",
            "briefDetails": "Poster A3 untuk acara musik.",
            "width": 297,
            "height": 420,
            "unit": "mm",
        },
        {
            "id": "kartu",
            "name": "Kartu Nama",
            "price": 50000,
            "tier": "basic",
            "instanceId": "kartu-1",
            "briefDetails": "",
        },
    ]
