from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from digital_store.catalog import ProductCatalog
from digital_store.database import Base
from digital_store.fulfillment import OrderFlow
from digital_store.gateway import PixGateway
from digital_store.main import app as fastapi_app
from digital_store.models import OrderRow, ProductRow
from digital_store.order_store import SqlOrderStore
from digital_store.routes import get_flow

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_integration.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    db.add(ProductRow(id="p1", name="Book", price=Decimal("49.90"),
                      download_url="https://files/book.pdf", active=True))
    db.commit()
    db.close()
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def flow():
    return OrderFlow(
        catalog=ProductCatalog(session_factory=TestingSessionLocal),
        gateway=PixGateway(currency="brl"),
        store=SqlOrderStore(session_factory=TestingSessionLocal),
        entitlement_window=24 * 60 * 60,
        notification_delay=0,
        catalog_attempts=2,
        catalog_delay=0,
    )


@pytest.fixture
def client(flow):
    fastapi_app.dependency_overrides[get_flow] = lambda: flow
    with TestClient(fastapi_app) as c:
        yield c
    fastapi_app.dependency_overrides.clear()


def stripe_intent(status):
    return SimpleNamespace(
        id="pay123",
        status=status,
        amount=4990,
        receipt_email="a@b.com",
        metadata={"customer_name": "Ana"},
        created=None,
        next_action=SimpleNamespace(pix_display_qr_code=SimpleNamespace(
            data="XYZ", image_url_png="https://qr/pix.png",
            hosted_instructions_url="https://ticket",
        )) if status == "requires_action" else None,
    )


def test_full_purchase_lifecycle_integration(client, mocker):
    """
    1. Submit cart (API -> catalog DB + Stripe mocked -> order DB)
    2. Webhook reports approval (Stripe -> API -> deferred reconcile -> order DB)
    3. Download links released, then revoked once the window has passed
    """

    # --- 1. CREATE PAYMENT ---
    create = mocker.patch("stripe.PaymentIntent.create", return_value=stripe_intent("requires_action"))

    response = client.post("/api/payments/criar-pagamento", json={
        "carrinho": [{"id": "p1", "name": "Book", "quantity": 1}],
        "nomeCliente": "Ana",
        "email": "a@b.com",
        "total": 49.90,
    })

    assert response.status_code == 200
    assert response.json()["id"] == "pay123"
    assert response.json()["qr_code"] == "XYZ"
    assert create.call_args.kwargs["amount"] == 4990

    db = TestingSessionLocal()
    order = db.get(OrderRow, "pay123")
    assert order.status == "pending"
    assert Decimal(order.total) == Decimal("49.90")
    db.close()

    # Not paid yet
    assert client.get("/api/payments/link-download/pay123").status_code == 403

    # --- 2. WEBHOOK SUCCESS ---
    mocker.patch("stripe.PaymentIntent.retrieve", return_value=stripe_intent("succeeded"))
    mocker.patch("stripe.Webhook.construct_event", return_value={
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": "pay123"}},
    })

    webhook_response = client.post(
        "/webhook",
        content="raw_stripe_payload",
        headers={"stripe-signature": "test_signature"},
    )

    assert webhook_response.status_code == 200
    assert webhook_response.json() == {"ok": True}

    db = TestingSessionLocal()
    assert db.get(OrderRow, "pay123").status == "approved"
    db.close()

    # --- 3. DOWNLOAD ---
    response = client.get("/api/payments/link-download/pay123")
    assert response.status_code == 200
    assert response.json()["links"] == ["https://files/book.pdf"]

    db = TestingSessionLocal()
    order = db.get(OrderRow, "pay123")
    order.created_at = order.created_at - timedelta(hours=25)
    db.commit()
    db.close()

    response = client.get("/api/payments/link-download/pay123")
    assert response.status_code == 410


def test_status_poll_refreshes_pending_order(client, mocker):
    mocker.patch("stripe.PaymentIntent.create", return_value=stripe_intent("requires_action"))
    client.post("/api/payments/criar-pagamento", json={
        "carrinho": ["p1"], "nomeCliente": "Ana", "email": "a@b.com", "total": "49,90",
    })

    retrieve = mocker.patch("stripe.PaymentIntent.retrieve", return_value=stripe_intent("processing"))
    response = client.get("/api/payments/status-pagamento/pay123")

    assert response.status_code == 200
    assert response.json()["status"] == "in_process"
    assert retrieve.call_count == 1

    retrieve.return_value = stripe_intent("succeeded")
    assert client.get("/api/payments/status-pagamento/pay123").json()["status"] == "approved"

    # Approved is final; no further gateway calls
    client.get("/api/payments/status-pagamento/pay123")
    assert retrieve.call_count == 2


def test_create_payment_database_integrity_on_gateway_error(client, mocker):
    """If Stripe fails, it should return an error and not leave a record in the database."""
    import stripe
    mocker.patch("stripe.PaymentIntent.create",
                 side_effect=stripe.APIConnectionError("Stripe Service Unavailable"))

    response = client.post("/api/payments/criar-pagamento", json={
        "carrinho": [{"id": "p1", "name": "Book", "quantity": 1}],
        "nomeCliente": "Ana",
        "email": "a@b.com",
        "total": 49.90,
    })

    assert response.status_code == 500
    db = TestingSessionLocal()
    assert db.query(OrderRow).count() == 0
    db.close()
