import json
from typing import Any, Dict, List, Optional

import mongomock
import pytest
from fastapi.testclient import TestClient

from accounts import AccountService
from cart import CartService
from database import create_document, ensure_indexes
from errors import PaymentProviderError
from main import create_app
from notifications import Notifier
from orders import OrderService
from payments import PaymentIntentInfo, PaymentService
from schemas import Address, Product, User


class FakeMailer:
    def __init__(self):
        self.sent: List[Dict[str, str]] = []
        self.fail = False

    def deliver(self, to: str, subject: str, html: str) -> None:
        if self.fail:
            raise RuntimeError("SMTP relay unreachable")
        self.sent.append({"to": to, "subject": subject, "html": html})


class FakeGateway:
    api_key = "sk_test_fake"

    def __init__(self):
        self.intents: Dict[str, PaymentIntentInfo] = {}

    def create_intent(self, amount_cents: int, order_id: Optional[str] = None) -> PaymentIntentInfo:
        intent_id = f"pi_{len(self.intents) + 1}"
        intent = PaymentIntentInfo(id=intent_id, status="requires_payment_method",
                                   client_secret=f"{intent_id}_secret",
                                   metadata={"order_id": order_id} if order_id else {})
        self.intents[intent_id] = intent
        self.last_amount = amount_cents
        return intent

    def retrieve_intent(self, intent_id: str) -> PaymentIntentInfo:
        if intent_id not in self.intents:
            raise PaymentProviderError(f"No such payment_intent: '{intent_id}'")
        return self.intents[intent_id]

    def add(self, intent_id: str, status: str, order_id: Optional[str] = None) -> None:
        self.intents[intent_id] = PaymentIntentInfo(id=intent_id, status=status,
                                                    metadata={"order_id": order_id} if order_id else {})

    def succeed(self, intent_id: str) -> None:
        self.intents[intent_id] = self.intents[intent_id].model_copy(update={"status": "succeeded"})

    def parse_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        event = json.loads(payload)
        return {"type": event["type"], "object": event["data"]["object"]}


@pytest.fixture
def db():
    database = mongomock.MongoClient()["aynwine_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier(db, mailer):
    return Notifier(db, mailer)


@pytest.fixture
def carts(db):
    return CartService(db)


@pytest.fixture
def orders(db, carts, notifier):
    return OrderService(db, carts, notifier)


@pytest.fixture
def payments(db, gateway, notifier):
    return PaymentService(db, gateway, notifier)


@pytest.fixture
def accounts(db, carts, notifier):
    return AccountService(db, carts, notifier, jwt_secret="test-secret")


@pytest.fixture
def make_user(db, carts):
    def _make(email: str = "alice@example.com", name: str = "Alice", role: str = "customer") -> str:
        user_id = create_document(db, "user", User(name=name, email=email, password_hash="x", role=role))
        carts.create_cart(user_id)
        return user_id
    return _make


@pytest.fixture
def make_product(db):
    def _make(name: str = "Malbec", price: float = 10.0, stock: int = 10, category: str = "red") -> str:
        return create_document(db, "product", Product(name=name, description=f"{name} bottle", price=price,
                                                      stock=stock, category=category))
    return _make


@pytest.fixture
def make_address(db):
    def _make(user_id: str) -> str:
        return create_document(db, "address", Address(user_id=user_id, street="1 Vine St", city="Napa",
                                                      state="CA", zip_code="94558", country="US"))
    return _make


@pytest.fixture
def client(db, gateway, mailer):
    app = create_app(db=db, gateway=gateway, mailer=mailer, jwt_secret="test-secret")
    return TestClient(app)
