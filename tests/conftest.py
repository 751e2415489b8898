import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from database import create_document
from errors import UpstreamError
from main import create_app
from payments import PaymentVerification
from schemas import Product, User
from security import get_password_hash, token_for_user
from settings import Settings

PASSWORD = "secret123"
PASSWORD_HASH = get_password_hash(PASSWORD)


class FakeGateway:
    """Stands in for PortOneClient; payments are registered per test"""

    def __init__(self):
        self.payments = {}
        self.calls = []
        self.error = None

    def add(self, payment_id, amount, status="paid"):
        self.payments[payment_id] = (status, amount)

    def fetch_payment(self, payment_id):
        self.calls.append(payment_id)
        if self.error is not None:
            raise self.error
        if payment_id not in self.payments:
            raise UpstreamError("Payment verification failed: not found", rejected=True)
        status, amount = self.payments[payment_id]
        return PaymentVerification(payment_id=payment_id, status=status, amount=amount)


@pytest.fixture
def settings():
    return Settings(jwt_secret="test-secret", jwt_expire="1h")


@pytest.fixture
def db():
    return mongomock.MongoClient()["shop_test"]


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def app(settings, db, gateway):
    return create_app(settings=settings, database=db, payment_gateway=gateway)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role="user", email=None, name=None):
        counter["n"] += 1
        n = counter["n"]
        user = User(
            name=name or f"User {n}",
            email=email or f"user{n}@example.com",
            password=PASSWORD_HASH,
            role=role,
        )
        user_id = create_document(db, "user", user)
        return db["user"].find_one({"_id": ObjectId(user_id)})

    return _make


@pytest.fixture
def auth_headers(settings):
    def _headers(user):
        return {"Authorization": f"Bearer {token_for_user(user, settings)}"}

    return _headers


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(role="admin", email="admin@example.com", name="Admin")


@pytest.fixture
def user_headers(user, auth_headers):
    return auth_headers(user)


@pytest.fixture
def admin_headers(admin, auth_headers):
    return auth_headers(admin)


@pytest.fixture
def make_product(db):
    counter = {"n": 0}

    def _make(price=20000, code=None, category="party", name=None):
        counter["n"] += 1
        n = counter["n"]
        product = Product(
            product_code=code or f"BG{n:03d}",
            name=name or f"Game {n}",
            price=price,
            category=category,
            image=f"https://img.example.com/{n}.png",
        )
        product_id = create_document(db, "product", product)
        return db["product"].find_one({"_id": ObjectId(product_id)})

    return _make
