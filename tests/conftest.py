import mongomock
import pytest
from flask_jwt_extended import create_access_token

from pasal import create_app
from pasal.helpers import utcnow
from pasal.mailer import Mailer
from pasal.security import PasswordHasher
from pasal.store import Store


@pytest.fixture
def store():
    client = mongomock.MongoClient()
    return Store(client, client["pasal_test"])


@pytest.fixture
def app(store, tmp_path):
    app = create_app(
        {
            "TESTING": True,
            "JWT_SECRET_KEY": "test-secret-key-with-enough-length",
            "UPLOAD_FOLDER": str(tmp_path / "uploads"),
            "BCRYPT_ROUNDS": 4,
            "FRONTEND_URL": "http://frontend.test",
            "RESEND_API_KEY": "re_test",
            "ESEWA_PRODUCT_CODE": "EPAYTEST",
            "ESEWA_SECRET_KEY": "esewa-test-secret",
            "ESEWA_GATEWAY_URL": "https://esewa.test",
            "ESEWA_SUCCESS_URL": "http://api.test/complete-payment",
            "ESEWA_FAILURE_URL": "http://frontend.test/payment-failed",
        },
        store=store,
    )
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    return app.extensions["pasal"]


@pytest.fixture
def sent_emails(monkeypatch):
    outbox = []

    def fake_send(self, payload):
        outbox.append(payload)
        return True, None

    monkeypatch.setattr(Mailer, "send", fake_send)
    return outbox


@pytest.fixture
def create_user(store):
    hasher = PasswordHasher(rounds=4)
    counter = {"value": 0}

    def _create_user(password="secret-pass", **overrides):
        counter["value"] += 1
        number = counter["value"]
        document = {
            "username": f"user{number}",
            "phone_number": f"98000000{number:02d}",
            "address": "Kathmandu",
            "email": f"user{number}@pasal.test",
            "password": hasher.hash(password),
            "role": "user",
            "is_active": True,
            "created_at": utcnow(),
        }
        document.update(overrides)
        document["_id"] = store.users.insert_one(document).inserted_id
        return document

    return _create_user


@pytest.fixture
def auth_headers(app):
    def _auth_headers(user_document):
        with app.app_context():
            token = create_access_token(identity=str(user_document["_id"]))
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers


@pytest.fixture
def admin_headers(auth_headers, create_user):
    return auth_headers(create_user(role="admin"))


@pytest.fixture
def user_headers(auth_headers, create_user):
    return auth_headers(create_user())


@pytest.fixture
def make_product(services):
    def _make_product(title="Himalayan Tea", price=250, stock=10, **extra):
        return services.catalog.create_product(
            {"title": title, "price": price, "stock": stock, **extra}
        )

    return _make_product


@pytest.fixture
def order_payload():
    def _order_payload(products, order_id="O1", price=500, **overrides):
        payload = {
            "orderId": order_id,
            "userId": "64b7f0c2a1b2c3d4e5f60718",
            "username": "sita",
            "phoneNumber": "9800000001",
            "email": "Sita@Example.com",
            "address": "Lalitpur",
            "products": [
                {
                    "productId": str(product["_id"]),
                    "name": product.get("title", ""),
                    "quantity": quantity,
                    "image": "tea.png",
                    "desc": "Loose leaf",
                }
                for product, quantity in products
            ],
            "price": price,
        }
        payload.update(overrides)
        return payload

    return _order_payload
