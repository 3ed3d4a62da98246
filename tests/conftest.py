import pytest
from fastapi.testclient import TestClient

from blissbay.config import Settings
from blissbay.database import Database
from blissbay.jobs import InMemoryJobQueue
from blissbay.main import create_app
from blissbay.models import UserRole
from tests.factories import headers_for, make_user


class FakeGateway:
    """Records calls instead of talking to Stripe."""

    def __init__(self):
        self.intents = []
        self.refunds = []
        self.next_status = "succeeded"
        self.remote_status = "succeeded"
        self.error = None

    def create_payment_intent(self, amount_cents, currency, payment_method_id, metadata=None):
        if self.error is not None:
            raise self.error
        intent = {
            "id": f"pi_test_{len(self.intents) + 1}",
            "status": self.next_status,
            "amount": amount_cents,
            "currency": currency,
            "payment_method": payment_method_id,
            "metadata": metadata or {},
        }
        self.intents.append(intent)
        return {"id": intent["id"], "status": intent["status"]}

    def retrieve(self, intent_id):
        return {"id": intent_id, "status": self.remote_status, "amount": None}

    def refund(self, intent_id, amount_cents=None):
        refund = {"id": f"re_test_{len(self.refunds) + 1}", "status": "succeeded", "amount": amount_cents}
        self.refunds.append(dict(refund, payment_intent=intent_id))
        return refund

    def close(self):
        pass


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        DATABASE_URL="sqlite://",
        SECRET_KEY="test-secret-key",
        UPLOAD_DIR=str(tmp_path / "uploads"),
        LOG_JSON=False,
        REDIS_ENABLED=False,
        MAX_CART_ITEMS=3,
        MAX_PRODUCT_QUANTITY=10,
    )


@pytest.fixture()
def database(settings):
    database = Database(settings.DATABASE_URL)
    database.create_all()
    yield database
    database.drop_all()
    database.dispose()


@pytest.fixture()
def db(database):
    session = database.session()
    yield session
    session.close()


@pytest.fixture()
def queue():
    return InMemoryJobQueue()


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def app(settings, database, queue, gateway):
    return create_app(
        settings,
        database=database,
        queue=queue,
        gateway=gateway,
        configure_logging=False,
    )


@pytest.fixture()
def client(app):
    with TestClient(app) as client:
        yield client


# =====================================================
# ACCOUNTS
# =====================================================

@pytest.fixture()
def user(db):
    return make_user(db)


@pytest.fixture()
def other_user(db):
    return make_user(db, email="other@example.com", name="Other")


@pytest.fixture()
def admin(db):
    return make_user(db, email="admin@example.com", role=UserRole.admin, name="Admin")


@pytest.fixture()
def auth(user, settings):
    return headers_for(user, settings)


@pytest.fixture()
def admin_auth(admin, settings):
    return headers_for(admin, settings)


@pytest.fixture()
def address_payload():
    return {
        "full_name": "Jane Doe",
        "street": "12 Harbour Rd",
        "city": "Portland",
        "state": "OR",
        "postal_code": "97201",
        "country": "US",
    }
