import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import JsonStore
from main import create_app
from schemas import CreditCard, Product, Role, Snapshot, UserAccount
from security import Identity, PasswordHasher, TokenSigner

TEST_SECRET = "test-signing-key-0123456789-abcdefghijklmnopqrstuvwxyz"
PASSWORD = "secret123"


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        jwt_secret=TEST_SECRET,
        database_path=str(tmp_path / "database.json"),
        bcrypt_rounds=4,
        environment="test",
    )


@pytest.fixture()
def store(settings):
    return JsonStore(settings.database_path)


@pytest.fixture()
def hasher():
    return PasswordHasher(rounds=4)


@pytest.fixture()
def signer(settings):
    return TokenSigner.from_settings(settings)


def _account(hasher, username, role=Role.customer):
    return UserAccount(
        username=username,
        email=f"{username}@example.com",
        first=username.capitalize(),
        last="Tester",
        street_address=f"{len(username)} Main St",
        role=role,
        password_hash=hasher.hash(PASSWORD),
    )


@pytest.fixture()
def seeded(store, hasher):
    """Two products and three accounts committed to the store."""
    snapshot = Snapshot(
        products=[
            Product(id="p1", name="Widget Pro", price=9.99, category="gadgets", on_hand=5,
                    description="A premium widget"),
            Product(id="p2", name="Mega Cable", price=12.50, category="accessories", on_hand=2,
                    description="10ft braided USB-C"),
        ],
        users=[
            _account(hasher, "alice"),
            _account(hasher, "bob"),
            _account(hasher, "root", role=Role.admin),
        ],
    )
    store.commit_snapshot(snapshot)
    return snapshot


@pytest.fixture()
def alice():
    return Identity(username="alice", role=Role.customer)


@pytest.fixture()
def bob():
    return Identity(username="bob", role=Role.customer)


@pytest.fixture()
def admin():
    return Identity(username="root", role=Role.admin)


@pytest.fixture()
def card():
    return CreditCard(number="4111 1111 1111 1111", cvv="123", expiry="12/30")


@pytest.fixture()
def app(settings, seeded):
    return create_app(settings)


@pytest.fixture()
def client(app):
    return TestClient(app)


@pytest.fixture()
def auth(signer):
    """Build an Authorization header for the given user."""

    def _auth(username="alice", role=Role.customer):
        return {"Authorization": f"Bearer {signer.issue_session(username, role)}"}

    return _auth


@pytest.fixture()
def checkout_body():
    def _body(*items, ship_address="1 Main St, Springfield"):
        return {
            "items": [{"product_id": pid, "quantity": qty} for pid, qty in items],
            "ship_address": ship_address,
            "credit_card": {"number": "4111111111111111", "cvv": "123", "expiry": "12/30"},
        }

    return _body
