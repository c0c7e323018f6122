from datetime import datetime, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

from identity import IdentityProviderError
from main import create_app
from security import create_access_token


class FakeIdentityProvider:
    def __init__(self):
        self.tokens = {}
        self.deleted = []
        self.fail_delete = False

    def verify_token(self, id_token):
        if id_token not in self.tokens:
            raise IdentityProviderError("Invalid ID token")
        return {"email": self.tokens[id_token]}

    def delete_user(self, user):
        if self.fail_delete:
            raise IdentityProviderError("There is no user record corresponding to the provided identifier.")
        self.deleted.append(user["email"])


@pytest.fixture
def db():
    return mongomock.MongoClient()["bashabari_test"]


@pytest.fixture
def identity():
    return FakeIdentityProvider()


@pytest.fixture
def client(db, identity):
    app = create_app(database=db, identity=identity, transactions=False)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth():
    def _headers(email):
        return {"Authorization": f"Bearer {create_access_token({'sub': email})}"}
    return _headers


@pytest.fixture
def make_user(db):
    def _make(email, role="user", status="active", name=None):
        doc = {
            "email": email,
            "name": name or email.split("@")[0].title(),
            "role": role,
            "status": status,
            "createdAt": datetime.now(timezone.utc),
        }
        return str(db["users"].insert_one(doc).inserted_id)
    return _make


@pytest.fixture
def make_property(db):
    def _make(**overrides):
        doc = {
            "title": "Lakeview Flat",
            "location": "Dhanmondi, Dhaka",
            "image": "https://img.example.com/lakeview.jpg",
            "priceMin": 100000,
            "priceMax": 150000,
            "agentName": "Rina Agent",
            "agentEmail": "agent@example.com",
            "status": "verified",
            "isAdvertised": False,
            "createdAt": datetime(2024, 1, 1, tzinfo=timezone.utc),
        }
        doc.update(overrides)
        return str(db["properties"].insert_one(doc).inserted_id)
    return _make


@pytest.fixture
def admin(make_user, auth):
    make_user("admin@example.com", role="admin", name="Admin")
    return auth("admin@example.com")


@pytest.fixture
def agent(make_user, auth):
    make_user("agent@example.com", role="agent", name="Rina Agent")
    return auth("agent@example.com")


@pytest.fixture
def buyer(make_user, auth):
    make_user("buyer@example.com", name="Karim Buyer")
    return auth("buyer@example.com")
