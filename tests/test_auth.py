from datetime import timedelta

from security import create_access_token


def test_exchange_identity_token(client, identity, make_user):
    make_user("agent@example.com", role="agent", name="Rina Agent")
    identity.tokens["firebase-token"] = "agent@example.com"

    res = client.post("/auth/token", json={"idToken": "firebase-token"})
    assert res.status_code == 200
    body = res.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["role"] == "agent"

    me = client.get("/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.json()["email"] == "agent@example.com"


def test_invalid_identity_token(client):
    res = client.post("/auth/token", json={"idToken": "forged"})
    assert res.status_code == 401


def test_unregistered_identity(client, identity):
    identity.tokens["firebase-token"] = "stranger@example.com"
    res = client.post("/auth/token", json={"idToken": "firebase-token"})
    assert res.status_code == 404


def test_fraud_user_cannot_get_token(client, identity, make_user):
    make_user("shady@example.com", status="fraud")
    identity.tokens["firebase-token"] = "shady@example.com"
    assert client.post("/auth/token", json={"idToken": "firebase-token"}).status_code == 403


def test_expired_and_garbage_tokens(client, make_user):
    make_user("nadia@example.com")
    expired = create_access_token({"sub": "nadia@example.com"}, expires_delta=timedelta(minutes=-5))
    assert client.get("/me", headers={"Authorization": f"Bearer {expired}"}).status_code == 401
    assert client.get("/me", headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401


def test_token_for_deleted_user(client, auth):
    assert client.get("/me", headers=auth("gone@example.com")).status_code == 401
