from types import SimpleNamespace

import pytest
from firebase_admin import exceptions
from google.auth.exceptions import DefaultCredentialsError

import identity
from identity import FirebaseIdentityProvider, IdentityProviderError

FIREBASE_APP = object()


@pytest.fixture
def provider():
    p = FirebaseIdentityProvider("/unused/service-account.json")
    p._app = FIREBASE_APP
    return p


@pytest.fixture
def deleted(monkeypatch):
    calls = []

    def delete_user(uid, app=None):
        assert app is FIREBASE_APP
        calls.append(uid)

    monkeypatch.setattr(identity.auth, "delete_user", delete_user)
    return calls


def test_delete_by_uid_skips_email_lookup(provider, deleted, monkeypatch):
    def lookup(email, app=None):
        raise AssertionError("email lookup should not run")

    monkeypatch.setattr(identity.auth, "get_user_by_email", lookup)
    provider.delete_user({"uid": "uid-42", "email": "leaving@example.com"})
    assert deleted == ["uid-42"]


def test_delete_falls_back_to_email(provider, deleted, monkeypatch):
    looked_up = []

    def lookup(email, app=None):
        looked_up.append(email)
        return SimpleNamespace(uid="uid-from-email")

    monkeypatch.setattr(identity.auth, "get_user_by_email", lookup)
    provider.delete_user({"email": "leaving@example.com"})
    assert looked_up == ["leaving@example.com"]
    assert deleted == ["uid-from-email"]


@pytest.mark.parametrize("error", [
    exceptions.NotFoundError("No user record found for the provided email"),
    ValueError("Malformed email address"),
    ConnectionResetError("connection reset by peer"),
    DefaultCredentialsError("Could not automatically determine credentials"),
])
def test_delete_errors_are_wrapped(provider, monkeypatch, error):
    def lookup(email, app=None):
        raise error

    monkeypatch.setattr(identity.auth, "get_user_by_email", lookup)
    with pytest.raises(IdentityProviderError) as info:
        provider.delete_user({"email": "leaving@example.com"})
    assert info.value.__cause__ is error


def test_unreadable_credentials_are_wrapped():
    provider = FirebaseIdentityProvider("/nonexistent/service-account.json")
    with pytest.raises(IdentityProviderError):
        provider.delete_user({"uid": "uid-42", "email": "leaving@example.com"})
    with pytest.raises(IdentityProviderError):
        provider.verify_token("some-id-token")


def test_verify_token_returns_claims(provider, monkeypatch):
    monkeypatch.setattr(identity.auth, "verify_id_token", lambda token, app=None: {"email": "nadia@example.com"})
    assert provider.verify_token("good-token") == {"email": "nadia@example.com"}


@pytest.mark.parametrize("error", [
    ValueError("Illegal ID token provided"),
    exceptions.InvalidArgumentError("Token expired"),
    OSError("network unreachable"),
])
def test_verify_token_errors_are_wrapped(provider, monkeypatch, error):
    def verify(token, app=None):
        raise error

    monkeypatch.setattr(identity.auth, "verify_id_token", verify)
    with pytest.raises(IdentityProviderError, match=str(error)):
        provider.verify_token("bad-token")
