import logging

import firebase_admin
from firebase_admin import auth, credentials, exceptions
from google.auth.exceptions import GoogleAuthError

import config

logger = logging.getLogger(__name__)

# Bad credential files raise OSError, missing default credentials GoogleAuthError
PROVIDER_ERRORS = (ValueError, OSError, GoogleAuthError, exceptions.FirebaseError)


class IdentityProviderError(Exception):
    pass


class FirebaseIdentityProvider:
    """Firebase Authentication, used to verify sign-ins and delete accounts."""

    def __init__(self, credentials_path=config.FIREBASE_CREDENTIALS):
        self.credentials_path = credentials_path
        self._app = None

    @property
    def app(self):
        if self._app is None:
            cred = credentials.Certificate(self.credentials_path) if self.credentials_path else None
            self._app = firebase_admin.initialize_app(cred, name="bashabari")
            logger.info("Firebase app initialized")
        return self._app

    def verify_token(self, id_token: str) -> dict:
        try:
            return auth.verify_id_token(id_token, app=self.app)
        except PROVIDER_ERRORS as e:
            raise IdentityProviderError(str(e)) from e

    def delete_user(self, user: dict):
        """Delete the account behind a user record, by uid or else by email."""
        try:
            uid = user.get("uid") or auth.get_user_by_email(user["email"], app=self.app).uid
            auth.delete_user(uid, app=self.app)
        except PROVIDER_ERRORS as e:
            raise IdentityProviderError(str(e)) from e
        logger.info("Deleted identity account for %s", user.get("email"))
