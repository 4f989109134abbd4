"""
Authentication service: registration, login and bearer token checks.

Tokens are stateless JWTs carrying only the user id (`userId`); a token stays
valid until it expires, but a request is rejected once its user is gone.
"""

import logging
from typing import Dict, Optional

from config import Settings
from errors import AuthError, NotFoundError
from security import create_access_token, decode_access_token
from users import UserStore

logger = logging.getLogger(__name__)


class AuthService:
    def __init__(self, store: UserStore, settings: Settings):
        self.store = store
        self.settings = settings

    def register(self, email_id: str, password: str, role: str) -> Dict:
        # no token on registration, clients log in afterwards
        user = self.store.create(email_id, password, role)
        logger.info("Registered user %s", user["_id"])
        return user

    def login(self, email_id: str, password: str) -> str:
        user = self.store.find_by_email(email_id)
        if not user:
            raise NotFoundError("User not found")
        if not self.store.verify_password(user, password):
            logger.warning("Failed login for user %s", user["_id"])
            raise AuthError("Incorrect password")
        return self.issue_token(user)

    def issue_token(self, user: Dict) -> str:
        return create_access_token({"userId": str(user["_id"])}, self.settings)

    def authenticate(self, token: Optional[str]) -> Dict:
        if not token:
            raise AuthError("Authentication required")
        payload = decode_access_token(token, self.settings)
        user_id = payload.get("userId")
        if not user_id:
            raise AuthError("Invalid token")
        user = self.store.find_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def change_password(self, user: Dict, old_password: str, new_password: str) -> Dict:
        if not self.store.verify_password(user, old_password):
            raise AuthError("Incorrect password")
        updated = self.store.update(user["_id"], {"password": new_password})
        if not updated:
            raise NotFoundError("User not found")
        logger.info("Password changed for user %s", user["_id"])
        return updated
