"""
Credential store for the `user` collection.

Owns password hashing: plaintext passwords only pass through `create`,
`update` and `verify_password` and are never stored or logged.
"""

import logging
from typing import Any, Dict, List, Optional

from passlib.context import CryptContext
from pydantic import ValidationError as PydanticValidationError
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import sanitize, to_obj_id, utcnow
from errors import ConflictError, NotFoundError, ValidationError, from_pydantic
from schemas import User as UserSchema, normalize_email

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of a password
MAX_PASSWORD_BYTES = 72
MIN_PASSWORD_LENGTH = 6


def build_password_context(rounds: int = 12) -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


def verify_password_policy(password: str) -> None:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError("password", f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError("password", f"Password must be at most {MAX_PASSWORD_BYTES} bytes long")


def public_user(doc: Optional[Dict]) -> Optional[Dict]:
    """User document safe to return to clients."""
    if not doc:
        return doc
    d = sanitize(doc)
    d.pop("passwordHash", None)
    return d


class UserStore:
    collection_name = "user"

    def __init__(self, db: Database, pwd_context: CryptContext):
        self.collection = db[self.collection_name]
        self.pwd_context = pwd_context

    def ensure_indexes(self) -> None:
        self.collection.create_index("emailId", unique=True)

    def hash_password(self, password: str) -> str:
        verify_password_policy(password)
        return self.pwd_context.hash(password)

    def verify_password(self, user: Dict, password: str) -> bool:
        hashed = user.get("passwordHash") or ""
        if not hashed or not isinstance(password, str):
            return False
        return self.pwd_context.verify(password, hashed)

    def create(self, email_id: str, password: str, role: str) -> Dict:
        try:
            user = UserSchema(emailId=email_id, passwordHash="", role=role)
        except PydanticValidationError as exc:
            raise from_pydantic(exc) from None
        if self.find_by_email(user.emailId):
            raise ConflictError("Email already registered")
        user.passwordHash = self.hash_password(password)

        doc = user.model_dump()
        now = utcnow()
        doc.update(createdAt=now, updatedAt=now)
        try:
            res = self.collection.insert_one(doc)
        except DuplicateKeyError:
            # lost a race against another registration for the same email
            raise ConflictError("Email already registered") from None
        doc["_id"] = res.inserted_id
        logger.info("Created user %s with role %s", doc["_id"], user.role)
        return doc

    def find_by_email(self, email_id: str) -> Optional[Dict]:
        if not isinstance(email_id, str) or not email_id.strip():
            return None
        return self.collection.find_one({"emailId": normalize_email(email_id)})

    def find_by_id(self, user_id: Any) -> Optional[Dict]:
        oid = to_obj_id(user_id)
        if oid is None:
            return None
        return self.collection.find_one({"_id": oid})

    def update(self, user_id: Any, fields: Dict[str, Any]) -> Optional[Dict]:
        """
        Set top level fields on a user. A `password` entry is hashed into
        `passwordHash`; without one the stored hash is left untouched.
        """
        oid = to_obj_id(user_id)
        if oid is None:
            return None
        changes = dict(fields)
        if "password" in changes:
            changes["passwordHash"] = self.hash_password(changes.pop("password"))
        changes.pop("_id", None)
        changes["updatedAt"] = utcnow()
        return self.collection.find_one_and_update(
            {"_id": oid},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )

    def get_locations(self, user_id: Any) -> Optional[List[Dict]]:
        user = self.find_by_id(user_id)
        if not user:
            return None
        return user.get("locations") or []

    def push_location(self, user_id: Any, location: Dict) -> Dict:
        """
        Append a location in one write that only matches while no location of
        the user carries the same name.
        """
        oid = to_obj_id(user_id)
        updated = None
        if oid is not None:
            updated = self.collection.find_one_and_update(
                {"_id": oid, "locations.name": {"$ne": location["name"]}},
                {"$push": {"locations": location}, "$set": {"updatedAt": utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
        if updated is None:
            if self.find_by_id(user_id) is None:
                raise NotFoundError("User not found")
            raise ConflictError(f"Location '{location['name']}' already exists")
        return updated

    def pull_location(self, user_id: Any, name: str) -> Optional[Dict]:
        """Remove the location called `name`; None when the user has no such location."""
        oid = to_obj_id(user_id)
        if oid is None:
            return None
        return self.collection.find_one_and_update(
            {"_id": oid, "locations.name": name},
            {"$pull": {"locations": {"name": name}}, "$set": {"updatedAt": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )

    def replace_locations(self, user_id: Any, locations: List[Dict], expected: Optional[List[Dict]]) -> Dict:
        """
        Swap the whole locations list in one conditional write.

        Used for in-place edits of an existing location. The write only applies
        while the stored list still equals `expected` (None meaning the field
        is absent), so two concurrent read-modify-write cycles cannot both commit.
        """
        oid = to_obj_id(user_id)
        query: Dict[str, Any] = {"_id": oid}
        query["locations"] = expected if expected is not None else {"$exists": False}
        updated = None
        if oid is not None:
            updated = self.collection.find_one_and_update(
                query,
                {"$set": {"locations": locations, "updatedAt": utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
        if updated is None:
            if self.find_by_id(user_id) is None:
                raise NotFoundError("User not found")
            raise ConflictError("Locations were modified concurrently")
        return updated
