"""
Location ledger: the named locations saved on a user.

Each user owns an ordered list of locations (insertion order) whose names are
unique within that user. Input is validated before the store is touched.
Adds and removes are single guarded writes (`push_location`, `pull_location`);
edits are a read-modify-write committed through `UserStore.replace_locations`.
"""

import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic import ValidationError as PydanticValidationError

from errors import ConflictError, NotFoundError, ValidationError, from_pydantic
from schemas import Location, LocationUpdate
from users import UserStore

logger = logging.getLogger(__name__)

# optional metadata that may be cleared by sending null
CLEARABLE_FIELDS = ("addressNo", "zonalNo")


def validate_location(data: Dict[str, Any]) -> Location:
    try:
        return Location.model_validate(data)
    except PydanticValidationError as exc:
        raise from_pydantic(exc) from None


def validate_location_update(data: Dict[str, Any]) -> Dict[str, Any]:
    """Only the fields the caller supplied, validated."""
    try:
        update = LocationUpdate.model_validate(data)
    except PydanticValidationError as exc:
        raise from_pydantic(exc) from None
    changes = update.model_dump(exclude_unset=True)
    for field, value in changes.items():
        if value is None and field not in CLEARABLE_FIELDS:
            raise ValidationError(field, "Field cannot be null")
    return changes


def _find_index(locations: List[Dict], name: str) -> Optional[int]:
    for i, loc in enumerate(locations):
        if loc.get("name") == name:
            return i
    return None


def _load_user(store: UserStore, user_id: Any) -> Dict:
    user = store.find_by_id(user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


def list_locations(store: UserStore, user_id: Any) -> List[Dict]:
    locations = store.get_locations(user_id)
    if locations is None:
        raise NotFoundError("User not found")
    return locations


def add_location(store: UserStore, user_id: Any, data: Dict[str, Any]) -> Dict:
    location = validate_location(data)
    doc = {"_id": ObjectId(), **location.model_dump(exclude_none=True)}
    updated = store.push_location(user_id, doc)
    logger.info("Added location %s for user %s", location.name, updated["_id"])
    return updated


def remove_location(store: UserStore, user_id: Any, name: str) -> Dict:
    """Removing a name that is not there leaves the user unchanged."""
    name = name.strip() if isinstance(name, str) else name
    updated = store.pull_location(user_id, name)
    if updated is None:
        return _load_user(store, user_id)
    logger.info("Removed location %s for user %s", name, updated["_id"])
    return updated


def update_location(store: UserStore, user_id: Any, name: str, fields: Dict[str, Any]) -> Optional[Dict]:
    """
    Apply `fields` to the location called `name`.

    Returns None when the user has no location with that name. A `name`
    entry in `fields` renames the location and must not collide with another
    one; null `addressNo`/`zonalNo` clears them.
    """
    changes = validate_location_update(fields)
    user = _load_user(store, user_id)
    current = user.get("locations")
    existing = list(current or [])
    name = name.strip() if isinstance(name, str) else name
    idx = _find_index(existing, name)
    if idx is None:
        return None

    new_name = changes.get("name")
    if new_name is not None and new_name != name and _find_index(existing, new_name) is not None:
        raise ConflictError(f"Location '{new_name}' already exists")

    merged = dict(existing[idx])
    for field, value in changes.items():
        if value is None:
            merged.pop(field, None)
        else:
            merged[field] = value
    existing[idx] = merged

    updated = store.replace_locations(user["_id"], existing, expected=current)
    logger.info("Updated location %s for user %s", name, user["_id"])
    return updated
