"""
MongoDB connection helpers.

The client is created once per process from Settings and the database handle
is stored on the FastAPI app state. Collections follow the lowercase model
name convention used in schemas.py ("user", "order").
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Request
from pymongo import MongoClient
from pymongo.database import Database

from config import Settings

logger = logging.getLogger(__name__)


def get_database(settings: Settings) -> Database:
    client = MongoClient(settings.mongodb_uri, tz_aware=True)
    logger.info("Using MongoDB database %s", settings.database_name)
    return client[settings.database_name]


def get_db(request: Request) -> Database:
    return request.app.state.db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_obj_id(value: Any):
    """ObjectId for a valid id string, None otherwise."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def sanitize(doc: Dict) -> Dict:
    """Copy of a document with ObjectIds rendered as strings and `_id` exposed as `id`."""
    if not doc:
        return doc
    d = {}
    for key, value in doc.items():
        if key == "_id":
            key = "id"
        if isinstance(value, ObjectId):
            value = str(value)
        elif isinstance(value, dict):
            value = sanitize(value)
        elif isinstance(value, list):
            value = [sanitize(v) if isinstance(v, dict) else (str(v) if isinstance(v, ObjectId) else v) for v in value]
        d[key] = value
    return d
