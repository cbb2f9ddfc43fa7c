"""
MongoDB access for ManageEase.

Collections:
    users  - registered accounts
    tasks  - tasks, each referencing its assignee and creator by user id string

All timestamps are stored as naive UTC datetimes, which is what pymongo
hands back on reads.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import settings

logger = logging.getLogger(__name__)

USERS = "users"
TASKS = "tasks"

# MongoClient connects lazily, so importing this module never touches the network.
client: MongoClient = MongoClient(settings.DATABASE_URL, serverSelectionTimeoutMS=5000)
db: Database = client[settings.DATABASE_NAME]


def get_db() -> Database:
    """FastAPI dependency returning the active database handle"""
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse an id string; malformed ids yield None instead of raising"""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def create_document(database: Database, collection: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document stamped with created_at/updated_at and return its id"""
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = database[collection].insert_one(doc)
    return str(result.inserted_id)


def ensure_indexes(database: Database) -> None:
    users = database[USERS]
    users.create_index([("email", ASCENDING)], unique=True)
    users.create_index([("role", ASCENDING)])

    tasks = database[TASKS]
    tasks.create_index([("assigned_user", ASCENDING), ("status", ASCENDING)])
    tasks.create_index([("due_date", ASCENDING)])
    tasks.create_index([("created_at", DESCENDING)])
    tasks.create_index([("priority", ASCENDING)])
    tasks.create_index([("status", ASCENDING)])
    tasks.create_index([("assigned_user", ASCENDING), ("status", ASCENDING), ("priority", ASCENDING)])
    logger.info("Database indexes ensured")
