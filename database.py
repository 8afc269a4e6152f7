"""
Database helpers

Holds the process-wide MongoDB handle (opened once at startup), the index
declarations for every collection and a few small document helpers shared by
the services and routes.
"""
import logging
from typing import Any, Dict, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, GEOSPHERE, MongoClient
from pymongo.database import Database

from errors import ErrorResponse, InvalidObjectId
from settings import Settings

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = None
db: Optional[Database] = None

# Never serialized back to clients.
PRIVATE_FIELDS = ("password", "resetPasswordToken", "resetPasswordExpire", "confirmEmailToken")


def connect(settings: Settings) -> Database:
    global client, db
    client = MongoClient(settings.database_url)
    db = client[settings.database_name]
    logger.info("MongoDB connected: %s", settings.database_name)
    return db


def disconnect() -> None:
    global client, db
    if client is not None:
        client.close()
    client = None
    db = None


def get_db() -> Database:
    if db is None:
        raise ErrorResponse("Database not configured", 500)
    return db


def ensure_indexes(database: Database) -> None:
    database["user"].create_index("email", unique=True)
    database["bootcamp"].create_index("name", unique=True)
    database["bootcamp"].create_index([("location.coordinates", GEOSPHERE)])
    database["course"].create_index("bootcamp")
    # one review per user per bootcamp
    database["review"].create_index([("bootcamp", ASCENDING), ("user", ASCENDING)], unique=True)


def to_obj_id(id_str: Any) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise InvalidObjectId(id_str)


def sanitize(doc: Optional[Dict]) -> Optional[Dict]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    for field in PRIVATE_FIELDS:
        d.pop(field, None)
    return d


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict]) -> Dict:
    """Insert a document and return it with its new `_id`.

    None-valued fields are left out so optional and derived fields are absent
    rather than null.
    """
    if isinstance(data, BaseModel):
        doc = data.model_dump(exclude_none=True)
    else:
        doc = {k: v for k, v in data.items() if v is not None}
    res = database[collection_name].insert_one(doc)
    doc["_id"] = res.inserted_id
    return doc


def find_by_id(database: Database, collection_name: str, id_str: Any, projection: Optional[Dict] = None) -> Optional[Dict]:
    return database[collection_name].find_one({"_id": to_obj_id(id_str)}, projection)
