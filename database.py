"""
MongoDB connection and document helpers.

The client is created once by the application factory; repositories receive
the database handle and never import a module-level global.
"""
import logging

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import MongoClient

import config
from errors import InvalidArgument

logger = logging.getLogger(__name__)


def connect(url: str = config.DATABASE_URL, name: str = config.DATABASE_NAME):
    client = MongoClient(url)
    logger.info("MongoDB client created for database %s", name)
    return client[name]


def to_object_id(value: str) -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise InvalidArgument("Invalid id")


def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
    elif _id is not None:
        doc["id"] = _id
    return doc


def run_in_transaction(db, callback, enabled: bool = config.MONGODB_TRANSACTIONS):
    """Run ``callback(session)`` inside a transaction when enabled.

    Without transaction support the callback gets ``session=None`` and its
    writes are applied one after another.
    """
    if not enabled:
        return callback(None)
    with db.client.start_session() as session:
        return session.with_transaction(callback)
