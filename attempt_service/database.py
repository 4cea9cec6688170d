from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import PyMongoError
from bson import ObjectId
from bson.errors import InvalidId
import logging

from attempt_service.config import settings

logger = logging.getLogger(__name__)

# Variables globales
client = None
db = None


def init_db():
    """Initialise the MongoDB connection and the attempt indexes.

    Returns False when MongoDB cannot be reached; callers then run on
    in-memory storage.
    """
    global client, db

    try:
        client = MongoClient(
            settings.MONGODB_URL,
            serverSelectionTimeoutMS=settings.MONGODB_TIMEOUT_MS,
            maxPoolSize=50
        )

        client.admin.command('ping')
        db = client[settings.MONGODB_DB]

        existing = db.list_collection_names()
        if settings.ATTEMPTS_COLLECTION not in existing:
            db.create_collection(settings.ATTEMPTS_COLLECTION)

        ensure_attempt_indexes(db[settings.ATTEMPTS_COLLECTION])

        logger.info(f"✅ MongoDB initialised: {settings.MONGODB_DB}")
        return True

    except PyMongoError as e:
        logger.error(f"❌ MongoDB connection failed: {e}")
        logger.warning("⚠ Falling back to in-memory storage")
        client = None
        db = None
        return False


def ensure_attempt_indexes(collection):
    """Create the attempt indexes, including both uniqueness constraints."""
    collection.create_index(
        [("quiz_id", ASCENDING), ("student_id", ASCENDING), ("attempt_number", ASCENDING)],
        unique=True,
        name="uniq_quiz_student_attempt_number"
    )
    collection.create_index(
        [("quiz_id", ASCENDING), ("student_id", ASCENDING)],
        unique=True,
        partialFilterExpression={"status": "in-progress"},
        name="uniq_quiz_student_in_progress"
    )
    collection.create_index("student_id")
    collection.create_index("quiz_id")
    collection.create_index("status")
    collection.create_index([("created_at", DESCENDING)])


def get_db():
    """Return the database instance, or None in memory mode"""
    return db


def get_client():
    """Return the MongoDB client, or None in memory mode"""
    return client


def close_db():
    global client, db
    if client is not None:
        client.close()
        logger.info("🔌 MongoDB connection closed")
    client = None
    db = None


def object_id_to_str(doc):
    """Replace a document's ObjectId `_id` with a string `id`"""
    if doc and "_id" in doc:
        doc["id"] = str(doc["_id"])
        del doc["_id"]
    return doc


def str_to_object_id(id_str):
    """Parse an ObjectId, returning None for malformed input"""
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        return None
