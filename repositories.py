"""
Data access for each collection.

One repository per entity, built once by the application factory and handed
to the routes. Repositories raise ``errors.ApiError`` subclasses and return
plain JSON-ready dicts.
"""
import logging
from datetime import datetime, timezone

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import run_in_transaction, serialize_doc, to_object_id
from errors import Conflict, NotFound, ValidationError
from identity import IdentityProviderError
from schemas import (
    OfferIn,
    OfferStatusUpdate,
    PropertyIn,
    PropertyStatusUpdate,
    PropertyUpdate,
    ReviewIn,
    RoleUpdate,
    UserIn,
    WishlistIn,
    validate_payload,
)

logger = logging.getLogger(__name__)

MISSING_FIELDS = "Missing required fields"
PRICE_RANGE = "priceMin must not exceed priceMax"

# Homepage carousel size
ADVERTISED_LIMIT = 4

# Server-owned fields a client payload may never set
SERVER_FIELDS = ("_id", "id", "status", "isAdvertised", "createdAt", "updatedAt")


def _now():
    return datetime.now(timezone.utc)


def _strip(payload, fields=SERVER_FIELDS) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError(MISSING_FIELDS)
    return {k: v for k, v in payload.items() if k not in fields}


def _check_price_range(low, high):
    if low is not None and high is not None and low > high:
        raise ValidationError(PRICE_RANGE)


def _all(cursor):
    return [serialize_doc(d) for d in cursor]


class UserRepository:
    def __init__(self, db, identity, transactions=False):
        self.db = db
        self.collection = db["users"]
        self.properties = db["properties"]
        self.identity = identity
        self.transactions = transactions

    def ensure_indexes(self):
        self.collection.create_index("email", unique=True)

    def register_if_absent(self, payload: dict) -> dict:
        data = validate_payload(UserIn, payload, "A valid email is required")
        exists = {"message": "User already exists", "inserted": False}
        if self.collection.find_one({"email": data.email}):
            return exists
        doc = data.model_dump(exclude_none=True)
        doc.update({"role": "user", "status": "active", "createdAt": _now()})
        try:
            res = self.collection.insert_one(doc)
        except DuplicateKeyError:
            return exists
        logger.info("Registered user %s", data.email)
        return {"message": "User added", "inserted": True, "insertedId": str(res.inserted_id)}

    def get_by_email(self, email: str) -> dict:
        user = self.collection.find_one({"email": email})
        if not user:
            raise NotFound("User not found")
        return serialize_doc(user)

    def get_role(self, email: str) -> str:
        return self.get_by_email(email).get("role") or "user"

    def list_all(self):
        return _all(self.collection.find({}).sort("createdAt", DESCENDING))

    def set_role(self, user_id: str, payload: dict) -> dict:
        data = validate_payload(RoleUpdate, payload, "Invalid role")
        res = self.collection.update_one({"_id": to_object_id(user_id)}, {"$set": {"role": data.role}})
        if res.matched_count == 0:
            raise NotFound("User not found")
        logger.info("User %s role set to %s", user_id, data.role)
        return {"matchedCount": res.matched_count, "modifiedCount": res.modified_count}

    def flag_fraud(self, user_id: str) -> dict:
        oid = to_object_id(user_id)
        user = self.collection.find_one({"_id": oid})
        if not user:
            raise NotFound("User not found")

        def apply(session):
            flagged = self.collection.update_one({"_id": oid}, {"$set": {"status": "fraud"}}, session=session)
            try:
                removed = self.properties.update_many(
                    {"agentEmail": user["email"]},
                    {"$set": {"status": "fraud-removed"}},
                    session=session,
                )
            except PyMongoError:
                logger.error("User %s flagged as fraud but their listings were not removed", user["email"])
                raise
            return {"userModified": flagged.modified_count, "propertiesModified": removed.modified_count}

        result = run_in_transaction(self.db, apply, self.transactions)
        logger.warning("User %s flagged as fraud, %d listings removed", user["email"], result["propertiesModified"])
        return result

    def delete(self, user_id: str) -> dict:
        """Delete the local record, then the identity provider account.

        The local delete stands when the provider fails; the result then
        carries ``status="partial"`` and the provider's error.
        """
        oid = to_object_id(user_id)
        user = self.collection.find_one({"_id": oid})
        if not user:
            raise NotFound("User not found")
        res = self.collection.delete_one({"_id": oid})
        logger.info("Deleted user %s", user.get("email"))
        try:
            self.identity.delete_user(user)
        except IdentityProviderError as e:
            logger.warning("Identity account for %s was not deleted: %s", user.get("email"), e)
            return {
                "status": "partial",
                "deletedCount": res.deleted_count,
                "identityDeleted": False,
                "identityError": str(e),
            }
        return {"status": "deleted", "deletedCount": res.deleted_count, "identityDeleted": True}


class PropertyRepository:
    def __init__(self, db):
        self.collection = db["properties"]

    def ensure_indexes(self):
        self.collection.create_index("agentEmail")
        self.collection.create_index([("status", ASCENDING), ("createdAt", DESCENDING)])

    def create(self, payload: dict) -> dict:
        data = validate_payload(PropertyIn, _strip(payload), MISSING_FIELDS)
        _check_price_range(data.priceMin, data.priceMax)
        doc = data.model_dump()
        doc.update({"status": "pending", "isAdvertised": False, "createdAt": _now()})
        res = self.collection.insert_one(doc)
        logger.info("Property %s submitted by %s", res.inserted_id, doc["agentEmail"])
        return {"acknowledged": True, "insertedId": str(res.inserted_id)}

    def list(self, status=None):
        query = {"status": status} if status else {}
        return _all(self.collection.find(query).sort("createdAt", DESCENDING))

    def list_by_agent(self, email: str):
        return _all(self.collection.find({"agentEmail": email}).sort("createdAt", DESCENDING))

    def get_by_id(self, property_id: str) -> dict:
        doc = self.collection.find_one({"_id": to_object_id(property_id)})
        if not doc:
            raise NotFound("Property not found")
        return serialize_doc(doc)

    def update(self, property_id: str, patch: dict) -> dict:
        # Any edit sends the listing back to review
        oid = to_object_id(property_id)
        data = validate_payload(PropertyUpdate, _strip(patch, SERVER_FIELDS + ("agentEmail",)), MISSING_FIELDS)
        changes = data.model_dump(exclude_unset=True)
        current = self.collection.find_one({"_id": oid})
        if not current:
            raise NotFound("Property not found")
        _check_price_range(changes.get("priceMin", current.get("priceMin")), changes.get("priceMax", current.get("priceMax")))
        changes.update({"status": "pending", "updatedAt": _now()})
        self.collection.update_one({"_id": oid}, {"$set": changes})
        return serialize_doc(self.collection.find_one({"_id": oid}))

    def set_status(self, property_id: str, payload: dict) -> dict:
        data = validate_payload(PropertyStatusUpdate, payload, "Invalid status")
        res = self.collection.update_one({"_id": to_object_id(property_id)}, {"$set": {"status": data.status}})
        if res.matched_count == 0:
            raise NotFound("Property not found")
        logger.info("Property %s status set to %s", property_id, data.status)
        return {"matchedCount": res.matched_count, "modifiedCount": res.modified_count}

    def delete(self, property_id: str) -> dict:
        res = self.collection.delete_one({"_id": to_object_id(property_id)})
        if res.deleted_count == 0:
            raise NotFound("Property not found")
        logger.info("Deleted property %s", property_id)
        return {"deletedCount": res.deleted_count}

    def advertise(self, property_id: str) -> dict:
        res = self.collection.update_one(
            {"_id": to_object_id(property_id), "isAdvertised": {"$ne": True}},
            {"$set": {"isAdvertised": True}},
        )
        if res.matched_count == 0:
            raise NotFound("Property not found or already advertised")
        logger.info("Property %s advertised", property_id)
        return {"success": True, "modifiedCount": res.modified_count}


class ListingViews:
    """Read-only listings joined with the agent's user record."""

    def __init__(self, db):
        self.properties = db["properties"]

    @staticmethod
    def _join_agent():
        return {"$lookup": {"from": "users", "localField": "agentEmail", "foreignField": "email", "as": "agent"}}

    def advertised_highlights(self):
        pipeline = [
            {"$match": {"isAdvertised": True, "status": "verified"}},
            self._join_agent(),
            {"$unwind": "$agent"},
            {"$match": {"agent.status": {"$ne": "fraud"}}},
            {"$sort": {"createdAt": DESCENDING}},
            {"$limit": ADVERTISED_LIMIT},
            {"$project": {
                "image": 1,
                "title": 1,
                "location": 1,
                "priceMin": 1,
                "priceMax": 1,
                "status": 1,
                "agentName": "$agent.name",
            }},
        ]
        return _all(self.properties.aggregate(pipeline))

    def verified_by_agents(self):
        # Listings whose agent record was deleted stay visible
        pipeline = [
            {"$match": {"status": "verified"}},
            self._join_agent(),
            {"$unwind": {"path": "$agent", "preserveNullAndEmptyArrays": True}},
            {"$match": {"$or": [
                {"agent.role": "agent", "agent.status": {"$ne": "fraud"}},
                {"agent.email": {"$exists": False}},
            ]}},
            {"$sort": {"createdAt": DESCENDING}},
            {"$project": {"agent": 0}},
        ]
        return _all(self.properties.aggregate(pipeline))


class WishlistRepository:
    def __init__(self, db):
        self.collection = db["wishlist"]

    def ensure_indexes(self):
        self.collection.create_index([("userEmail", ASCENDING), ("propertyId", ASCENDING)], unique=True)

    def add(self, payload: dict) -> dict:
        data = validate_payload(WishlistIn, payload, "User email and property id are required")
        if self.exists(data.userEmail, data.propertyId):
            raise Conflict("Property already in wishlist")
        doc = {"userEmail": data.userEmail, "propertyId": data.propertyId, "createdAt": _now()}
        try:
            res = self.collection.insert_one(doc)
        except DuplicateKeyError:
            raise Conflict("Property already in wishlist")
        return {"acknowledged": True, "insertedId": str(res.inserted_id)}

    def list(self, email: str):
        return _all(self.collection.find({"userEmail": email}))

    def exists(self, email: str, property_id) -> bool:
        return self.collection.find_one({"userEmail": email, "propertyId": str(property_id)}) is not None

    def get_by_id(self, item_id: str) -> dict:
        doc = self.collection.find_one({"_id": to_object_id(item_id)})
        if not doc:
            raise NotFound("Wishlist item not found")
        return serialize_doc(doc)

    def remove(self, item_id: str) -> dict:
        res = self.collection.delete_one({"_id": to_object_id(item_id)})
        if res.deleted_count == 0:
            raise NotFound("Wishlist item not found")
        return {"deletedCount": res.deleted_count}


class OfferRepository:
    def __init__(self, db, transactions=False):
        self.db = db
        self.collection = db["offers"]
        self.properties = db["properties"]
        self.transactions = transactions

    def ensure_indexes(self):
        self.collection.create_index("propertyId")
        self.collection.create_index("buyerEmail")
        self.collection.create_index("agentEmail")

    def submit(self, payload: dict) -> dict:
        data = validate_payload(OfferIn, payload, "Buyer email and offer amount are required")
        prop = self.properties.find_one({"_id": to_object_id(data.propertyId)})
        if not prop:
            raise NotFound("Property not found")
        low, high = float(prop["priceMin"]), float(prop["priceMax"])
        if not low <= data.offerAmount <= high:
            raise ValidationError(f"Offer amount must be between {low:g} and {high:g}")
        doc = data.model_dump(exclude_none=True)
        doc.update({
            "propertyTitle": prop.get("title"),
            "propertyLocation": prop.get("location"),
            "propertyImage": prop.get("image"),
            "agentName": prop.get("agentName"),
            "agentEmail": prop.get("agentEmail"),
            "priceMin": low,
            "priceMax": high,
            "status": "pending",
            "createdAt": _now(),
        })
        res = self.collection.insert_one(doc)
        logger.info("Offer %s on property %s by %s", res.inserted_id, data.propertyId, data.buyerEmail)
        return {"acknowledged": True, "insertedId": str(res.inserted_id)}

    def list_for_buyer(self, email: str):
        return _all(self.collection.find({"buyerEmail": email}).sort("createdAt", DESCENDING))

    def list_for_agent(self, email: str):
        return _all(self.collection.find({"agentEmail": email}).sort("createdAt", DESCENDING))

    def get_by_id(self, offer_id: str) -> dict:
        doc = self.collection.find_one({"_id": to_object_id(offer_id)})
        if not doc:
            raise NotFound("Offer not found")
        return serialize_doc(doc)

    def update_status(self, offer_id: str, payload: dict) -> dict:
        """Set an offer's status; accepting it rejects every other offer on the property."""
        data = validate_payload(OfferStatusUpdate, payload, "Invalid status")
        oid = to_object_id(offer_id)
        offer = self.collection.find_one({"_id": oid})
        if not offer:
            raise NotFound("Offer not found")
        property_id = offer["propertyId"]
        if data.propertyId and data.propertyId != property_id:
            raise ValidationError("Offer does not belong to this property")

        def apply(session):
            res = self.collection.update_one({"_id": oid}, {"$set": {"status": data.status}}, session=session)
            rejected = 0
            if data.status == "accepted":
                try:
                    others = self.collection.update_many(
                        {"propertyId": property_id, "_id": {"$ne": oid}},
                        {"$set": {"status": "rejected"}},
                        session=session,
                    )
                except PyMongoError:
                    logger.error("Offer %s accepted but sibling offers on %s were not rejected", offer_id, property_id)
                    raise
                rejected = others.modified_count
            return {"modifiedCount": res.modified_count, "rejectedCount": rejected}

        result = run_in_transaction(self.db, apply, self.transactions)
        logger.info("Offer %s set to %s, %d sibling offers rejected", offer_id, data.status, result["rejectedCount"])
        return result


class ReviewRepository:
    def __init__(self, db):
        self.collection = db["reviews"]

    def ensure_indexes(self):
        self.collection.create_index("propertyId")
        self.collection.create_index("userEmail")
        self.collection.create_index("createdAt")

    def add(self, payload: dict) -> dict:
        data = validate_payload(ReviewIn, _strip(payload), "User email and property id are required")
        doc = data.model_dump(exclude_none=True)
        doc["createdAt"] = _now()
        res = self.collection.insert_one(doc)
        return {"acknowledged": True, "insertedId": str(res.inserted_id)}

    def list_by_property(self, property_id: str):
        return _all(self.collection.find({"propertyId": property_id}).sort("createdAt", DESCENDING))

    def list_by_user(self, email: str):
        return _all(self.collection.find({"userEmail": email}).sort("createdAt", DESCENDING))

    def list_latest(self, limit: int = 3):
        return _all(self.collection.find({}).sort("createdAt", DESCENDING).limit(limit))

    def list_all(self):
        return _all(self.collection.find({}).sort("createdAt", DESCENDING))

    def get_by_id(self, review_id: str) -> dict:
        doc = self.collection.find_one({"_id": to_object_id(review_id)})
        if not doc:
            raise NotFound("Review not found")
        return serialize_doc(doc)

    def delete(self, review_id: str) -> dict:
        res = self.collection.delete_one({"_id": to_object_id(review_id)})
        if res.deleted_count == 0:
            raise NotFound("Review not found")
        logger.info("Deleted review %s", review_id)
        return {"deletedCount": res.deleted_count}
