from datetime import datetime, timezone
from typing import List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from mentorchat.core.errors import ConversationNotFound, DuplicateConversation
from mentorchat.models.conversation import ConversationDocument


def pair_key(user_a: str, user_b: str) -> str:
    """Canonical key for an unordered participant pair."""
    low, high = sorted([user_a, user_b])
    return f"{low}|{high}"


def to_object_id(conversation_id: str) -> ObjectId:
    if not ObjectId.is_valid(conversation_id):
        raise ConversationNotFound()
    return ObjectId(conversation_id)


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("participant_ids", ASCENDING)])
        await self.collection.create_index([("last_message_at", DESCENDING)])
        # sparse so records written before pair keys existed stay valid
        await self.collection.create_index([("pair_key", ASCENDING)], unique=True, sparse=True)

    async def find_by_pair(self, user_a: str, user_b: str) -> Optional[ConversationDocument]:
        # oldest wins if legacy duplicates exist
        cursor = (
            self.collection.find({"participant_ids": {"$all": [user_a, user_b], "$size": 2}})
            .sort([("created_at", ASCENDING), ("_id", ASCENDING)])
            .limit(1)
        )
        items = await cursor.to_list(length=1)
        if not items:
            return None
        items[0]["_id"] = str(items[0]["_id"])
        return items[0]

    async def create(self, doc: ConversationDocument) -> str:
        doc = ConversationDocument(**doc)
        doc["pair_key"] = pair_key(*doc["participant_ids"])
        try:
            result = await self.collection.insert_one(doc)
        except DuplicateKeyError as exc:
            raise DuplicateConversation() from exc
        return str(result.inserted_id)

    async def get(self, conversation_id: str) -> Optional[ConversationDocument]:
        doc = await self.collection.find_one({"_id": to_object_id(conversation_id)})
        if doc:
            doc["_id"] = str(doc["_id"])
        return doc

    async def list_for_user(self, user_id: str, limit: int = 200) -> List[ConversationDocument]:
        query = {"participant_ids": user_id}
        sort = [("last_message_at", DESCENDING), ("_id", DESCENDING)]
        items = await self.collection.find(query).sort(sort).limit(limit).to_list(length=limit)
        for it in items:
            it["_id"] = str(it.get("_id"))
        return items

    async def update_on_new_message(
        self,
        conversation_id: str,
        preview: str,
        sender_id: str,
        receiver_id: str,
        at: Optional[datetime] = None,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> None:
        await self.collection.update_one(
            {"_id": to_object_id(conversation_id)},
            {
                "$set": {
                    "last_message_at": at or datetime.now(timezone.utc),
                    "last_message": preview,
                    "last_sender_id": sender_id,
                },
                "$inc": {f"unread_counts.{receiver_id}": 1},
            },
            session=session,
        )

    async def reset_unread(self, conversation_id: str, user_id: str) -> bool:
        result = await self.collection.update_one(
            {
                "_id": to_object_id(conversation_id),
                "participant_ids": user_id,
                f"unread_counts.{user_id}": {"$ne": 0},
            },
            {"$set": {f"unread_counts.{user_id}": 0}},
        )
        return bool(result.modified_count)
