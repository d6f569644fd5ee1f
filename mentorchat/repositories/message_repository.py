from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from mentorchat.models.message import MessageDocument


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index(
            [("conversation_id", ASCENDING), ("created_at", ASCENDING), ("_id", ASCENDING)]
        )

    async def save_message(
        self,
        doc: MessageDocument,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> str:
        result = await self.collection.insert_one(dict(doc), session=session)
        return str(result.inserted_id)

    async def list_for_conversation(self, conversation_id: str, limit: int = 500) -> List[MessageDocument]:
        # newest window first, ObjectIds break ties within the same millisecond
        sort = [("created_at", DESCENDING), ("_id", DESCENDING)]
        cur = self.collection.find({"conversation_id": conversation_id}).sort(sort).limit(limit)
        items = await cur.to_list(length=limit)
        for it in items:
            it["_id"] = str(it.get("_id"))
        # ascending chronological order for the listener
        return list(reversed(items))

    async def mark_read(self, conversation_id: str, user_id: str) -> int:
        result = await self.collection.update_many(
            {"conversation_id": conversation_id, "sender_id": {"$ne": user_id}, "read_by": {"$ne": user_id}},
            {"$addToSet": {"read_by": user_id}},
        )
        return result.modified_count or 0
