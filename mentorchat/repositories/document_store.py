"""The document store the sync engines talk to.

``DocumentStore`` is the narrow interface the messaging layer depends on;
``MongoDocumentStore`` implements it on MongoDB, pushing change
notifications over the realtime bus so live queries can re-run.
"""

import functools
import logging
from typing import Any, Dict, List, Optional, Protocol

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from mentorchat.core.errors import (
    ConversationNotFound,
    InvalidParticipants,
    ProfileNotFound,
    StoreUnavailable,
)
from mentorchat.repositories.conversation_repository import ConversationRepository
from mentorchat.repositories.message_repository import MessageRepository
from mentorchat.repositories.user_repository import UserRepository
from mentorchat.utils.live_query import ErrorHandler, LiveQuery, SnapshotHandler
from mentorchat.utils.realtime_bus import conversations_channel, messages_channel

logger = logging.getLogger(__name__)


class Subscription(Protocol):

    def close(self) -> None:
        ...


class DocumentStore(Protocol):

    async def watch_conversations(
        self, participant_id: str, on_snapshot: SnapshotHandler, on_error: ErrorHandler
    ) -> Subscription:
        ...

    async def get_conversation_by_pair(self, user_a: str, user_b: str) -> Optional[Dict[str, Any]]:
        ...

    async def create_conversation(self, record: Dict[str, Any]) -> str:
        ...

    async def watch_messages(
        self, conversation_id: str, on_snapshot: SnapshotHandler, on_error: ErrorHandler
    ) -> Subscription:
        ...

    async def create_message(self, conversation_id: str, record: Dict[str, Any]) -> str:
        ...

    async def mark_read(self, conversation_id: str, user_id: str) -> None:
        ...

    async def fetch_profile(self, user_id: str) -> Dict[str, Any]:
        ...

    async def fetch_company_by_user(self, user_id: str) -> Optional[str]:
        ...


def _store_call(func):
    """Surface driver failures as ``StoreUnavailable``."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except PyMongoError as exc:
            logger.warning("%s failed: %s", func.__name__, exc)
            raise StoreUnavailable() from exc

    return wrapper


class MongoDocumentStore:

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        bus,
        client: Optional[AsyncIOMotorClient] = None,
        use_transactions: bool = False,
    ) -> None:
        self._conversations = ConversationRepository(db)
        self._messages = MessageRepository(db)
        self._users = UserRepository(db)
        self._bus = bus
        self._client = client
        self._use_transactions = use_transactions and client is not None

    async def ensure_indexes(self) -> None:
        await self._conversations.ensure_indexes()
        await self._messages.ensure_indexes()

    # conversations

    async def watch_conversations(
        self, participant_id: str, on_snapshot: SnapshotHandler, on_error: ErrorHandler
    ) -> LiveQuery:
        query = LiveQuery(
            self._bus,
            conversations_channel(participant_id),
            lambda: self._conversations.list_for_user(participant_id),
            on_snapshot,
            on_error,
        )
        return await query.start()

    @_store_call
    async def list_conversations(self, participant_id: str) -> List[Dict[str, Any]]:
        return await self._conversations.list_for_user(participant_id)

    @_store_call
    async def get_conversation_by_pair(self, user_a: str, user_b: str) -> Optional[Dict[str, Any]]:
        return await self._conversations.find_by_pair(user_a, user_b)

    @_store_call
    async def create_conversation(self, record: Dict[str, Any]) -> str:
        conversation_id = await self._conversations.create(record)
        for participant_id in record["participant_ids"]:
            await self._bus.publish(conversations_channel(participant_id), conversation_id)
        return conversation_id

    # messages

    async def watch_messages(
        self, conversation_id: str, on_snapshot: SnapshotHandler, on_error: ErrorHandler
    ) -> LiveQuery:
        query = LiveQuery(
            self._bus,
            messages_channel(conversation_id),
            lambda: self._messages.list_for_conversation(conversation_id),
            on_snapshot,
            on_error,
        )
        return await query.start()

    @_store_call
    async def create_message(self, conversation_id: str, record: Dict[str, Any]) -> str:
        conversation = await self._conversations.get(conversation_id)
        if conversation is None:
            raise ConversationNotFound()
        participants = conversation.get("participant_ids", [])
        sender_id = record["sender_id"]
        if sender_id not in participants:
            raise InvalidParticipants("The sender is not part of this conversation.")
        receiver_id = next(pid for pid in participants if pid != sender_id)

        doc = dict(record, conversation_id=conversation_id)
        preview = _preview(doc)
        if self._use_transactions:
            async with await self._client.start_session() as session:
                async with session.start_transaction():
                    message_id = await self._messages.save_message(doc, session=session)
                    await self._conversations.update_on_new_message(
                        conversation_id, preview, sender_id, receiver_id, doc["created_at"], session=session
                    )
        else:
            message_id = await self._messages.save_message(doc)
            await self._conversations.update_on_new_message(
                conversation_id, preview, sender_id, receiver_id, doc["created_at"]
            )

        await self._bus.publish(messages_channel(conversation_id), message_id)
        for participant_id in participants:
            await self._bus.publish(conversations_channel(participant_id), conversation_id)
        return message_id

    @_store_call
    async def list_messages(self, conversation_id: str) -> List[Dict[str, Any]]:
        return await self._messages.list_for_conversation(conversation_id)

    @_store_call
    async def mark_read(self, conversation_id: str, user_id: str) -> None:
        conversation = await self._conversations.get(conversation_id)
        if conversation is None:
            raise ConversationNotFound()
        if user_id not in conversation.get("participant_ids", []):
            raise InvalidParticipants("Only participants can mark this conversation as read.")
        marked = await self._messages.mark_read(conversation_id, user_id)
        reset = await self._conversations.reset_unread(conversation_id, user_id)
        # only notify on real changes, readers re-mark on every snapshot
        if marked:
            await self._bus.publish(messages_channel(conversation_id), "read")
        if marked or reset:
            await self._bus.publish(conversations_channel(user_id), conversation_id)

    # profiles

    @_store_call
    async def fetch_profile(self, user_id: str) -> Dict[str, Any]:
        profile = await self._users.get_profile(user_id)
        if profile is None:
            raise ProfileNotFound()
        return profile

    @_store_call
    async def fetch_company_by_user(self, user_id: str) -> Optional[str]:
        return await self._users.get_company_name(user_id)


def _preview(doc: Dict[str, Any]) -> str:
    text = doc.get("text", "").strip()
    if text:
        return text[:200]
    if doc.get("image_url"):
        return "Photo"
    if doc.get("document_name"):
        return doc["document_name"]
    return "Attachment"
