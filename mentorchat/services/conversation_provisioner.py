import logging
from datetime import datetime, timezone

from mentorchat.core.errors import DuplicateConversation, InvalidParticipants, StoreUnavailable
from mentorchat.models.conversation import ConversationDocument
from mentorchat.repositories.document_store import DocumentStore

logger = logging.getLogger(__name__)


class ConversationProvisioner:
    """Resolves "talk to user X" into a single conversation id per pair."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def get_or_create_conversation(self, user_a: str, user_b: str) -> str:
        user_a, user_b = (user_a or "").strip(), (user_b or "").strip()
        if not user_a or not user_b or user_a == user_b:
            raise InvalidParticipants()

        existing = await self._store.get_conversation_by_pair(user_a, user_b)
        if existing:
            return str(existing["_id"])

        now = datetime.now(timezone.utc)
        record: ConversationDocument = {
            "participant_ids": sorted([user_a, user_b]),
            "last_message": "",
            "last_message_at": now,
            "last_sender_id": "",
            "unread_counts": {user_a: 0, user_b: 0},
            "created_at": now,
        }
        try:
            conversation_id = await self._store.create_conversation(record)
        except DuplicateConversation:
            # lost a concurrent create for the same pair
            existing = await self._store.get_conversation_by_pair(user_a, user_b)
            if not existing:
                raise StoreUnavailable()
            logger.info("Conversation for %s/%s created concurrently, using %s", user_a, user_b, existing["_id"])
            return str(existing["_id"])
        logger.info("Created conversation %s for %s/%s", conversation_id, user_a, user_b)
        return conversation_id
