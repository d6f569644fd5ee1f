import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from mentorchat.core.errors import (
    AttachmentUploadFailed,
    ConversationNotFound,
    EmptyMessage,
    MessagingError,
    SendFailed,
)
from mentorchat.models.message import MessageDocument
from mentorchat.repositories.document_store import DocumentStore, Subscription
from mentorchat.schemas.base import decode_document
from mentorchat.schemas.message import Attachment, Message, MessageListUpdate
from mentorchat.schemas.profile import RecipientInfo, UserProfile
from mentorchat.services.profile_cache import ProfileCache
from mentorchat.services.sync_handle import SyncHandle, SyncState
from mentorchat.utils.blob_storage import BlobStorage

logger = logging.getLogger(__name__)


class MessageSyncEngine:
    """Message stream, sending and read state for one conversation."""

    def __init__(
        self,
        store: DocumentStore,
        blob_storage: BlobStorage,
        current_user_id: str,
        conversation_id: Optional[str] = None,
        profile_cache: Optional[ProfileCache] = None,
    ) -> None:
        self._store = store
        self._blob_storage = blob_storage
        self.current_user_id = current_user_id
        self.conversation_id = conversation_id
        self.profile_cache = profile_cache or ProfileCache()
        self.state = SyncState.IDLE
        self.messages: List[Message] = []
        self.error: Optional[MessagingError] = None
        self._subscription: Optional[Subscription] = None
        self._handle: Optional[SyncHandle[MessageListUpdate]] = None
        self._tasks: Set[asyncio.Task] = set()

    async def start_listening(self, conversation_id: Optional[str] = None) -> SyncHandle[MessageListUpdate]:
        if self.state is SyncState.LISTENING:
            self.stop_listening()
        if conversation_id is not None:
            self.conversation_id = conversation_id
        if not self.conversation_id:
            raise ConversationNotFound()
        self.error = None
        self.messages = []
        handle: SyncHandle[MessageListUpdate] = SyncHandle(lambda: self._release(handle))
        self._handle = handle
        self.state = SyncState.LISTENING
        try:
            subscription = await self._store.watch_messages(self.conversation_id, self._on_snapshot, self._on_error)
        except MessagingError as exc:
            self._on_error(exc)
            return handle
        if self._handle is not handle or self.state is not SyncState.LISTENING:
            subscription.close()
            return handle
        self._subscription = subscription
        return handle

    def stop_listening(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        self.state = SyncState.IDLE
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.finish()

    def _release(self, handle: SyncHandle) -> None:
        if self._handle is handle:
            self.stop_listening()

    def _on_snapshot(self, records: List[Dict[str, Any]]) -> None:
        if self.state is not SyncState.LISTENING:
            return
        try:
            messages = [Message.from_document(r) for r in records]
        except MessagingError as exc:
            self._on_error(exc)
            return
        self.messages = messages
        if self._handle is not None:
            self._handle.push(MessageListUpdate(conversation_id=self.conversation_id, messages=messages))
        self._schedule_mark_read()

    def _on_error(self, error: MessagingError) -> None:
        if self.state is not SyncState.LISTENING:
            return
        logger.warning("Message listener for %s failed: %s", self.conversation_id, error.message)
        self.state = SyncState.ERROR
        self.error = error
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.fail(error)

    # read state

    def _schedule_mark_read(self) -> None:
        task = asyncio.create_task(self._mark_read(self.conversation_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _mark_read(self, conversation_id: str) -> None:
        try:
            await self._store.mark_read(conversation_id, self.current_user_id)
        except Exception as exc:
            logger.warning("Mark as read failed for %s: %s", conversation_id, exc)

    # sending

    async def send_message(self, text: str, attachment: Optional[Attachment] = None) -> Message:
        if not self.conversation_id:
            raise ConversationNotFound()
        trimmed = (text or "").strip()
        if not trimmed and attachment is None:
            raise EmptyMessage()

        record: MessageDocument = {
            "sender_id": self.current_user_id,
            "text": trimmed,
            "created_at": datetime.now(timezone.utc),
            "read_by": [self.current_user_id],
        }
        uploaded_url: Optional[str] = None
        if attachment is not None:
            path = f"chat_attachments/{self.conversation_id}/{uuid.uuid4().hex}_{attachment.filename}"
            try:
                uploaded_url = await self._blob_storage.upload(attachment.data, path, attachment.content_type)
            except Exception as exc:
                logger.warning("Attachment upload for %s failed: %s", self.conversation_id, exc)
                raise AttachmentUploadFailed() from exc
            if attachment.kind == "image":
                record["image_url"] = uploaded_url
            else:
                record["document_url"] = uploaded_url
                record["document_name"] = attachment.filename

        try:
            message_id = await self._store.create_message(self.conversation_id, record)
        except MessagingError as exc:
            if uploaded_url:
                logger.warning("Send failed, attachment %s is orphaned", uploaded_url)
            raise SendFailed(exc.message) from exc
        return Message.model_validate(dict(record, id=message_id, conversation_id=self.conversation_id))

    def is_from_me(self, message: Message) -> bool:
        return message.is_from(self.current_user_id)

    # recipient header

    async def load_recipient(self, recipient_id: str) -> RecipientInfo:
        """Counterpart profile and company name; company is "" when unknown."""
        profile = self.profile_cache.get(recipient_id)
        if profile is None:
            try:
                profile = decode_document(UserProfile, await self._store.fetch_profile(recipient_id))
            except MessagingError as exc:
                logger.info("No profile for %s: %s", recipient_id, exc.message)
                return RecipientInfo(profile=None, company_name="")
            self.profile_cache.put(recipient_id, profile)

        company = self.profile_cache.get_company_name(recipient_id)
        if company is None:
            try:
                company = await self._store.fetch_company_by_user(recipient_id)
            except MessagingError as exc:
                logger.info("Company lookup for %s failed: %s", recipient_id, exc.message)
                return RecipientInfo(profile=profile, company_name="")
            self.profile_cache.put_company_name(recipient_id, company)
            company = company or ""
        return RecipientInfo(profile=profile, company_name=company)
