"""Live, profile-enriched conversation list for one user.

Each store snapshot bumps the engine's generation. Profiles missing from the
cache are fetched in parallel (once per user, even across overlapping
snapshots) and the enriched list is published only if no newer snapshot has
arrived and the engine is still listening. Snapshots that need no fetch are
published straight from the cache.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set

from mentorchat.core.errors import MessagingError
from mentorchat.repositories.document_store import DocumentStore, Subscription
from mentorchat.schemas.base import decode_document
from mentorchat.schemas.conversation import Conversation, ConversationListUpdate
from mentorchat.schemas.profile import UserProfile
from mentorchat.services.profile_cache import ProfileCache
from mentorchat.services.sync_handle import SyncHandle, SyncState
from mentorchat.services.unread_accounting import total_unread

logger = logging.getLogger(__name__)


class ConversationSyncEngine:

    def __init__(self, store: DocumentStore, profile_cache: Optional[ProfileCache] = None) -> None:
        self._store = store
        self.profile_cache = profile_cache or ProfileCache()
        self.state = SyncState.IDLE
        self.user_id: Optional[str] = None
        self.conversations: List[Conversation] = []
        self.error: Optional[MessagingError] = None
        self._generation = 0
        self._subscription: Optional[Subscription] = None
        self._handle: Optional[SyncHandle[ConversationListUpdate]] = None
        self._inflight: Dict[str, asyncio.Task] = {}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def total_unread(self) -> int:
        if self.user_id is None:
            return 0
        return total_unread(self.conversations, self.user_id)

    async def start_listening(self, user_id: str) -> SyncHandle[ConversationListUpdate]:
        if self.state is SyncState.LISTENING:
            self.stop_listening()
        self.user_id = user_id
        self.error = None
        handle: SyncHandle[ConversationListUpdate] = SyncHandle(lambda: self._release(handle))
        self._handle = handle
        self.state = SyncState.LISTENING
        try:
            subscription = await self._store.watch_conversations(user_id, self._on_snapshot, self._on_error)
        except MessagingError as exc:
            self._on_error(exc)
            return handle
        if self._handle is not handle or self.state is not SyncState.LISTENING:
            # stopped or failed while subscribing
            subscription.close()
            return handle
        self._subscription = subscription
        logger.info("Listening to conversations of %s", user_id)
        return handle

    def stop_listening(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        if self.state is SyncState.LISTENING:
            logger.info("Stopped listening to conversations of %s", self.user_id)
        self.state = SyncState.IDLE
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.finish()

    def _release(self, handle: SyncHandle) -> None:
        if self._handle is handle:
            self.stop_listening()

    def search(self, query: str) -> List[Conversation]:
        needle = query.strip().lower()
        if not needle:
            return list(self.conversations)
        return [
            c
            for c in self.conversations
            if needle in c.other_participant_name.lower() or needle in c.other_participant_company.lower()
        ]

    # store callbacks

    def _on_snapshot(self, records: List[Dict[str, Any]]) -> None:
        if self.state is not SyncState.LISTENING:
            return
        self._generation += 1
        generation = self._generation
        try:
            conversations = [Conversation.from_document(r) for r in records]
        except MessagingError as exc:
            self._on_error(exc)
            return

        other_ids = [c.other_participant_id(self.user_id) for c in conversations]
        missing = self.profile_cache.missing(other_ids)
        if not missing:
            self._publish(generation, conversations)
            return
        task = asyncio.create_task(self._enrich_and_publish(generation, conversations, missing))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_error(self, error: MessagingError) -> None:
        if self.state is not SyncState.LISTENING:
            return
        logger.warning("Conversation listener for %s failed: %s", self.user_id, error.message)
        self.state = SyncState.ERROR
        self.error = error
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.fail(error)

    # enrichment

    async def _enrich_and_publish(self, generation: int, conversations: List[Conversation], missing: List[str]) -> None:
        await asyncio.gather(*(self._fetch_once(user_id) for user_id in missing))
        if self.state is not SyncState.LISTENING or generation != self._generation:
            logger.debug("Discarding enrichment for generation %s (current %s)", generation, self._generation)
            return
        self._publish(generation, conversations)

    def _fetch_once(self, user_id: str) -> asyncio.Task:
        task = self._inflight.get(user_id)
        if task is None:
            task = asyncio.create_task(self._fetch_participant(user_id))
            self._inflight[user_id] = task
            task.add_done_callback(lambda _t, uid=user_id: self._inflight.pop(uid, None))
        return task

    async def _fetch_participant(self, user_id: str) -> None:
        need_profile = self.profile_cache.get(user_id) is None
        need_company = self.profile_cache.get_company_name(user_id) is None
        profile_result, company_result = await asyncio.gather(
            self._store.fetch_profile(user_id) if need_profile else _none(),
            self._store.fetch_company_by_user(user_id) if need_company else _none(),
            return_exceptions=True,
        )
        if need_profile:
            if isinstance(profile_result, BaseException):
                logger.warning("Profile fetch for %s failed: %s", user_id, profile_result)
            else:
                try:
                    self.profile_cache.put(user_id, decode_document(UserProfile, profile_result))
                except MessagingError:
                    logger.warning("Profile for %s is unreadable", user_id)
        if need_company:
            if isinstance(company_result, BaseException):
                logger.warning("Company fetch for %s failed: %s", user_id, company_result)
            else:
                self.profile_cache.put_company_name(user_id, company_result)

    def _enrich(self, conversation: Conversation) -> Conversation:
        other_id = conversation.other_participant_id(self.user_id)
        profile = self.profile_cache.get(other_id)
        company = self.profile_cache.get_company_name(other_id)
        if profile is None:
            return conversation.model_copy(update={"other_participant_company": company or ""})
        return conversation.model_copy(
            update={
                "other_participant_name": profile.full_name,
                "other_participant_image_url": profile.profile_image_url or "",
                "other_participant_company": company or profile.role,
            }
        )

    def _publish(self, generation: int, conversations: List[Conversation]) -> None:
        enriched = [self._enrich(c) for c in conversations]
        self.conversations = enriched
        update = ConversationListUpdate(
            user_id=self.user_id,
            conversations=enriched,
            total_unread=total_unread(enriched, self.user_id),
            generation=generation,
        )
        if self._handle is not None:
            self._handle.push(update)


async def _none() -> None:
    return None
