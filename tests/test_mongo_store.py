import asyncio
from datetime import timedelta

import pytest
from bson import ObjectId
from mongomock_motor import AsyncMongoMockClient

from fakes import BASE_TIME, FakeBlobStorage
from mentorchat.core.errors import (
    ConversationNotFound,
    DuplicateConversation,
    InvalidParticipants,
    ProfileNotFound,
)
from mentorchat.repositories.conversation_repository import ConversationRepository
from mentorchat.repositories.document_store import MongoDocumentStore
from mentorchat.repositories.message_repository import MessageRepository
from mentorchat.services.conversation_provisioner import ConversationProvisioner
from mentorchat.services.message_sync import MessageSyncEngine
from mentorchat.utils.realtime_bus import LocalBus, conversations_channel, messages_channel


async def eventually(predicate, timeout: float = 1.0) -> None:
    async def wait():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(wait(), timeout)


def new_conversation(a: str, b: str, minutes: int = 0):
    at = BASE_TIME + timedelta(minutes=minutes)
    return {
        "participant_ids": sorted([a, b]),
        "last_message": "",
        "last_message_at": at,
        "last_sender_id": "",
        "unread_counts": {a: 0, b: 0},
        "created_at": at,
    }


def new_message(sender_id: str, text: str, minutes: int = 0, **extra):
    doc = {
        "sender_id": sender_id,
        "text": text,
        "created_at": BASE_TIME + timedelta(minutes=minutes),
        "read_by": [sender_id],
    }
    doc.update(extra)
    return doc


class Notifications:

    def __init__(self) -> None:
        self.received = []

    async def __call__(self, message):
        self.received.append(message)


@pytest.fixture
def bus():
    return LocalBus()


@pytest.fixture
def db():
    return AsyncMongoMockClient()["mentorchat_test"]


@pytest.fixture
async def mongo_store(db, bus):
    store = MongoDocumentStore(db, bus)
    await store.ensure_indexes()
    return store


@pytest.mark.asyncio
async def test_pair_lookup_returns_oldest_legacy_record(db, mongo_store):
    # legacy records predate pair keys, so the unique index does not apply
    newer = await db["conversations"].insert_one(new_conversation("ana", "ben", minutes=30))
    older = await db["conversations"].insert_one(new_conversation("ana", "ben", minutes=5))
    await db["conversations"].insert_one(new_conversation("ana", "cleo", minutes=1))

    found = await mongo_store.get_conversation_by_pair("ben", "ana")

    assert found["_id"] == str(older.inserted_id)
    assert found["_id"] != str(newer.inserted_id)
    assert await mongo_store.get_conversation_by_pair("ben", "cleo") is None


@pytest.mark.asyncio
async def test_duplicate_pair_is_rejected_by_unique_index(db, mongo_store):
    await mongo_store.create_conversation(new_conversation("ana", "ben"))

    with pytest.raises(DuplicateConversation):
        await mongo_store.create_conversation(new_conversation("ben", "ana"))
    assert await db["conversations"].count_documents({}) == 1


@pytest.mark.asyncio
async def test_provisioner_reuses_stored_conversation(db, mongo_store):
    provisioner = ConversationProvisioner(mongo_store)

    first = await provisioner.get_or_create_conversation("ana", "ben")
    second = await provisioner.get_or_create_conversation("ben", "ana")

    assert first == second
    stored = await db["conversations"].find_one({"_id": ObjectId(first)})
    assert stored["pair_key"] == "ana|ben"


@pytest.mark.asyncio
async def test_create_message_updates_summary_and_unread(db, mongo_store):
    conversation_id = await mongo_store.create_conversation(new_conversation("ana", "ben"))

    await mongo_store.create_message(conversation_id, new_message("ana", "  hello  ", minutes=1))
    await mongo_store.create_message(conversation_id, new_message("ana", "", minutes=2, image_url="/attachments/x"))

    stored = await db["conversations"].find_one({"_id": ObjectId(conversation_id)})
    assert stored["last_message"] == "Photo"
    assert stored["last_sender_id"] == "ana"
    assert stored["unread_counts"] == {"ana": 0, "ben": 2}
    assert await db["messages"].count_documents({"conversation_id": conversation_id}) == 2


@pytest.mark.asyncio
async def test_create_message_checks_sender_and_conversation(db, mongo_store):
    conversation_id = await mongo_store.create_conversation(new_conversation("ana", "ben"))

    with pytest.raises(InvalidParticipants):
        await mongo_store.create_message(conversation_id, new_message("mallory", "hi"))
    with pytest.raises(ConversationNotFound):
        await mongo_store.create_message(str(ObjectId()), new_message("ana", "hi"))
    with pytest.raises(ConversationNotFound):
        await mongo_store.create_message("not-an-id", new_message("ana", "hi"))
    assert await db["messages"].count_documents({}) == 0


@pytest.mark.asyncio
async def test_mark_read_notifies_only_on_change(db, bus, mongo_store):
    conversation_id = await mongo_store.create_conversation(new_conversation("ana", "ben"))
    await mongo_store.create_message(conversation_id, new_message("ana", "hello"))
    message_events, list_events = Notifications(), Notifications()
    await bus.subscribe(messages_channel(conversation_id), message_events)
    await bus.subscribe(conversations_channel("ben"), list_events)

    await mongo_store.mark_read(conversation_id, "ben")

    assert len(message_events.received) == 1
    assert len(list_events.received) == 1
    message = await db["messages"].find_one({"conversation_id": conversation_id})
    assert sorted(message["read_by"]) == ["ana", "ben"]
    stored = await db["conversations"].find_one({"_id": ObjectId(conversation_id)})
    assert stored["unread_counts"]["ben"] == 0

    await mongo_store.mark_read(conversation_id, "ben")

    assert len(message_events.received) == 1
    assert len(list_events.received) == 1


@pytest.mark.asyncio
async def test_mark_read_by_stranger_writes_nothing(db, bus, mongo_store):
    conversation_id = await mongo_store.create_conversation(new_conversation("ana", "ben"))
    await mongo_store.create_message(conversation_id, new_message("ana", "hello"))
    events = Notifications()
    await bus.subscribe(messages_channel(conversation_id), events)

    with pytest.raises(InvalidParticipants):
        await mongo_store.mark_read(conversation_id, "mallory")
    with pytest.raises(ConversationNotFound):
        await mongo_store.mark_read(str(ObjectId()), "ben")

    assert not await ConversationRepository(db).reset_unread(conversation_id, "mallory")
    stored = await db["conversations"].find_one({"_id": ObjectId(conversation_id)})
    assert "mallory" not in stored["unread_counts"]
    message = await db["messages"].find_one({"conversation_id": conversation_id})
    assert message["read_by"] == ["ana"]
    assert events.received == []


@pytest.mark.asyncio
async def test_message_window_keeps_the_newest(db):
    conversation_id = str(ObjectId())
    await db["messages"].insert_many(
        [
            {
                "conversation_id": conversation_id,
                "sender_id": "ana",
                "text": f"m{i}",
                "created_at": BASE_TIME + timedelta(seconds=i),
                "read_by": ["ana"],
            }
            for i in range(501)
        ]
    )

    items = await MessageRepository(db).list_for_conversation(conversation_id)

    assert len(items) == 500
    assert items[0]["text"] == "m1"
    assert items[-1]["text"] == "m500"


@pytest.mark.asyncio
async def test_profile_and_company_lookup(db, mongo_store):
    await db["users"].insert_one({"_id": "ben", "first_name": "Ben", "last_name": "Ode", "role": "Mentor"})
    await db["companies"].insert_one({"owner_id": "ben", "name": ""})

    profile = await mongo_store.fetch_profile("ben")

    assert profile["first_name"] == "Ben"
    assert await mongo_store.fetch_company_by_user("ben") is None
    assert await mongo_store.fetch_company_by_user("nobody") is None
    with pytest.raises(ProfileNotFound):
        await mongo_store.fetch_profile("nobody")


@pytest.mark.asyncio
async def test_watched_messages_follow_writes_until_closed(mongo_store):
    conversation_id = await mongo_store.create_conversation(new_conversation("ana", "ben"))
    snapshots, errors = [], []

    live = await mongo_store.watch_messages(conversation_id, snapshots.append, errors.append)
    await eventually(lambda: len(snapshots) == 1)
    assert snapshots[0] == []

    await mongo_store.create_message(conversation_id, new_message("ana", "hello"))
    await eventually(lambda: len(snapshots) == 2)
    assert [m["text"] for m in snapshots[-1]] == ["hello"]

    live.close()
    await mongo_store.create_message(conversation_id, new_message("ana", "again", minutes=1))
    await asyncio.sleep(0.05)
    assert len(snapshots) == 2
    assert errors == []


@pytest.mark.asyncio
async def test_message_engine_reads_through_the_store(db, mongo_store):
    conversation_id = await mongo_store.create_conversation(new_conversation("ana", "ben"))
    await mongo_store.create_message(conversation_id, new_message("ana", "hello"))
    engine = MessageSyncEngine(mongo_store, FakeBlobStorage(), "ben")

    async with await engine.start_listening(conversation_id) as updates:
        first = await asyncio.wait_for(updates.__anext__(), timeout=1)
        assert [m.text for m in first.messages] == ["hello"]
        # the read receipt triggers one more snapshot
        second = await asyncio.wait_for(updates.__anext__(), timeout=1)
        assert "ben" in second.messages[0].read_by

    stored = await db["conversations"].find_one({"_id": ObjectId(conversation_id)})
    assert stored["unread_counts"]["ben"] == 0
