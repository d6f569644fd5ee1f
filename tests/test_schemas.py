import pytest

from fakes import conversation_record, message_record
from mentorchat.core.errors import DataCorrupted
from mentorchat.schemas.conversation import Conversation
from mentorchat.schemas.message import Message
from mentorchat.schemas.profile import UserProfile


def test_conversation_decode_normalizes_id():
    conversation = Conversation.from_document(conversation_record("c1", ["u1", "u2"]))
    assert conversation.id == "c1"
    assert conversation.other_participant_id("u1") == "u2"
    assert conversation.unread_count_for("nobody") == 0


def test_conversation_missing_required_field_is_corrupted():
    doc = conversation_record("c1", ["u1", "u2"])
    del doc["unread_counts"]
    with pytest.raises(DataCorrupted):
        Conversation.from_document(doc)


@pytest.mark.parametrize("participants", [["u1"], ["u1", "u1"], ["u1", "u2", "u3"], ["u1", ""]])
def test_conversation_needs_two_distinct_participants(participants):
    doc = conversation_record("c1", ["u1", "u2"])
    doc["participant_ids"] = participants
    with pytest.raises(DataCorrupted):
        Conversation.from_document(doc)


def test_derived_fields_are_not_persisted():
    conversation = Conversation.from_document(conversation_record("c1", ["u1", "u2"]))
    enriched = conversation.model_copy(update={"other_participant_name": "Maria Lopez"})
    doc = enriched.to_document()
    assert "other_participant_name" not in doc
    assert "other_participant_company" not in doc
    assert "id" not in doc
    assert doc["participant_ids"] == ["u1", "u2"]


def test_initials():
    conversation = Conversation.from_document(conversation_record("c1", ["u1", "u2"]))
    assert conversation.initials == ""
    assert conversation.model_copy(update={"other_participant_name": "maria del lopez"}).initials == "MD"


def test_message_text_may_be_empty_only_with_attachment():
    with pytest.raises(DataCorrupted):
        Message.from_document(message_record("m1", "c1", "u1", "  "))
    message = Message.from_document(message_record("m1", "c1", "u1", "", image_url="https://x/img.jpg"))
    assert message.image_url == "https://x/img.jpg"


def test_message_rejects_two_attachments():
    doc = message_record("m1", "c1", "u1", "hi", image_url="https://x/a.jpg", document_url="https://x/b.pdf")
    with pytest.raises(DataCorrupted):
        Message.from_document(doc)


def test_message_is_from():
    message = Message.from_document(message_record("m1", "c1", "u1", "hello"))
    assert message.is_from("u1")
    assert not message.is_from("u2")


def test_full_name_is_trimmed():
    assert UserProfile(id="u1", first_name="Maria", last_name="").full_name == "Maria"
