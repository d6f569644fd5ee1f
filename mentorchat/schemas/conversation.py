from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from mentorchat.schemas.base import decode_document

# populated client-side from the counterpart's profile, never written back
DERIVED_FIELDS = {"other_participant_name", "other_participant_image_url", "other_participant_company"}


class Conversation(BaseModel):

    id: str
    participant_ids: List[str]
    last_message: str
    last_message_at: datetime
    last_sender_id: str
    unread_counts: Dict[str, int]
    created_at: Optional[datetime] = None

    other_participant_name: str = ""
    other_participant_image_url: str = ""
    other_participant_company: str = ""

    @field_validator("participant_ids")
    @classmethod
    def _two_distinct_participants(cls, value: List[str]) -> List[str]:
        if len(value) != 2 or value[0] == value[1] or not all(value):
            raise ValueError("participant_ids must hold two distinct user ids")
        return value

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Conversation":
        return decode_document(cls, doc)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(exclude=DERIVED_FIELDS | {"id"})

    def unread_count_for(self, user_id: str) -> int:
        return self.unread_counts.get(user_id, 0)

    def other_participant_id(self, user_id: str) -> str:
        for pid in self.participant_ids:
            if pid != user_id:
                return pid
        return ""

    @property
    def initials(self) -> str:
        # "Maria Lopez" -> "ML"
        words = self.other_participant_name.split()
        return "".join(w[0] for w in words[:2]).upper()


class ConversationListUpdate(BaseModel):

    user_id: str
    conversations: List[Conversation] = Field(default_factory=list)
    total_unread: int = 0
    generation: int = 0


class StartConversationRequest(BaseModel):

    user_id: str


class ConversationsFrame(BaseModel):
    """Client frame on the conversation list socket, e.g. ``{"type": "search", "query": "ma"}``."""

    type: str = ""
    query: str = ""
