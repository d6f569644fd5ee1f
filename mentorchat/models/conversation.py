from datetime import datetime
from typing import List, Optional, TypedDict


class ConversationDocument(TypedDict, total=False):
    _id: str
    participant_ids: List[str]
    # sorted participant ids joined, unique per pair
    pair_key: str
    last_message: str
    last_message_at: Optional[datetime]
    last_sender_id: str
    # per-user unread counters (user_id -> count)
    unread_counts: dict[str, int]
    created_at: datetime
