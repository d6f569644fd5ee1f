from typing import Iterable

from mentorchat.schemas.conversation import Conversation


def total_unread(conversations: Iterable[Conversation], user_id: str) -> int:
    return sum(c.unread_counts.get(user_id, 0) for c in conversations)
