from datetime import datetime
from typing import List, Optional, TypedDict


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    sender_id: str
    text: str
    created_at: datetime
    read_by: List[str]
    # attachments, at most one of image / document
    image_url: Optional[str]
    document_url: Optional[str]
    document_name: Optional[str]
