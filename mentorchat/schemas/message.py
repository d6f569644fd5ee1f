from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from mentorchat.schemas.base import decode_document


class Message(BaseModel):

    id: str
    conversation_id: str
    sender_id: str
    text: str
    created_at: datetime
    read_by: List[str]
    image_url: Optional[str] = None
    document_url: Optional[str] = None
    document_name: Optional[str] = None

    @model_validator(mode="after")
    def _check_content(self) -> "Message":
        if self.image_url and self.document_url:
            raise ValueError("a message carries at most one attachment")
        if not self.text.strip() and not (self.image_url or self.document_url):
            raise ValueError("text may only be empty when an attachment is present")
        return self

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Message":
        return decode_document(cls, doc)

    def is_from(self, user_id: str) -> bool:
        return self.sender_id == user_id


class MessageListUpdate(BaseModel):

    conversation_id: str
    messages: List[Message] = Field(default_factory=list)


class Attachment(BaseModel):
    """Raw attachment bytes, uploaded to blob storage before the message is written."""

    kind: Literal["image", "document"]
    data: bytes
    filename: str
    content_type: str = "application/octet-stream"


class SendMessageFrame(BaseModel):

    text: str = ""
