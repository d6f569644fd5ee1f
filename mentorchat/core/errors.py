"""Error taxonomy for the messaging layer.

Every error carries a stable ``code`` (used in API responses and logs) and a
human readable ``message`` suitable for an error banner.
"""

from typing import Optional


class MessagingError(Exception):
    code = "messaging_error"
    default_message = "An unknown error occurred. Please try again."

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidParticipants(MessagingError):
    code = "invalid_participants"
    default_message = "A conversation needs two different, non-empty participants."


class StoreUnavailable(MessagingError):
    code = "store_unavailable"
    default_message = "Network timeout. Please check your connection."


class EmptyMessage(MessagingError):
    code = "empty_message"
    default_message = "Cannot send an empty message."


class AttachmentUploadFailed(MessagingError):
    code = "attachment_upload_failed"
    default_message = "The attachment could not be uploaded."


class SendFailed(MessagingError):
    code = "send_failed"
    default_message = "The message could not be sent."


class DataCorrupted(MessagingError):
    code = "data_corrupted"
    default_message = "The data could not be read or is corrupted."


class ProfileNotFound(MessagingError):
    code = "profile_not_found"
    default_message = "No profile found for this user."


class ConversationNotFound(MessagingError):
    code = "conversation_not_found"
    default_message = "Conversation not found."


class DuplicateConversation(MessagingError):
    """Raised by the store when a conversation for the pair already exists."""

    code = "duplicate_conversation"
    default_message = "A conversation between these users already exists."
