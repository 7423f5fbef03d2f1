from vetchat.models.chat import Chat
from vetchat.models.message import Message, MessageRole, MessageStatus
from vetchat.models.report import Report, StoredFile

__all__ = [
    "Chat", "Message", "MessageRole", "MessageStatus", "Report", "StoredFile",
]
