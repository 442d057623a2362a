"""Conversation management: message records, turn driving and persistence."""

from linchat.conversation.manager import (
    ConversationManager,
    derive_title,
    generate_title,
)
from linchat.conversation.messages import (
    AssistantMessage,
    Attachment,
    Message,
    UserMessage,
    message_from_dict,
)
from linchat.conversation.store import ConversationStore

__all__ = [
    "AssistantMessage",
    "Attachment",
    "ConversationManager",
    "ConversationStore",
    "Message",
    "UserMessage",
    "derive_title",
    "generate_title",
    "message_from_dict",
]
