"""Import all models so SQLModel.metadata picks them up."""

from projectchat.models.chat import (
    Chat,
    ChatCreate,
    ChatInfo,
    ChatRead,
    ChatSummary,
    ChatUpdate,
    ProjectChatProvision,
)
from projectchat.models.message import (
    Message,
    MessageCreate,
    MessageRead,
    MessageType,
    MessageUpdate,
)

__all__ = [
    "Chat",
    "ChatCreate",
    "ChatInfo",
    "ChatRead",
    "ChatSummary",
    "ChatUpdate",
    "Message",
    "MessageCreate",
    "MessageRead",
    "MessageType",
    "MessageUpdate",
    "ProjectChatProvision",
]
