"""Inbound socket event payloads and outbound event names."""

import uuid
from typing import Annotated

from pydantic import Field

from projectchat.models.base import CamelModel
from projectchat.models.message import MessageCreate, MessageUpdate

ProjectId = Annotated[int, Field(strict=True, gt=0)]

# Client -> server
JOIN_PROJECT = "join_project"
LEAVE_PROJECT = "leave_project"
SEND_MESSAGE = "send_message"
EDIT_MESSAGE = "edit_message"
DELETE_MESSAGE = "delete_message"
TYPING_START = "typing_start"
TYPING_STOP = "typing_stop"
GET_ONLINE_USERS = "get_online_users"

# Server -> client
JOINED_PROJECT = "joined_project"
LEFT_PROJECT = "left_project"
USER_JOINED = "user_joined"
USER_LEFT = "user_left"
NEW_MESSAGE = "new_message"
MESSAGE_EDITED = "message_edited"
MESSAGE_DELETED = "message_deleted"
USER_TYPING = "user_typing"
ONLINE_USERS = "online_users"
ERROR = "error"

CLIENT_EVENTS = [
    JOIN_PROJECT,
    LEAVE_PROJECT,
    SEND_MESSAGE,
    EDIT_MESSAGE,
    DELETE_MESSAGE,
    TYPING_START,
    TYPING_STOP,
    GET_ONLINE_USERS,
]
SERVER_EVENTS = [
    JOINED_PROJECT,
    LEFT_PROJECT,
    USER_JOINED,
    USER_LEFT,
    NEW_MESSAGE,
    MESSAGE_EDITED,
    MESSAGE_DELETED,
    USER_TYPING,
    ONLINE_USERS,
    ERROR,
]


class ProjectRef(CamelModel):
    project_id: ProjectId


class SendMessagePayload(MessageCreate):
    chat_id: uuid.UUID


class EditMessagePayload(MessageUpdate):
    message_id: uuid.UUID


class DeleteMessagePayload(CamelModel):
    message_id: uuid.UUID


class TypingPayload(CamelModel):
    chat_id: uuid.UUID
