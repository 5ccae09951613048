"""Message model — a single event in a project Chat."""

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, field_validator
from pydantic import Field as PydanticField
from sqlalchemy import JSON, DateTime, Index, Text
from sqlmodel import Column, Field, SQLModel

from projectchat.models.base import CamelModel, TimestampMixin, UtcDateTime, new_uuid

CONTENT_MAX_LENGTH = 2000


class MessageType(StrEnum):
    TEXT = "text"
    SYSTEM = "system"
    FILE = "file"
    IMAGE = "image"


class Message(TimestampMixin, SQLModel, table=True):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_chat_created", "chat_id", "created_at"),
        Index("ix_messages_chat_deleted_created", "chat_id", "is_deleted", "created_at"),
        Index("ix_messages_user_created", "user_id", "created_at"),
    )

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    chat_id: uuid.UUID = Field(foreign_key="chats.id", nullable=False, index=True)
    user_id: int = Field(nullable=False, index=True)

    content: str = Field(sa_column=Column(Text, nullable=False))
    message_type: MessageType = Field(default=MessageType.TEXT, nullable=False)

    # Kind-specific payload: file info, system action tag, ...
    # ("metadata" is reserved on declarative classes, hence "meta")
    meta: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))

    is_edited: bool = Field(default=False)
    edited_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    is_deleted: bool = Field(default=False)
    deleted_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))


# ── Pydantic schemas ─────────────────────────────────────────

class MessageRead(CamelModel):
    id: uuid.UUID
    chat_id: uuid.UUID
    user_id: int
    content: str
    message_type: MessageType
    meta: dict = PydanticField(
        default_factory=dict,
        validation_alias=AliasChoices("meta", "metadata"),
        serialization_alias="metadata",
    )
    is_edited: bool = False
    edited_at: UtcDateTime | None = None
    is_deleted: bool = False
    deleted_at: UtcDateTime | None = None
    created_at: UtcDateTime
    updated_at: UtcDateTime


def _clean_content(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


class MessageCreate(CamelModel):
    content: str = PydanticField(min_length=1, max_length=CONTENT_MAX_LENGTH)
    message_type: MessageType = MessageType.TEXT
    meta: dict = PydanticField(default_factory=dict, alias="metadata")

    @field_validator("content", mode="before")
    @classmethod
    def strip_content(cls, value: Any) -> Any:
        return _clean_content(value)

    @field_validator("meta", mode="before")
    @classmethod
    def default_meta(cls, value: Any) -> Any:
        return {} if value is None else value


class MessageUpdate(CamelModel):
    content: str = PydanticField(min_length=1, max_length=CONTENT_MAX_LENGTH)

    @field_validator("content", mode="before")
    @classmethod
    def strip_content(cls, value: Any) -> Any:
        return _clean_content(value)
