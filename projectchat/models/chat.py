"""Chat model — a project-scoped conversation."""

import uuid
from datetime import datetime

from pydantic import Field as PydanticField
from pydantic import field_validator
from sqlalchemy import DateTime, Index, text
from sqlmodel import Field, SQLModel

from projectchat.models.base import (
    CamelModel,
    TimestampMixin,
    UtcDateTime,
    new_uuid,
    utcnow,
)

NAME_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 500


class Chat(TimestampMixin, SQLModel, table=True):
    __tablename__ = "chats"
    __table_args__ = (
        Index("ix_chats_project_active", "project_id", "is_active"),
        Index("ix_chats_project_created", "project_id", "created_at"),
        # Names are unique per project among active chats only
        Index(
            "uq_chats_active_project_name",
            "project_id",
            "name",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    project_id: int = Field(nullable=False, index=True)
    name: str = Field(max_length=NAME_MAX_LENGTH)
    description: str | None = Field(default=None, max_length=DESCRIPTION_MAX_LENGTH)
    is_active: bool = Field(default=True)
    created_by: int = Field(nullable=False)
    last_activity: datetime = Field(
        default_factory=utcnow, nullable=False, sa_type=DateTime(timezone=True)
    )


# ── Pydantic schemas ─────────────────────────────────────────

class ChatRead(CamelModel):
    id: uuid.UUID
    project_id: int
    name: str
    description: str | None = None
    is_active: bool
    created_by: int
    last_activity: UtcDateTime
    created_at: UtcDateTime
    updated_at: UtcDateTime


class ChatSummary(ChatRead):
    message_count: int = 0
    unread_count: int | None = None


class ChatInfo(CamelModel):
    """Minimal chat identity attached to realtime broadcasts."""

    id: uuid.UUID
    name: str
    project_id: int


def _strip(value: str | None) -> str | None:
    return value.strip() if isinstance(value, str) else value


class ChatCreate(CamelModel):
    project_id: int = PydanticField(gt=0)
    name: str = PydanticField(min_length=1, max_length=NAME_MAX_LENGTH)
    description: str | None = PydanticField(default=None, max_length=DESCRIPTION_MAX_LENGTH)

    @field_validator("name", "description", mode="before")
    @classmethod
    def strip_text(cls, value: str | None) -> str | None:
        return _strip(value)


class ChatUpdate(CamelModel):
    name: str | None = PydanticField(default=None, min_length=1, max_length=NAME_MAX_LENGTH)
    description: str | None = PydanticField(default=None, max_length=DESCRIPTION_MAX_LENGTH)

    @field_validator("name", "description", mode="before")
    @classmethod
    def strip_text(cls, value: str | None) -> str | None:
        return _strip(value)


class ProjectChatProvision(CamelModel):
    """Payload of the project-created hook fired by the project service."""

    project_id: int = PydanticField(gt=0)
    project_name: str = PydanticField(min_length=1)
    project_description: str | None = None
    owner_id: int
    members: list = PydanticField(default_factory=list)
