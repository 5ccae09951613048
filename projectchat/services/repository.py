"""Chat and message persistence.

All reads and writes of ``chats`` and ``messages`` go through here. Callers
own the session; every mutating function commits before returning so the
caller can acknowledge or broadcast knowing the change is durable.
"""

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import or_, select

from projectchat.core.errors import Conflict
from projectchat.models.base import utcnow
from projectchat.models.chat import Chat
from projectchat.models.message import Message, MessageType

logger = logging.getLogger(__name__)

DUPLICATE_CHAT_NAME = "Chat with this name already exists for this project"
UNREAD_WINDOW = timedelta(hours=24)


@dataclass
class MessageFilter:
    """Recognised message filters; ``None`` means "don't filter"."""

    chat_id: uuid.UUID | None = None
    chat_ids: list[uuid.UUID] | None = None
    user_id: int | None = None
    include_deleted: bool = False
    before: datetime | None = None
    after: datetime | None = None
    search: str | None = None


@dataclass
class ChatFilter:
    project_ids: list[int] | None = None
    created_by: int | None = None
    search: str | None = None
    include_inactive: bool = False


@dataclass
class ProjectChatStats:
    project_id: int
    chat_count: int
    last_activity: datetime | None


@dataclass
class ChatStats:
    total_chats: int = 0
    total_messages: int = 0
    chats_created: int = 0
    project_breakdown: list[ProjectChatStats] = field(default_factory=list)


def _like(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def highlight(content: str, term: str) -> str:
    """Wrap every case-insensitive occurrence of ``term`` in ``<mark>``."""
    if not term:
        return content
    return re.sub(re.escape(term), r"<mark>\g<0></mark>", content, flags=re.IGNORECASE)


# ── Chats ─────────────────────────────────────────────────────

async def get_chat(session: AsyncSession, chat_id: uuid.UUID) -> Chat | None:
    return await session.get(Chat, chat_id)


async def get_active_chat(session: AsyncSession, chat_id: uuid.UUID) -> Chat | None:
    chat = await get_chat(session, chat_id)
    if chat is None or not chat.is_active:
        return None
    return chat


async def find_active_chat_by_project_and_name(
    session: AsyncSession,
    project_id: int,
    name: str,
    exclude_id: uuid.UUID | None = None,
) -> Chat | None:
    stmt = select(Chat).where(
        Chat.project_id == project_id,
        Chat.name == name,
        Chat.is_active == True,  # noqa: E712
    )
    if exclude_id is not None:
        stmt = stmt.where(Chat.id != exclude_id)
    result = await session.execute(stmt)
    return result.scalars().first()


async def find_earliest_active_chat_for_project(
    session: AsyncSession, project_id: int
) -> Chat | None:
    stmt = (
        select(Chat)
        .where(Chat.project_id == project_id, Chat.is_active == True)  # noqa: E712
        .order_by(Chat.created_at.asc())  # type: ignore[union-attr]
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalars().first()


async def create_chat(
    session: AsyncSession,
    *,
    project_id: int,
    name: str,
    created_by: int,
    description: str | None = None,
) -> Chat:
    """Insert an active chat. Raises ``Conflict`` on a duplicate active name."""
    if await find_active_chat_by_project_and_name(session, project_id, name):
        raise Conflict(DUPLICATE_CHAT_NAME)

    chat = Chat(
        project_id=project_id,
        name=name,
        description=description,
        created_by=created_by,
    )
    session.add(chat)
    try:
        await session.commit()
    except IntegrityError as exc:
        # A concurrent creator won the race on the partial unique index
        await session.rollback()
        raise Conflict(DUPLICATE_CHAT_NAME) from exc
    await session.refresh(chat)
    logger.info("Created chat %s for project %s", chat.id, project_id)
    return chat


async def update_chat(session: AsyncSession, chat: Chat, changes: dict[str, Any]) -> Chat:
    """Apply ``name``/``description`` changes, keeping active names unique."""
    new_name = changes.get("name")
    if new_name is not None and new_name != chat.name:
        clash = await find_active_chat_by_project_and_name(
            session, chat.project_id, new_name, exclude_id=chat.id
        )
        if clash:
            raise Conflict(DUPLICATE_CHAT_NAME)

    for key in ("name", "description"):
        if key in changes and not (key == "name" and changes[key] is None):
            setattr(chat, key, changes[key])
    chat.updated_at = utcnow()
    session.add(chat)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise Conflict(DUPLICATE_CHAT_NAME) from exc
    await session.refresh(chat)
    return chat


async def soft_deactivate_chat(session: AsyncSession, chat: Chat) -> Chat:
    """Mark a chat inactive. Deactivation is never undone."""
    if not chat.is_active:
        return chat
    chat.is_active = False
    chat.updated_at = utcnow()
    session.add(chat)
    await session.commit()
    await session.refresh(chat)
    logger.info("Deactivated chat %s", chat.id)
    return chat


async def touch_activity(session: AsyncSession, chat: Chat) -> Chat:
    chat.last_activity = utcnow()
    session.add(chat)
    await session.commit()
    await session.refresh(chat)
    return chat


def _chat_conditions(f: ChatFilter) -> list:
    conditions = []
    if not f.include_inactive:
        conditions.append(Chat.is_active == True)  # noqa: E712
    if f.project_ids is not None:
        conditions.append(Chat.project_id.in_(f.project_ids))  # type: ignore[attr-defined]
    if f.created_by is not None:
        conditions.append(Chat.created_by == f.created_by)
    if f.search:
        pattern = _like(f.search)
        conditions.append(or_(
            Chat.name.ilike(pattern, escape="\\"),  # type: ignore[attr-defined]
            Chat.description.ilike(pattern, escape="\\"),  # type: ignore[union-attr]
        ))
    return conditions


async def list_chats(
    session: AsyncSession, f: ChatFilter, *, offset: int = 0, limit: int = 20
) -> list[Chat]:
    """Chats matching ``f``, most recently active first."""
    stmt = (
        select(Chat)
        .where(*_chat_conditions(f))
        .order_by(Chat.last_activity.desc())  # type: ignore[union-attr]
        .offset(offset)
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_chats(session: AsyncSession, f: ChatFilter) -> int:
    stmt = select(func.count()).select_from(Chat).where(*_chat_conditions(f))
    return (await session.execute(stmt)).scalar_one()


async def chat_stats(
    session: AsyncSession, project_ids: list[int], user_id: int
) -> ChatStats:
    """Totals over the active chats of ``project_ids``."""
    if not project_ids:
        return ChatStats()

    in_projects = ChatFilter(project_ids=project_ids)
    total_chats = await count_chats(session, in_projects)
    # Chats the user created anywhere, not only in the listed projects
    chats_created = await count_chats(session, ChatFilter(created_by=user_id))

    breakdown_stmt = (
        select(
            Chat.project_id,
            func.count().label("chat_count"),
            func.max(Chat.last_activity).label("last_activity"),
        )
        .where(*_chat_conditions(in_projects))
        .group_by(Chat.project_id)
        .order_by(Chat.project_id)
    )
    rows = (await session.execute(breakdown_stmt)).all()

    active_ids = select(Chat.id).where(*_chat_conditions(in_projects))
    total_messages = (await session.execute(
        select(func.count()).select_from(Message).where(
            Message.chat_id.in_(active_ids),  # type: ignore[attr-defined]
            Message.is_deleted == False,  # noqa: E712
        )
    )).scalar_one()

    return ChatStats(
        total_chats=total_chats,
        total_messages=total_messages,
        chats_created=chats_created,
        project_breakdown=[
            ProjectChatStats(
                project_id=row.project_id,
                chat_count=row.chat_count,
                last_activity=row.last_activity,
            )
            for row in rows
        ],
    )


# ── Messages ──────────────────────────────────────────────────

async def create_message(
    session: AsyncSession,
    *,
    chat_id: uuid.UUID,
    user_id: int,
    content: str,
    message_type: MessageType = MessageType.TEXT,
    meta: dict | None = None,
) -> Message:
    message = Message(
        chat_id=chat_id,
        user_id=user_id,
        content=content,
        message_type=message_type,
        meta=meta or {},
    )
    session.add(message)
    await session.commit()
    await session.refresh(message)
    return message


async def get_message(session: AsyncSession, message_id: uuid.UUID) -> Message | None:
    return await session.get(Message, message_id)


async def mark_message_edited(session: AsyncSession, message: Message, content: str) -> Message:
    now = utcnow()
    message.content = content
    message.is_edited = True
    message.edited_at = now
    message.updated_at = now
    session.add(message)
    await session.commit()
    await session.refresh(message)
    return message


async def soft_delete_message(session: AsyncSession, message: Message) -> Message:
    """Flag a message deleted. Content is kept; deletion is never undone."""
    if message.is_deleted:
        return message
    now = utcnow()
    message.is_deleted = True
    message.deleted_at = now
    message.updated_at = now
    session.add(message)
    await session.commit()
    await session.refresh(message)
    return message


def _message_conditions(f: MessageFilter) -> list:
    conditions = []
    if f.chat_id is not None:
        conditions.append(Message.chat_id == f.chat_id)
    if f.chat_ids is not None:
        conditions.append(Message.chat_id.in_(f.chat_ids))  # type: ignore[attr-defined]
    if f.user_id is not None:
        conditions.append(Message.user_id == f.user_id)
    if not f.include_deleted:
        conditions.append(Message.is_deleted == False)  # noqa: E712
    if f.before is not None:
        conditions.append(Message.created_at < f.before)
    if f.after is not None:
        conditions.append(Message.created_at > f.after)
    if f.search:
        conditions.append(
            Message.content.ilike(_like(f.search), escape="\\")  # type: ignore[attr-defined]
        )
    return conditions


async def list_messages(
    session: AsyncSession,
    f: MessageFilter,
    *,
    offset: int = 0,
    limit: int | None = 50,
    newest_first: bool = True,
) -> list[Message]:
    order = Message.created_at.desc() if newest_first else Message.created_at.asc()  # type: ignore[union-attr]
    stmt = select(Message).where(*_message_conditions(f)).order_by(order).offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_messages(session: AsyncSession, f: MessageFilter) -> int:
    stmt = select(func.count()).select_from(Message).where(*_message_conditions(f))
    return (await session.execute(stmt)).scalar_one()


async def message_counts(
    session: AsyncSession,
    chat_ids: list[uuid.UUID],
    since: datetime | None = None,
) -> dict[uuid.UUID, int]:
    """Non-deleted message count per chat, optionally only newer than ``since``."""
    if not chat_ids:
        return {}
    f = MessageFilter(chat_ids=chat_ids, after=since)
    stmt = (
        select(Message.chat_id, func.count())
        .where(*_message_conditions(f))
        .group_by(Message.chat_id)
    )
    rows = (await session.execute(stmt)).all()
    counts = {chat_id: 0 for chat_id in chat_ids}
    counts.update({chat_id: n for chat_id, n in rows})
    return counts


async def unread_counts(session: AsyncSession, chat_ids: list[uuid.UUID]) -> dict[uuid.UUID, int]:
    # "Unread" is approximated as activity within the last day
    return await message_counts(session, chat_ids, since=utcnow() - UNREAD_WINDOW)
