"""Message history, search, export and plain-HTTP message mutation.

Messages sent here are persisted but not fanned out to socket rooms; the
realtime gateway is the live path.
"""

import csv
import io
import logging
import uuid
from datetime import datetime
from typing import Annotated, Literal

from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse, StreamingResponse

from projectchat.api.deps import Auth, Membership, Session, rate_limit
from projectchat.api.pagination import offset_for, ok, pagination
from projectchat.core.errors import NotFound, ValidationFailed
from projectchat.models.base import as_utc, iso_now, isoformat_utc, utcnow
from projectchat.models.chat import Chat, ChatRead
from projectchat.models.message import Message, MessageCreate, MessageRead, MessageUpdate
from projectchat.services import messaging, repository
from projectchat.services.rate_limiter import (
    delete_limit,
    export_limit,
    get_messages_limit,
    send_message_limit,
    update_limit,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["messages"])

Page = Annotated[int, Query(ge=1)]


# ── History ───────────────────────────────────────────────────

@router.get("/chat/{chat_id}", dependencies=[rate_limit(get_messages_limit)])
async def list_chat_messages(
    chat_id: uuid.UUID,
    auth: Auth,
    session: Session,
    membership: Membership,
    page: Page = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
    before: datetime | None = None,
    after: datetime | None = None,
    include_deleted: Annotated[bool, Query(alias="includeDeleted")] = False,
    sort_order: Annotated[Literal["asc", "desc"], Query(alias="sortOrder")] = "desc",
) -> dict:
    chat = await messaging.require_chat_access(
        session, membership, chat_id, auth.user_id, auth.token
    )

    f = repository.MessageFilter(
        chat_id=chat.id,
        include_deleted=include_deleted,
        before=as_utc(before),
        after=as_utc(after),
    )
    messages = await repository.list_messages(
        session,
        f,
        offset=offset_for(page, limit),
        limit=limit,
        newest_first=sort_order == "desc",
    )
    total = await repository.count_messages(session, f)

    return ok({
        "messages": [MessageRead.model_validate(m).to_wire() for m in messages],
        "pagination": pagination(page, limit, total, links=True),
        "chatInfo": ChatRead.model_validate(chat).to_wire(),
        "filters": {
            "before": isoformat_utc(before),
            "after": isoformat_utc(after),
            "includeDeleted": include_deleted,
            "sortOrder": sort_order,
        },
    })


# ── Export ────────────────────────────────────────────────────

CSV_HEADER = [
    "ID", "User ID", "Content", "Message Type", "Created At", "Updated At",
    "Is Edited", "Edited At", "Is Deleted", "Deleted At",
]


def _export_filename(chat: Chat, ext: str) -> str:
    return f"chat_{chat.id}_messages_{utcnow().date().isoformat()}.{ext}"


def _export_csv(chat: Chat, messages: list[Message]) -> StreamingResponse:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_HEADER)
    for msg in messages:
        writer.writerow([
            str(msg.id), msg.user_id, msg.content, msg.message_type,
            isoformat_utc(msg.created_at), isoformat_utc(msg.updated_at),
            str(msg.is_edited).lower(),
            isoformat_utc(msg.edited_at) or "",
            str(msg.is_deleted).lower(),
            isoformat_utc(msg.deleted_at) or "",
        ])
    output.seek(0)
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="{_export_filename(chat, "csv")}"',
        },
    )


@router.get("/chat/{chat_id}/export", dependencies=[rate_limit(export_limit)])
async def export_chat_messages(
    chat_id: uuid.UUID,
    auth: Auth,
    session: Session,
    membership: Membership,
    format: Literal["json", "csv"] = "json",
    include_deleted: Annotated[bool, Query(alias="includeDeleted")] = False,
    include_metadata: Annotated[bool, Query(alias="includeMetadata")] = True,
):
    """Every message of a chat, oldest first, as a JSON or CSV attachment."""
    chat = await messaging.require_chat_access(
        session, membership, chat_id, auth.user_id, auth.token
    )
    messages = await repository.list_messages(
        session,
        repository.MessageFilter(chat_id=chat.id, include_deleted=include_deleted),
        limit=None,
        newest_first=False,
    )
    logger.info("User %s exported %d messages from chat %s", auth.user_id, len(messages), chat.id)

    if format == "csv":
        return _export_csv(chat, messages)

    exported = []
    for msg in messages:
        item = MessageRead.model_validate(msg).to_wire()
        item.pop("chatId", None)
        if not include_metadata:
            item.pop("metadata", None)
        exported.append(item)

    chat_info = ChatRead.model_validate(chat).to_wire()
    return JSONResponse(
        content={
            "exportInfo": {
                "chatId": str(chat.id),
                "chatName": chat.name,
                "projectId": chat.project_id,
                "exportedAt": iso_now(),
                "exportedBy": auth.user_id,
                "totalMessages": len(messages),
                "filters": {
                    "includeDeleted": include_deleted,
                    "includeMetadata": include_metadata,
                },
            },
            "chatInfo": {
                key: chat_info[key]
                for key in ("id", "name", "description", "projectId", "createdBy", "createdAt")
            },
            "messages": exported,
        },
        headers={
            "Content-Disposition": f'attachment; filename="{_export_filename(chat, "json")}"',
        },
    )


# ── Search ────────────────────────────────────────────────────

@router.get("/chat/{chat_id}/search", dependencies=[rate_limit(get_messages_limit)])
async def search_messages(
    chat_id: uuid.UUID,
    auth: Auth,
    session: Session,
    membership: Membership,
    query: str = "",
    page: Page = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> dict:
    term = query.strip()
    if len(term) < 2:
        raise ValidationFailed("Search query must be at least 2 characters long")

    chat = await messaging.require_chat_access(
        session, membership, chat_id, auth.user_id, auth.token
    )
    f = repository.MessageFilter(chat_id=chat.id, search=term)
    messages = await repository.list_messages(
        session, f, offset=offset_for(page, limit), limit=limit
    )
    total = await repository.count_messages(session, f)

    results = []
    for msg in messages:
        wire = MessageRead.model_validate(msg).to_wire()
        results.append({
            "id": wire["id"],
            "chatId": wire["chatId"],
            "userId": wire["userId"],
            "content": wire["content"],
            "messageType": wire["messageType"],
            "createdAt": wire["createdAt"],
            "contentHighlighted": repository.highlight(msg.content, term),
        })

    return ok({
        "messages": results,
        "searchQuery": term,
        "pagination": pagination(page, limit, total),
    })


# ── Send ──────────────────────────────────────────────────────

@router.post(
    "/chat/{chat_id}",
    status_code=status.HTTP_201_CREATED,
    dependencies=[rate_limit(send_message_limit)],
)
async def send_message(
    chat_id: uuid.UUID,
    body: MessageCreate,
    auth: Auth,
    session: Session,
    membership: Membership,
) -> dict:
    message, _chat = await messaging.post_message(
        session,
        membership,
        chat_id=chat_id,
        user_id=auth.user_id,
        token=auth.token,
        data=body,
    )
    return ok(MessageRead.model_validate(message).to_wire())


# ── Single message ────────────────────────────────────────────

@router.get("/{message_id}", dependencies=[rate_limit(get_messages_limit)])
async def get_message(
    message_id: uuid.UUID, auth: Auth, session: Session, membership: Membership
) -> dict:
    message = await repository.get_message(session, message_id)
    if message is None or message.is_deleted:
        raise NotFound("Message not found")
    await messaging.require_chat_access(
        session,
        membership,
        message.chat_id,
        auth.user_id,
        auth.token,
        denied="You don't have access to this message",
    )
    return ok(MessageRead.model_validate(message).to_wire())


@router.put("/{message_id}", dependencies=[rate_limit(update_limit)])
async def update_message(
    message_id: uuid.UUID,
    body: MessageUpdate,
    auth: Auth,
    session: Session,
    membership: Membership,
) -> dict:
    message, _chat = await messaging.edit_message(
        session,
        membership,
        message_id=message_id,
        user_id=auth.user_id,
        token=auth.token,
        content=body.content,
    )
    return ok(MessageRead.model_validate(message).to_wire())


@router.delete("/{message_id}", dependencies=[rate_limit(delete_limit)])
async def delete_message(
    message_id: uuid.UUID, auth: Auth, session: Session, membership: Membership
) -> dict:
    message, _chat = await messaging.delete_message(
        session,
        membership,
        message_id=message_id,
        user_id=auth.user_id,
        token=auth.token,
    )
    return ok({
        "message": "Message deleted successfully",
        "deletedAt": MessageRead.model_validate(message).to_wire()["deletedAt"],
    })
