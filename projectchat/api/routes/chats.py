"""Chat CRUD — every read and write gated on project membership."""

import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Path, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from projectchat.api.deps import Auth, Membership, Session, rate_limit
from projectchat.api.pagination import offset_for, ok, pagination
from projectchat.core.errors import ValidationFailed
from projectchat.models.base import isoformat_utc
from projectchat.models.chat import (
    Chat,
    ChatCreate,
    ChatRead,
    ChatSummary,
    ChatUpdate,
    ProjectChatProvision,
)
from projectchat.services import messaging, repository
from projectchat.services.rate_limiter import (
    create_chat_limit,
    delete_limit,
    get_chat_limit,
    update_limit,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chats", tags=["chats"])

ProjectIdPath = Annotated[int, Path(gt=0)]
Page = Annotated[int, Query(ge=1)]
Limit = Annotated[int, Query(ge=1, le=50)]
Search = Annotated[str | None, Query(min_length=2, max_length=100)]


async def _summaries(session: AsyncSession, chats: list[Chat], *, unread: bool) -> list[dict]:
    ids = [c.id for c in chats]
    counts = await repository.message_counts(session, ids)
    unread_counts = await repository.unread_counts(session, ids) if unread else {}
    summaries = []
    for chat in chats:
        summary = ChatSummary.model_validate(chat)
        summary.message_count = counts.get(chat.id, 0)
        if unread:
            summary.unread_count = unread_counts.get(chat.id, 0)
        summaries.append(summary.to_wire())
    return summaries


# ── Create ────────────────────────────────────────────────────

@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    dependencies=[rate_limit(create_chat_limit)],
)
async def create_chat(
    body: ChatCreate, auth: Auth, session: Session, membership: Membership
) -> dict:
    chat = await messaging.create_chat(
        session, membership, user_id=auth.user_id, token=auth.token, data=body
    )
    return ok({
        "chat": ChatRead.model_validate(chat).to_wire(),
        "message": "Chat created successfully",
    })


@router.post("/auto-create", status_code=status.HTTP_201_CREATED)
async def auto_create_project_chat(
    body: ProjectChatProvision, session: Session, response: Response
) -> dict:
    """Hook for the project service: provision a new project's general chat.

    Unauthenticated and idempotent. Returns 201 the first time and 200 with
    the existing chat on every later call.
    """
    chat, created = await messaging.provision_project_chat(session, body)
    if not created:
        response.status_code = status.HTTP_200_OK
        return ok({
            "chat": ChatRead.model_validate(chat).to_wire(),
            "message": "Chat already exists for this project",
        })
    return ok({
        "chat": ChatRead.model_validate(chat).to_wire(),
        "message": "Default project chat created successfully",
    })


# ── List ──────────────────────────────────────────────────────

@router.get("", dependencies=[rate_limit(get_chat_limit)])
async def list_chats(
    auth: Auth,
    session: Session,
    membership: Membership,
    project_id: Annotated[int | None, Query(alias="projectId", gt=0)] = None,
    page: Page = 1,
    limit: Limit = 20,
    search: Search = None,
) -> dict:
    """Chats of one project, or of every project the caller belongs to."""
    if project_id is not None:
        await messaging.require_project_member(membership, auth.user_id, project_id, auth.token)
        project_ids = [project_id]
    else:
        projects = await membership.list_user_projects(auth.token)
        project_ids = [p.id for p in projects]

    if not project_ids:
        return ok({"chats": [], "pagination": pagination(page, limit, 0)})

    f = repository.ChatFilter(project_ids=project_ids, search=search)
    chats = await repository.list_chats(
        session, f, offset=offset_for(page, limit), limit=limit
    )
    total = await repository.count_chats(session, f)
    return ok({
        "chats": await _summaries(session, chats, unread=True),
        "pagination": pagination(page, limit, total),
    })


@router.get("/stats")
async def chat_stats(auth: Auth, session: Session, membership: Membership) -> dict:
    projects = await membership.list_user_projects(auth.token)
    stats = await repository.chat_stats(session, [p.id for p in projects], auth.user_id)
    return ok({
        "totalChats": stats.total_chats,
        "totalMessages": stats.total_messages,
        "chatsCreated": stats.chats_created,
        "projectBreakdown": [
            {
                "projectId": item.project_id,
                "chatCount": item.chat_count,
                "lastActivity": isoformat_utc(item.last_activity),
            }
            for item in stats.project_breakdown
        ],
    })


@router.get("/project/{project_id}", dependencies=[rate_limit(get_chat_limit)])
async def list_project_chats(
    project_id: ProjectIdPath,
    auth: Auth,
    session: Session,
    membership: Membership,
    page: Page = 1,
    limit: Limit = 20,
    search: Search = None,
) -> dict:
    await messaging.require_project_member(membership, auth.user_id, project_id, auth.token)

    f = repository.ChatFilter(project_ids=[project_id], search=search)
    chats = await repository.list_chats(
        session, f, offset=offset_for(page, limit), limit=limit
    )
    total = await repository.count_chats(session, f)
    return ok({
        "projectId": project_id,
        "chats": await _summaries(session, chats, unread=False),
        "pagination": pagination(page, limit, total),
    })


@router.get("/project/{project_id}/default", dependencies=[rate_limit(get_chat_limit)])
async def get_or_create_project_chat(
    project_id: ProjectIdPath, auth: Auth, session: Session, membership: Membership
) -> dict:
    chat, created = await messaging.ensure_default_chat(
        session, membership, project_id=project_id, user_id=auth.user_id, token=auth.token
    )
    summary = (await _summaries(session, [chat], unread=False))[0]
    return ok({"chat": summary, "isNewlyCreated": created})


# ── Single chat ───────────────────────────────────────────────

@router.get("/{chat_id}", dependencies=[rate_limit(get_chat_limit)])
async def get_chat(
    chat_id: uuid.UUID, auth: Auth, session: Session, membership: Membership
) -> dict:
    chat = await messaging.require_chat_access(
        session, membership, chat_id, auth.user_id, auth.token
    )
    summary = (await _summaries(session, [chat], unread=False))[0]
    return ok(summary)


@router.put("/{chat_id}", dependencies=[rate_limit(update_limit)])
async def update_chat(
    chat_id: uuid.UUID,
    body: ChatUpdate,
    auth: Auth,
    session: Session,
    membership: Membership,
) -> dict:
    changes = body.model_dump(exclude_unset=True)
    if "name" in changes and changes["name"] is None:
        raise ValidationFailed("Chat name must be between 1 and 100 characters")

    chat = await messaging.require_chat_access(
        session, membership, chat_id, auth.user_id, auth.token
    )
    chat = await repository.update_chat(session, chat, changes)
    return ok(ChatRead.model_validate(chat).to_wire())


@router.delete("/{chat_id}", dependencies=[rate_limit(delete_limit)])
async def delete_chat(
    chat_id: uuid.UUID, auth: Auth, session: Session, membership: Membership
) -> dict:
    await messaging.deactivate_chat(
        session, membership, chat_id=chat_id, user_id=auth.user_id, token=auth.token
    )
    return ok({"message": "Chat deleted successfully"})
