"""Membership-gated chat and message operations.

Shared by the REST routes and the realtime engine so both surfaces apply the
same gates in the same order: existence, authorship, then a fresh
membership check against the project service.
"""

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from projectchat.core.errors import (
    ChatServiceError,
    Conflict,
    Forbidden,
    InternalError,
    NotFound,
)
from projectchat.models.chat import Chat, ChatCreate, ProjectChatProvision
from projectchat.models.message import Message, MessageCreate, MessageType
from projectchat.services import repository
from projectchat.services.membership import MembershipClient

logger = logging.getLogger(__name__)

NO_PROJECT_ACCESS = "You don't have access to this project"
NO_CHAT_ACCESS = "You don't have access to this chat"


async def require_project_member(
    membership: MembershipClient,
    user_id: int,
    project_id: int,
    token: str,
    denied: str = NO_PROJECT_ACCESS,
) -> None:
    if not await membership.is_member(user_id, project_id, token):
        raise Forbidden(denied)


async def load_active_chat(session: AsyncSession, chat_id: uuid.UUID) -> Chat:
    chat = await repository.get_active_chat(session, chat_id)
    if chat is None:
        raise NotFound("Chat not found")
    return chat


async def require_chat_access(
    session: AsyncSession,
    membership: MembershipClient,
    chat_id: uuid.UUID,
    user_id: int,
    token: str,
    denied: str = NO_CHAT_ACCESS,
) -> Chat:
    """Return the active chat if the user belongs to its project."""
    chat = await load_active_chat(session, chat_id)
    await require_project_member(membership, user_id, chat.project_id, token, denied)
    return chat


async def load_own_message(
    session: AsyncSession, message_id: uuid.UUID, user_id: int, action: str
) -> Message:
    message = await repository.get_message(session, message_id)
    if message is None or message.is_deleted:
        raise NotFound("Message not found")
    if message.user_id != user_id:
        raise Forbidden(f"You can only {action} your own messages")
    return message


async def post_message(
    session: AsyncSession,
    membership: MembershipClient,
    *,
    chat_id: uuid.UUID,
    user_id: int,
    token: str,
    data: MessageCreate,
) -> tuple[Message, Chat]:
    chat = await require_chat_access(session, membership, chat_id, user_id, token)
    message = await repository.create_message(
        session,
        chat_id=chat.id,
        user_id=user_id,
        content=data.content,
        message_type=data.message_type,
        meta=data.meta,
    )
    chat = await repository.touch_activity(session, chat)
    return message, chat


async def edit_message(
    session: AsyncSession,
    membership: MembershipClient,
    *,
    message_id: uuid.UUID,
    user_id: int,
    token: str,
    content: str,
) -> tuple[Message, Chat]:
    message = await load_own_message(session, message_id, user_id, "edit")
    if message.message_type == MessageType.SYSTEM:
        raise Forbidden("System messages cannot be edited")
    chat = await require_chat_access(session, membership, message.chat_id, user_id, token)
    message = await repository.mark_message_edited(session, message, content)
    return message, chat


async def delete_message(
    session: AsyncSession,
    membership: MembershipClient,
    *,
    message_id: uuid.UUID,
    user_id: int,
    token: str,
) -> tuple[Message, Chat]:
    message = await load_own_message(session, message_id, user_id, "delete")
    chat = await require_chat_access(session, membership, message.chat_id, user_id, token)
    message = await repository.soft_delete_message(session, message)
    return message, chat


# ── Chat lifecycle ────────────────────────────────────────────

async def create_chat(
    session: AsyncSession,
    membership: MembershipClient,
    *,
    user_id: int,
    token: str,
    data: ChatCreate,
) -> Chat:
    await require_project_member(membership, user_id, data.project_id, token)
    chat = await repository.create_chat(
        session,
        project_id=data.project_id,
        name=data.name,
        description=data.description or None,
        created_by=user_id,
    )
    await repository.create_message(
        session,
        chat_id=chat.id,
        user_id=user_id,
        content=f"{chat.name} chat created",
        message_type=MessageType.SYSTEM,
        meta={"action": "chat_created", "createdBy": user_id},
    )
    return chat


async def deactivate_chat(
    session: AsyncSession,
    membership: MembershipClient,
    *,
    chat_id: uuid.UUID,
    user_id: int,
    token: str,
) -> Chat:
    chat = await require_chat_access(session, membership, chat_id, user_id, token)
    if chat.created_by != user_id:
        raise Forbidden("Only the chat creator can delete this chat")
    chat = await repository.soft_deactivate_chat(session, chat)
    await repository.create_message(
        session,
        chat_id=chat.id,
        user_id=user_id,
        content="Chat deleted by creator",
        message_type=MessageType.SYSTEM,
        meta={"action": "chat_deleted", "deletedBy": user_id},
    )
    return chat


async def _create_general_chat(
    session: AsyncSession,
    *,
    project_id: int,
    project_name: str,
    created_by: int,
    description: str | None,
    welcome_meta: dict,
) -> tuple[Chat, bool]:
    try:
        chat = await repository.create_chat(
            session,
            project_id=project_id,
            name=f"{project_name} General",
            description=description,
            created_by=created_by,
        )
    except Conflict:
        # Someone else provisioned it between our lookup and insert
        existing = await repository.find_earliest_active_chat_for_project(session, project_id)
        if existing is None:
            raise
        return existing, False

    await repository.create_message(
        session,
        chat_id=chat.id,
        user_id=created_by,
        content=f"Welcome to {project_name}! This is the general chat for project collaboration.",
        message_type=MessageType.SYSTEM,
        meta=welcome_meta,
    )
    return chat, True


async def provision_project_chat(
    session: AsyncSession, data: ProjectChatProvision
) -> tuple[Chat, bool]:
    """Idempotently create a project's general chat. Returns ``(chat, created)``."""
    existing = await repository.find_earliest_active_chat_for_project(session, data.project_id)
    if existing is not None:
        return existing, False

    chat, created = await _create_general_chat(
        session,
        project_id=data.project_id,
        project_name=data.project_name,
        created_by=data.owner_id,
        description=f"General discussion for {data.project_name}",
        welcome_meta={
            "action": "project_chat_created",
            "projectId": data.project_id,
            "projectName": data.project_name,
            "createdBy": data.owner_id,
            "members": data.members,
        },
    )
    if created:
        logger.info("Provisioned default chat %s for project %s", chat.id, data.project_id)
    return chat, created


async def ensure_default_chat(
    session: AsyncSession,
    membership: MembershipClient,
    *,
    project_id: int,
    user_id: int,
    token: str,
) -> tuple[Chat, bool]:
    """Return the project's earliest active chat, creating one if none exists."""
    await require_project_member(membership, user_id, project_id, token)

    existing = await repository.find_earliest_active_chat_for_project(session, project_id)
    if existing is not None:
        return existing, False

    try:
        project = await membership.get_project(project_id, token)
    except ChatServiceError as exc:
        logger.warning("Could not load project %s for default chat: %s", project_id, exc.message)
        raise InternalError("Failed to create default chat for project") from exc

    return await _create_general_chat(
        session,
        project_id=project_id,
        project_name=project.name,
        created_by=user_id,
        description=f"General discussion for {project.name}",
        welcome_meta={
            "action": "default_chat_created",
            "projectId": project_id,
            "projectName": project.name,
            "createdBy": user_id,
        },
    )
