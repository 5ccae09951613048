"""Room membership and broadcast engine.

Transport-agnostic: the gateway feeds it decoded ``(event, payload)`` pairs
per connection and drains each session's outbox to the wire. Every
room-scoped event re-checks project membership before touching persistence
or broadcasting, because membership can change while a socket stays open.

Broadcasts are queued synchronously before the persistence session closes,
with no await in between, so for a single room the delivery order is the
order in which the writes completed.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from projectchat.core.errors import (
    ChatServiceError,
    Forbidden,
    RateLimited,
    ValidationFailed,
    validation_details,
)
from projectchat.models.base import iso_now
from projectchat.models.chat import ChatInfo
from projectchat.models.message import MessageRead
from projectchat.realtime import events
from projectchat.realtime.rooms import RoomRegistry, room_name
from projectchat.realtime.session import ClientSession, SessionState
from projectchat.services import messaging
from projectchat.services.identity import IdentityClient
from projectchat.services.membership import MembershipClient
from projectchat.services.rate_limiter import SocketRateLimiter

logger = logging.getLogger(__name__)

Handler = Callable[[ClientSession, dict[str, Any]], Awaitable[None]]


def error_payload(message: str, details: Any = None) -> dict[str, Any]:
    payload = ChatServiceError(message, details).to_payload()
    payload["timestamp"] = iso_now()
    return payload


class ChatEngine:
    def __init__(
        self,
        identity: IdentityClient,
        membership: MembershipClient,
        limiter: SocketRateLimiter,
        registry: RoomRegistry,
        session_factory: sessionmaker,
        *,
        broadcast_leave_on_disconnect: bool = False,
        outbox_size: int = 1000,
    ) -> None:
        self.identity = identity
        self.membership = membership
        self.limiter = limiter
        self.registry = registry
        self.session_factory = session_factory
        self.broadcast_leave_on_disconnect = broadcast_leave_on_disconnect
        self.outbox_size = outbox_size

        self._handlers: dict[str, Handler] = {
            events.JOIN_PROJECT: self.join_project,
            events.LEAVE_PROJECT: self.leave_project,
            events.SEND_MESSAGE: self.send_message,
            events.EDIT_MESSAGE: self.edit_message,
            events.DELETE_MESSAGE: self.delete_message,
            events.TYPING_START: self.typing_start,
            events.TYPING_STOP: self.typing_stop,
            events.GET_ONLINE_USERS: self.get_online_users,
        }

    # ── Connection lifecycle ─────────────────────────────────

    async def connect(self, token: str | None) -> ClientSession:
        """Authenticate a handshake and register the new session.

        Raises the identity client's errors unchanged, or ``RateLimited``
        when the user opened too many connections recently. Nothing is
        registered on failure.
        """
        user = await self.identity.verify(token)
        if not self.limiter.allow_connection(user.id):
            logger.warning("Connection rate limit hit for user %s", user.id)
            raise RateLimited("Too many connections. Please try again later.")

        session = ClientSession(user, token or "", outbox_size=self.outbox_size)
        session.state = SessionState.IDLE
        self.registry.register(session)
        logger.info("User %s connected as %s", user.id, session.id)
        return session

    def disconnect(self, session: ClientSession) -> None:
        if session.state is SessionState.DISCONNECTED:
            return
        session.state = SessionState.DISCONNECTED
        rooms = self.registry.drop(session)
        logger.info("Connection %s for user %s disconnected", session.id, session.user_id)
        if self.broadcast_leave_on_disconnect:
            for room in rooms:
                self._to_room(room, events.USER_LEFT, {
                    "userId": session.user_id,
                    "timestamp": iso_now(),
                })

    async def dispatch(self, session: ClientSession, event: str, payload: Any) -> None:
        """Run one inbound event. Failures go back to the caller only."""
        handler = self._handlers.get(event)
        if handler is None:
            session.emit(events.ERROR, error_payload(f"Unknown event: {event}"))
            return
        if not isinstance(payload, dict):
            payload = {}
        try:
            await handler(session, payload)
        except ChatServiceError as exc:
            logger.debug("%s from user %s refused: %s", event, session.user_id, exc.message)
            session.emit(events.ERROR, error_payload(exc.message, exc.details))
        except Exception:
            logger.exception("Unhandled error in %s for user %s", event, session.user_id)
            session.emit(events.ERROR, error_payload("An error occurred"))

    # ── Broadcast helpers ────────────────────────────────────

    def _to_room(
        self,
        room: str,
        event: str,
        data: dict[str, Any],
        exclude: ClientSession | None = None,
    ) -> None:
        for member in self.registry.members(room):
            if exclude is not None and member.id == exclude.id:
                continue
            member.emit(event, data)

    def _db(self) -> AsyncSession:
        return self.session_factory()

    @staticmethod
    def _project_ref(payload: dict[str, Any]) -> int:
        try:
            return events.ProjectRef.model_validate(payload).project_id
        except ValidationError as exc:
            raise ValidationFailed("Valid project ID is required") from exc

    async def _require_member(self, session: ClientSession, project_id: int) -> None:
        if not await self.membership.is_member(session.user_id, project_id, session.token):
            raise Forbidden("You don't have access to this project")

    # ── Rooms ────────────────────────────────────────────────

    async def join_project(self, session: ClientSession, payload: dict[str, Any]) -> None:
        project_id = self._project_ref(payload)
        await self._require_member(session, project_id)

        room = room_name(project_id)
        self.registry.join(session, room)
        session.state = SessionState.IN_ROOM
        logger.info("User %s joined %s", session.user_id, room)

        session.emit(events.JOINED_PROJECT, {
            "success": True,
            "projectId": project_id,
            "room": room,
            "message": f"Joined project {project_id} chat",
        })
        self._to_room(room, events.USER_JOINED, {
            "userId": session.user_id,
            "timestamp": iso_now(),
        }, exclude=session)

    async def leave_project(self, session: ClientSession, payload: dict[str, Any]) -> None:
        project_id = self._project_ref(payload)

        room = room_name(project_id)
        self.registry.leave(session, room)
        if not self.registry.rooms_of(session):
            session.state = SessionState.IDLE
        logger.info("User %s left %s", session.user_id, room)

        session.emit(events.LEFT_PROJECT, {
            "success": True,
            "projectId": project_id,
            "room": room,
            "message": f"Left project {project_id} chat",
        })
        self._to_room(room, events.USER_LEFT, {
            "userId": session.user_id,
            "timestamp": iso_now(),
        })

    async def get_online_users(self, session: ClientSession, payload: dict[str, Any]) -> None:
        project_id = self._project_ref(payload)
        await self._require_member(session, project_id)

        online: list[int] = []
        for member in self.registry.members(room_name(project_id)):
            if member.user_id not in online:
                online.append(member.user_id)

        session.emit(events.ONLINE_USERS, {
            "success": True,
            "projectId": project_id,
            "onlineUsers": online,
        })

    # ── Messages ─────────────────────────────────────────────

    async def send_message(self, session: ClientSession, payload: dict[str, Any]) -> None:
        if not self.limiter.allow_message(session.user_id):
            raise RateLimited("Too many messages. Please slow down.")
        try:
            data = events.SendMessagePayload.model_validate(payload)
        except ValidationError as exc:
            raise ValidationFailed(
                "Invalid message data", details=validation_details(exc.errors())
            ) from exc

        async with self._db() as db:
            message, chat = await messaging.post_message(
                db,
                self.membership,
                chat_id=data.chat_id,
                user_id=session.user_id,
                token=session.token,
                data=data,
            )
            self._to_room(room_name(chat.project_id), events.NEW_MESSAGE, {
                "success": True,
                "data": MessageRead.model_validate(message).to_wire(),
                "chatInfo": ChatInfo.model_validate(chat).to_wire(),
            })
        logger.debug("Message %s sent in chat %s by user %s", message.id, chat.id, session.user_id)

    async def edit_message(self, session: ClientSession, payload: dict[str, Any]) -> None:
        try:
            data = events.EditMessagePayload.model_validate(payload)
        except ValidationError as exc:
            raise ValidationFailed("Message ID and content are required") from exc

        async with self._db() as db:
            message, chat = await messaging.edit_message(
                db,
                self.membership,
                message_id=data.message_id,
                user_id=session.user_id,
                token=session.token,
                content=data.content,
            )
            self._to_room(room_name(chat.project_id), events.MESSAGE_EDITED, {
                "success": True,
                "data": MessageRead.model_validate(message).to_wire(),
            })

    async def delete_message(self, session: ClientSession, payload: dict[str, Any]) -> None:
        try:
            data = events.DeleteMessagePayload.model_validate(payload)
        except ValidationError as exc:
            raise ValidationFailed("Message ID is required") from exc

        async with self._db() as db:
            message, chat = await messaging.delete_message(
                db,
                self.membership,
                message_id=data.message_id,
                user_id=session.user_id,
                token=session.token,
            )
            wire = MessageRead.model_validate(message).to_wire()
            self._to_room(room_name(chat.project_id), events.MESSAGE_DELETED, {
                "success": True,
                "messageId": wire["id"],
                "chatId": wire["chatId"],
                "deletedBy": session.user_id,
                "deletedAt": wire["deletedAt"],
            })

    # ── Typing (best effort) ─────────────────────────────────

    async def _typing(self, session: ClientSession, payload: dict[str, Any], is_typing: bool) -> None:
        try:
            data = events.TypingPayload.model_validate(payload)
            async with self._db() as db:
                chat = await messaging.require_chat_access(
                    db, self.membership, data.chat_id, session.user_id, session.token
                )
        except (ValidationError, ChatServiceError) as exc:
            logger.debug("Typing indicator from user %s dropped: %s", session.user_id, exc)
            return
        except Exception:
            logger.warning("Typing indicator from user %s failed", session.user_id, exc_info=True)
            return

        self._to_room(room_name(chat.project_id), events.USER_TYPING, {
            "userId": session.user_id,
            "chatId": str(data.chat_id),
            "isTyping": is_typing,
        }, exclude=session)

    async def typing_start(self, session: ClientSession, payload: dict[str, Any]) -> None:
        await self._typing(session, payload, True)

    async def typing_stop(self, session: ClientSession, payload: dict[str, Any]) -> None:
        await self._typing(session, payload, False)
