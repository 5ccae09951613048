"""Per-connection state for the realtime gateway."""

import asyncio
import logging
import uuid
from enum import StrEnum
from typing import Any

from projectchat.services.identity import VerifiedUser

logger = logging.getLogger(__name__)


class SessionState(StrEnum):
    CONNECTING = "connecting"
    IDLE = "idle"
    IN_ROOM = "in_room"
    DISCONNECTED = "disconnected"


class ClientSession:
    """An authenticated connection and its outbound event queue.

    ``emit`` never blocks: events are queued in FIFO order and drained by the
    transport's writer task. A client that stops reading loses events once
    its queue is full rather than stalling the room.
    """

    def __init__(self, user: VerifiedUser, token: str, outbox_size: int = 1000) -> None:
        self.id = uuid.uuid4().hex
        self.user = user
        self.token = token
        self.state = SessionState.CONNECTING
        self.outbox: asyncio.Queue[tuple[str, dict[str, Any]]] = asyncio.Queue(outbox_size)

    @property
    def user_id(self) -> int:
        return self.user.id

    @property
    def connected(self) -> bool:
        return self.state is not SessionState.DISCONNECTED

    def emit(self, event: str, data: dict[str, Any]) -> None:
        if not self.connected:
            return
        try:
            self.outbox.put_nowait((event, data))
        except asyncio.QueueFull:
            logger.warning("Outbox full for connection %s, dropping %s", self.id, event)

    def drain(self) -> list[tuple[str, dict[str, Any]]]:
        """Pop every queued event without waiting."""
        events = []
        while True:
            try:
                events.append(self.outbox.get_nowait())
            except asyncio.QueueEmpty:
                return events

    def __repr__(self) -> str:
        return f"<ClientSession {self.id} user={self.user_id} {self.state}>"
