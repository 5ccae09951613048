"""Room registry: which connections occupy which project rooms.

Every method is synchronous and never awaits, so a mutation is atomic with
respect to the event loop that owns the registry.
"""

from collections import defaultdict

from projectchat.realtime.session import ClientSession


def room_name(project_id: int) -> str:
    return f"project_{project_id}"


class RoomRegistry:
    def __init__(self) -> None:
        self._rooms: dict[str, set[str]] = defaultdict(set)
        self._memberships: dict[str, set[str]] = defaultdict(set)
        self._sessions: dict[str, ClientSession] = {}

    def register(self, session: ClientSession) -> None:
        self._sessions[session.id] = session

    def join(self, session: ClientSession, room: str) -> None:
        self._sessions[session.id] = session
        self._rooms[room].add(session.id)
        self._memberships[session.id].add(room)

    def leave(self, session: ClientSession, room: str) -> None:
        occupants = self._rooms.get(room)
        if occupants is not None:
            occupants.discard(session.id)
            if not occupants:
                del self._rooms[room]
        rooms = self._memberships.get(session.id)
        if rooms is not None:
            rooms.discard(room)

    def drop(self, session: ClientSession) -> set[str]:
        """Forget a connection entirely. Returns the rooms it was in."""
        rooms = self._memberships.pop(session.id, set())
        for room in rooms:
            occupants = self._rooms.get(room)
            if occupants is None:
                continue
            occupants.discard(session.id)
            if not occupants:
                del self._rooms[room]
        self._sessions.pop(session.id, None)
        return rooms

    def members(self, room: str) -> list[ClientSession]:
        return [self._sessions[cid] for cid in self._rooms.get(room, ()) if cid in self._sessions]

    def rooms_of(self, session: ClientSession) -> set[str]:
        return set(self._memberships.get(session.id, ()))

    @property
    def connection_count(self) -> int:
        return len(self._sessions)
