"""Live, per-process room occupancy. Rebuilt from connection events, never persisted."""

from dataclasses import dataclass
from typing import Dict, Optional, Set

from app.core.log_config import logger
from app.utils.keyed_lock import KeyedLock


@dataclass(frozen=True)
class JoinResult:
    room: str
    member_count: int
    previous_room: Optional[str] = None
    previous_count: int = 0


class RoomMembershipTracker:
    """
    room name -> usernames currently in it. A username occupies at most one
    room: joining a room moves it out of the previous one. Moves are
    serialized per username so concurrent joins by one user resolve to the
    last one to take the lock.
    """

    def __init__(self):
        self._members: Dict[str, Set[str]] = {}
        self._occupancy: Dict[str, str] = {}
        self._locks = KeyedLock()

    async def join(self, room: str, username: str) -> JoinResult:
        async with self._locks.hold(username):
            previous = self._occupancy.get(username)
            previous_count = 0
            if previous is not None and previous != room:
                previous_count = self._discard(previous, username)

            self._members.setdefault(room, set()).add(username)
            self._occupancy[username] = room
            count = len(self._members[room])

        logger.debug(f"{username} now in {room} ({count} members).")
        return JoinResult(
            room=room,
            member_count=count,
            previous_room=previous if previous != room else None,
            previous_count=previous_count,
        )

    async def leave(self, room: str, username: str) -> int:
        """Removes username from room if it is there. Returns the room's remaining count."""
        async with self._locks.hold(username):
            if self._occupancy.get(username) != room:
                return self.count_for(room)
            del self._occupancy[username]
            return self._discard(room, username)

    async def leave_all(self, username: str) -> Optional[str]:
        """Removes username from whatever room it occupies and returns that room."""
        async with self._locks.hold(username):
            room = self._occupancy.pop(username, None)
            if room is not None:
                self._discard(room, username)
            return room

    def _discard(self, room: str, username: str) -> int:
        members = self._members.get(room)
        if members is None:
            return 0
        members.discard(username)
        if not members:
            # Empty rooms are pruned from the live map only; the durable room stays.
            del self._members[room]
            return 0
        return len(members)

    def count_for(self, room: str) -> int:
        return len(self._members.get(room, ()))

    def members_of(self, room: str) -> Set[str]:
        return set(self._members.get(room, ()))

    def room_of(self, username: str) -> Optional[str]:
        return self._occupancy.get(username)

    def counts(self) -> Dict[str, int]:
        return {room: len(members) for room, members in self._members.items()}
