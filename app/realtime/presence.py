"""Connection <-> username bookkeeping for the users connected to this process."""

from typing import Dict, Optional, Set

from app.core.log_config import logger
from app.utils.keyed_lock import KeyedLock


class PresenceRegistry:
    """
    Maps live connection ids to the username bound on them, and each username
    to the set of its connections. A user is online while that set is non-empty.
    """

    def __init__(self):
        self._usernames: Dict[str, str] = {}
        self._connections: Dict[str, Set[str]] = {}
        self._locks = KeyedLock()

    async def bind_identity(self, connection_id: str, username: str) -> bool:
        """
        Registers connection_id under username. Additive: other devices of the
        same user stay bound. Returns True if this made the user come online.
        """
        async with self._locks.hold(username):
            connections = self._connections.setdefault(username, set())
            came_online = not connections
            connections.add(connection_id)
            self._usernames[connection_id] = username
        if came_online:
            logger.info(f"User {username} is online (connection {connection_id}).")
        return came_online

    def resolve_username(self, connection_id: str) -> Optional[str]:
        return self._usernames.get(connection_id)

    async def unbind(self, connection_id: str) -> tuple[Optional[str], bool]:
        """
        Forgets connection_id. Returns (username, went_offline); username is None
        for a connection that never bound an identity.
        """
        username = self._usernames.get(connection_id)
        if username is None:
            return None, False

        async with self._locks.hold(username):
            self._usernames.pop(connection_id, None)
            connections = self._connections.get(username)
            if connections is None:
                return username, False
            connections.discard(connection_id)
            went_offline = not connections
            if went_offline:
                del self._connections[username]

        if went_offline:
            logger.info(f"User {username} is offline.")
        return username, went_offline

    def connections_for(self, username: str) -> Set[str]:
        return set(self._connections.get(username, ()))

    def is_online(self, username: str) -> bool:
        return bool(self._connections.get(username))

    def online_users(self) -> Set[str]:
        return set(self._connections)
