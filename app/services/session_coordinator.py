"""
Per-connection session state machine for the chat protocol.

A connection starts Unidentified, becomes Identified once a username is
bound, is InRoom while it has a current room, and ends Closed. The
coordinator owns the live connection table and the routing of room events
to connections; durable rooms and messages are reached through a fresh
database session per handled event.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import (
    AuthenticationRequiredException,
    BaseAPIException,
    FileNotAvailableException,
    ValidationException,
)
from ..core.error_handler import error_event
from ..core.log_config import logger
from ..models.room import Room
from ..realtime.membership import RoomMembershipTracker
from ..realtime.presence import PresenceRegistry
from ..schemas.events import OutboundEvent
from ..schemas.message import FileDescriptor, MessageResponse, ReadReceipt
from ..schemas.room import RoomJoinedResponse, RoomSummary
from ..utils.websocket_manager import WebsocketManager
from .file_service import FileService
from .message_service import DEFAULT_HISTORY_LIMIT, MessageService
from .room_service import RoomService, normalize_room_name, validate_room_name


@dataclass
class Connection:
    id: str
    username: Optional[str] = None
    current_room: Optional[str] = None
    closed: bool = False

    @property
    def state(self) -> str:
        if self.closed:
            return "closed"
        if self.username is None:
            return "unidentified"
        return "in_room" if self.current_room else "identified"


def _event(event: OutboundEvent, data: Any) -> dict:
    return {"type": event.value, "data": jsonable_encoder(data)}


class SessionCoordinator:
    def __init__(
        self,
        websocket_manager: WebsocketManager,
        session_factory: Callable[[], AsyncSession],
        file_service: Optional[FileService] = None,
        presence: Optional[PresenceRegistry] = None,
        membership: Optional[RoomMembershipTracker] = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ):
        self.websocket_manager = websocket_manager
        self.session_factory = session_factory
        self.file_service = file_service
        self.presence = presence or PresenceRegistry()
        self.membership = membership or RoomMembershipTracker()
        self.history_limit = history_limit

        self.connections: Dict[str, Connection] = {}
        # room name -> connections whose current room it is
        self._room_connections: Dict[str, Set[str]] = {}

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def connect(self, connection_id: str) -> Connection:
        connection = Connection(id=connection_id)
        self.connections[connection_id] = connection
        return connection

    async def disconnect(self, connection_id: str) -> None:
        """
        Closes the connection and cascades: unbind presence and, if that was
        the user's last connection, vacate their room and refresh everyone's
        room list. Safe to call more than once.
        """
        connection = self.connections.pop(connection_id, None)
        if connection is None:
            return
        connection.closed = True
        self._route(connection, None)

        username, went_offline = await self.presence.unbind(connection_id)
        logger.info(f"Connection {connection_id} ({username or 'anonymous'}) disconnected.")
        if not went_offline:
            return

        room = await self.membership.leave_all(username)
        if room is not None:
            await self._broadcast_room(
                room,
                OutboundEvent.USER_LEFT,
                {"room": room, "username": username, "member_count": self.membership.count_for(room)},
            )
        try:
            await self._broadcast_room_list()
        except BaseAPIException as e:
            # Nobody to report to; the next list_rooms will be accurate.
            logger.error(f"Room list refresh after {username} left failed: {e.detail}")

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def set_identity(self, connection_id: str, username: str) -> None:
        """
        Binds username to the connection. Binding the same name again is a
        no-op; binding a different name on an identified connection is rejected.
        """
        connection = self._get_connection(connection_id)
        username = (username or "").strip()
        if not username:
            raise ValidationException(detail="Username is required")

        if connection.username is not None and connection.username != username:
            raise ValidationException(
                detail=f"Connection is already identified as '{connection.username}'"
            )
        if connection.username is None:
            connection.username = username
            await self.presence.bind_identity(connection_id, username)
            logger.info(f"Connection {connection_id} identified as {username}.")

        await self._send(connection_id, OutboundEvent.IDENTITY_SET, {"username": username})

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    async def request_room_list(self, connection_id: str) -> List[RoomSummary]:
        self._get_connection(connection_id)
        async with self.session_factory() as db:
            room_list = await self._room_list(RoomService(db))
        await self._send(connection_id, OutboundEvent.ROOM_LIST, room_list)
        return room_list

    async def join_room(self, connection_id: str, room_name: str) -> Optional[RoomJoinedResponse]:
        connection, username = self._require_identity(connection_id)
        name = normalize_room_name(room_name)
        if not name:
            raise ValidationException(detail="Room name is required")

        async with self.session_factory() as db:
            rooms = RoomService(db)
            room = await rooms.get_by_name(name)
            await rooms.add_participant(room, username)
            joined = await self._complete_join(db, connection, username, room)

        if joined is not None:
            await self._broadcast_room_list()
        return joined

    async def create_room(
        self,
        connection_id: str,
        room_name: str,
        topic: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Optional[RoomJoinedResponse]:
        """Creates a room and joins the creator to it."""
        connection, username = self._require_identity(connection_id)
        name = validate_room_name(room_name)

        async with self.session_factory() as db:
            room = await RoomService(db).create(name, topic, username, description)
            joined = await self._complete_join(db, connection, username, room)

        # A new room changes everyone's room picker, even if the creator left meanwhile.
        await self._broadcast_room_list()
        return joined

    async def leave_room(self, connection_id: str) -> str:
        connection, username = self._require_identity(connection_id)
        room = connection.current_room
        if room is None:
            raise ValidationException(detail="Not in a room")

        self._route(connection, None)
        count = await self.membership.leave(room, username)
        logger.info(f"{username} left {room}.")

        await self._send(connection_id, OutboundEvent.ROOM_LEFT, {"room": room})
        await self._broadcast_room(
            room,
            OutboundEvent.USER_LEFT,
            {"room": room, "username": username, "member_count": count},
        )
        await self._broadcast_room_list()
        return room

    async def _complete_join(
        self, db: AsyncSession, connection: Connection, username: str, room: Room
    ) -> Optional[RoomJoinedResponse]:
        # The connection may have closed while storage calls were in flight.
        if connection.closed:
            return None

        result = await self.membership.join(room.name, username)
        if connection.closed:
            if not self.presence.is_online(username):
                await self.membership.leave(room.name, username)
            return None
        self._route(connection, room.name)
        logger.info(f"{username} joined {room.name} ({result.member_count} members).")

        joined = RoomJoinedResponse(name=room.name, topic=room.topic, member_count=result.member_count)
        await self._send(connection.id, OutboundEvent.ROOM_JOINED, joined)

        history = await MessageService(db).history(room.name, self.history_limit)
        await self._send(
            connection.id,
            OutboundEvent.ROOM_HISTORY,
            {
                "room": room.name,
                "messages": [
                    MessageResponse.from_model(m) for m in history if username not in m.deleted_for
                ],
            },
        )

        await self._broadcast_room(
            room.name,
            OutboundEvent.USER_JOINED,
            {"room": room.name, "username": username, "member_count": result.member_count},
            exclude=self.presence.connections_for(username),
        )
        if result.previous_room is not None:
            await self._broadcast_room(
                result.previous_room,
                OutboundEvent.USER_LEFT,
                {
                    "room": result.previous_room,
                    "username": username,
                    "member_count": result.previous_count,
                },
            )
        return joined

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send_message(
        self,
        connection_id: str,
        content: Optional[str] = None,
        file: Optional[FileDescriptor] = None,
    ) -> MessageResponse:
        """
        Appends a message to the connection's current room, then broadcasts
        the stored copy to everyone in the room, sender included.
        """
        connection, username = self._require_identity(connection_id)
        room_name = connection.current_room
        if room_name is None:
            raise ValidationException(detail="Join a room before sending messages")

        async with self.session_factory() as db:
            rooms = RoomService(db)
            room = await rooms.get_by_name(room_name)
            message = await MessageService(db).append(room, username, content, file)
            payload = MessageResponse.from_model(message)
            try:
                await rooms.touch_activity(room)
            except BaseAPIException as e:
                # The message is already stored; a stale activity timestamp is tolerable.
                logger.warning(f"Could not update activity of {room_name}: {e.detail}")

        await self._broadcast_room(room_name, OutboundEvent.MESSAGE, payload)
        return payload

    async def typing(self, connection_id: str, room: Optional[str] = None) -> None:
        await self._signal_typing(connection_id, room, OutboundEvent.TYPING)

    async def stop_typing(self, connection_id: str, room: Optional[str] = None) -> None:
        await self._signal_typing(connection_id, room, OutboundEvent.STOP_TYPING)

    async def _signal_typing(self, connection_id: str, room: Optional[str], event: OutboundEvent) -> None:
        connection, username = self._require_identity(connection_id)
        room_name = normalize_room_name(room) if room else connection.current_room
        if not room_name:
            raise ValidationException(detail="No room to signal typing in")

        await self._broadcast_room(
            room_name,
            event,
            {"sender": username, "room": room_name},
            exclude=self.presence.connections_for(username),
        )

    async def mark_read(self, connection_id: str, message_id: UUID) -> ReadReceipt:
        """Records a read receipt and tells the sender's devices, and nobody else."""
        _, username = self._require_identity(connection_id)

        async with self.session_factory() as db:
            message, changed = await MessageService(db).mark_read(message_id, username)
            receipt = ReadReceipt(message_id=message.id, read_by=message.read_by)
            sender = message.username

        if changed:
            await self.websocket_manager.broadcast(
                self.presence.connections_for(sender),
                _event(OutboundEvent.MESSAGE_READ, receipt),
            )
        return receipt

    async def delete_message(
        self, connection_id: str, message_id: UUID, delete_for_everyone: bool = False
    ) -> None:
        _, username = self._require_identity(connection_id)

        async with self.session_factory() as db:
            messages = MessageService(db)
            if delete_for_everyone:
                message = await messages.delete_for_everyone(message_id, username)
            else:
                await messages.delete_for_self(message_id, username)
                message = None

        if message is not None:
            await self._broadcast_room(
                message.room_name,
                OutboundEvent.MESSAGE_DELETED,
                {"message_id": message_id, "room": message.room_name},
            )
        else:
            await self._send(connection_id, OutboundEvent.MESSAGE_DELETED_FOR_ME, {"message_id": message_id})

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    async def request_file_download(self, connection_id: str, message_id: UUID) -> dict:
        self._require_identity(connection_id)

        async with self.session_factory() as db:
            message = await MessageService(db).get(message_id)
        if not message.has_file or message.file_deleted:
            raise FileNotAvailableException()

        ready = {
            "message_id": message_id,
            "url": f"{message.file_url}?download=true",
            "name": message.file_name,
        }
        await self._send(connection_id, OutboundEvent.FILE_DOWNLOAD_READY, ready)
        return ready

    async def delete_file(self, connection_id: str, message_id: UUID) -> None:
        """Removes a message's attachment from the blob store; the message itself stays."""
        _, username = self._require_identity(connection_id)

        async with self.session_factory() as db:
            message = await MessageService(db).mark_file_deleted(message_id, username)
        if self.file_service is not None:
            await self.file_service.delete(FileService.stored_name_from_url(message.file_url))

        await self._broadcast_room(
            message.room_name,
            OutboundEvent.FILE_DELETED,
            {"message_id": message_id, "room": message.room_name},
        )
        await self._send(connection_id, OutboundEvent.FILE_DELETED_SUCCESS, {"message_id": message_id})

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    async def send_error(self, connection_id: str, event: str, exc: BaseAPIException) -> None:
        await self.websocket_manager.send_personal_message(connection_id, error_event(event, exc))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_connection(self, connection_id: str) -> Connection:
        connection = self.connections.get(connection_id)
        if connection is None or connection.closed:
            raise AuthenticationRequiredException(detail="Unknown or closed connection")
        return connection

    def _require_identity(self, connection_id: str) -> Tuple[Connection, str]:
        connection = self._get_connection(connection_id)
        username = self.presence.resolve_username(connection_id)
        if username is None:
            raise AuthenticationRequiredException()
        return connection, username

    def _route(self, connection: Connection, room: Optional[str]) -> None:
        """Points the connection's room traffic at room (or nowhere)."""
        previous = connection.current_room
        if previous is not None and previous != room:
            subscribers = self._room_connections.get(previous)
            if subscribers is not None:
                subscribers.discard(connection.id)
                if not subscribers:
                    del self._room_connections[previous]
        connection.current_room = room
        if room is not None:
            self._room_connections.setdefault(room, set()).add(connection.id)

    def room_connections(self, room: str) -> Set[str]:
        return set(self._room_connections.get(room, ()))

    async def _room_list(self, rooms: RoomService) -> List[RoomSummary]:
        return [
            RoomSummary(
                name=room.name,
                topic=room.topic,
                member_count=self.membership.count_for(room.name),
                last_activity=room.last_activity,
            )
            for room in await rooms.list_all()
        ]

    async def _broadcast_room_list(self) -> None:
        async with self.session_factory() as db:
            room_list = await self._room_list(RoomService(db))
        await self.websocket_manager.broadcast(
            list(self.connections), _event(OutboundEvent.ROOM_LIST, room_list)
        )

    async def _broadcast_room(
        self, room: str, event: OutboundEvent, data: Any, exclude: Iterable[str] = ()
    ) -> None:
        recipients = self.room_connections(room) - set(exclude)
        await self.websocket_manager.broadcast(recipients, _event(event, data))

    async def _send(self, connection_id: str, event: OutboundEvent, data: Any) -> None:
        await self.websocket_manager.send_personal_message(connection_id, _event(event, data))
