import re
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import DefaultRoom
from ..core.exceptions import (
    RoomAlreadyExistsException,
    RoomNotFoundException,
    ValidationException,
)
from ..core.log_config import logger
from ..database.postgres import storage_call
from ..models.base import utcnow
from ..models.room import Room, RoomParticipant

ROOM_NAME_MIN_LENGTH = 3
ROOM_NAME_MAX_LENGTH = 30

_WHITESPACE = re.compile(r"\s+")


def normalize_room_name(name: str) -> str:
    """Lower-cases and hyphenates a room name. Normalizing twice is a no-op."""
    return _WHITESPACE.sub("-", (name or "").strip().lower())


def validate_room_name(name: str) -> str:
    """Normalizes name and checks its length bounds."""
    normalized = normalize_room_name(name)
    if not normalized:
        raise ValidationException(detail="Room name is required")
    if not ROOM_NAME_MIN_LENGTH <= len(normalized) <= ROOM_NAME_MAX_LENGTH:
        raise ValidationException(
            detail=f"Room name must be {ROOM_NAME_MIN_LENGTH}-{ROOM_NAME_MAX_LENGTH} characters"
        )
    return normalized


class RoomService:
    """Durable catalog of rooms."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @storage_call
    async def create(
        self,
        name: str,
        topic: Optional[str],
        creator_username: str,
        description: Optional[str] = None,
    ) -> Room:
        """
        Create a new room with the creator as its first participant.

        Args:
            name: Requested room name, normalized before use
            topic: Free text topic; defaults to "Chat about <name>"
            creator_username: Username of the creator
            description: Optional longer text shown on the room page

        Returns:
            The persisted Room

        Raises:
            ValidationException: If the normalized name is empty or out of bounds
            RoomAlreadyExistsException: If a room with the normalized name exists
        """
        normalized = validate_room_name(name)

        if await self.find_by_name(normalized) is not None:
            raise RoomAlreadyExistsException(detail=f"Room '{normalized}' already exists")

        room = Room(
            name=normalized,
            topic=(topic or "").strip() or f"Chat about {normalized}",
            description=(description or "").strip(),
            created_by=creator_username,
            participants=[RoomParticipant(username=creator_username)],
        )
        self.db.add(room)
        try:
            await self.db.commit()
        except IntegrityError as e:
            # Lost a race against a concurrent create of the same name.
            await self.db.rollback()
            raise RoomAlreadyExistsException(detail=f"Room '{normalized}' already exists") from e

        logger.info(f"Room '{normalized}' created by {creator_username}.")
        return room

    @storage_call
    async def find_by_name(self, name: str) -> Optional[Room]:
        result = await self.db.execute(
            select(Room).filter(Room.name == normalize_room_name(name))
        )
        return result.scalar_one_or_none()

    async def get_by_name(self, name: str) -> Room:
        room = await self.find_by_name(name)
        if room is None:
            raise RoomNotFoundException(detail=f"Room '{normalize_room_name(name)}' does not exist")
        return room

    @storage_call
    async def list_all(self) -> List[Room]:
        """All rooms, most recently active first."""
        result = await self.db.execute(
            select(Room).order_by(Room.last_activity.desc(), Room.name)
        )
        return list(result.scalars().all())

    @storage_call
    async def touch_activity(self, room: Room) -> None:
        await self.db.execute(
            update(Room).where(Room.id == room.id).values(last_activity=utcnow())
        )
        await self.db.commit()

    @storage_call
    async def add_participant(self, room: Room, username: str) -> bool:
        """Records username as having joined room. Returns False if it already had."""
        if username in room.participant_names:
            return False

        room.participants.append(RoomParticipant(username=username))
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            await self.db.refresh(room)
            return False
        return True

    @storage_call
    async def ensure_defaults(self, defaults: Iterable[DefaultRoom]) -> List[str]:
        """Creates the startup rooms that do not exist yet. Returns the names created."""
        created = []
        for default in defaults:
            name = normalize_room_name(default.name)
            if await self.find_by_name(name) is not None:
                logger.debug(f"Room '{name}' already exists")
                continue
            self.db.add(Room(name=name, topic=default.topic))
            created.append(name)

        if created:
            await self.db.commit()
            logger.info(f"Default rooms created: {', '.join(created)}")
        return created
