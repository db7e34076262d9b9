from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import (
    FileNotAvailableException,
    MessageNotFoundException,
    UnauthorizedAccessException,
    ValidationException,
)
from ..core.log_config import logger
from ..database.postgres import storage_call
from ..models.message import Message, MessageDeletion, MessageRead
from ..models.room import Room
from ..schemas.message import FileDescriptor

DEFAULT_HISTORY_LIMIT = 50


class MessageService:
    """
    Durable, ordered log of messages per room. Messages are append-only apart
    from read receipts and deletions; `read_by` and `deleted_for` only grow.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    @storage_call
    async def append(
        self,
        room: Room,
        sender: str,
        content: Optional[str],
        file: Optional[FileDescriptor] = None,
    ) -> Message:
        """
        Saves a new message. The timestamp is assigned here; the sender has
        always read their own message.

        Raises:
            ValidationException: If there is neither text nor an attachment
        """
        content = (content or "").strip() or None
        if content is None and file is None:
            raise ValidationException(detail="Message must have content or a file")

        message = Message(
            room_id=room.id,
            room_name=room.name,
            username=sender,
            content=content,
            reads=[MessageRead(username=sender)],
            deletions=[],
        )
        if file is not None:
            message.file_url = file.url
            message.file_name = file.name
            message.file_type = file.mime_type
            message.file_size = file.size
            message.file_deleted = False

        self.db.add(message)
        await self.db.commit()
        return message

    @storage_call
    async def history(self, room_name: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[Message]:
        """
        The latest `limit` messages of a room in chronological order.
        Messages whose attachment was deleted are included.
        """
        result = await self.db.execute(
            select(Message)
            .filter(Message.room_name == room_name)
            .order_by(Message.time.desc())
            .limit(limit)
        )
        return list(reversed(result.scalars().all()))

    @storage_call
    async def find(self, message_id: UUID) -> Optional[Message]:
        result = await self.db.execute(
            select(Message)
            .filter(Message.id == message_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get(self, message_id: UUID) -> Message:
        message = await self.find(message_id)
        if message is None:
            raise MessageNotFoundException(detail=f"Message {message_id} not found")
        return message

    @storage_call
    async def mark_read(self, message_id: UUID, username: str) -> Tuple[Message, bool]:
        """
        Adds username to the message's readers. Returns (message, changed);
        changed is False when username had already read it.
        """
        message = await self.get(message_id)
        if username in message.read_by:
            return message, False

        message.reads.append(MessageRead(username=username))
        try:
            await self.db.commit()
        except IntegrityError:
            # A concurrent receipt for the same reader landed first.
            await self.db.rollback()
            return await self.get(message_id), False
        return message, True

    @storage_call
    async def delete_for_self(self, message_id: UUID, username: str) -> Tuple[Message, bool]:
        """Hides the message for username only."""
        message = await self.get(message_id)
        if username in message.deleted_for:
            return message, False

        message.deletions.append(MessageDeletion(username=username))
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            return await self.get(message_id), False
        return message, True

    @storage_call
    async def delete_for_everyone(self, message_id: UUID, requester: str) -> Message:
        """
        Permanently removes the message. Only its sender may do this.

        Raises:
            MessageNotFoundException: If the message does not exist
            UnauthorizedAccessException: If requester is not the sender
        """
        message = await self.get(message_id)
        if message.username != requester:
            raise UnauthorizedAccessException(detail="Only the sender can delete a message for everyone")

        await self.db.delete(message)
        await self.db.commit()
        logger.info(f"Message {message_id} in {message.room_name} deleted for everyone by {requester}.")
        return message

    @storage_call
    async def mark_file_deleted(self, message_id: UUID, requester: str) -> Message:
        """Flags the message's attachment as deleted. Only the sender may do this."""
        message = await self.get(message_id)
        if not message.has_file:
            raise FileNotAvailableException(detail="Message has no attachment")
        if message.username != requester:
            raise UnauthorizedAccessException(detail="Only the sender can delete this file")
        if not message.file_deleted:
            message.file_deleted = True
            await self.db.commit()
        return message

    @storage_call
    async def mark_files_deleted_by_url(self, url: str) -> int:
        """Flags every attachment pointing at url as deleted. Returns the number of messages touched."""
        result = await self.db.execute(
            update(Message)
            .where(Message.file_url == url, Message.file_deleted.is_(False))
            .values(file_deleted=True)
        )
        await self.db.commit()
        return result.rowcount
