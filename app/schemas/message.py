from pydantic import BaseModel, Field, model_validator
from uuid import UUID
from datetime import datetime
from typing import List, Optional


class FileDescriptor(BaseModel):
    url: str
    name: str
    mime_type: str = "application/octet-stream"
    size: int = Field(default=0, ge=0)
    deleted: bool = False


class MessageCreateRequest(BaseModel):
    content: Optional[str] = Field(default=None, max_length=2000, description="Message text")
    file: Optional[FileDescriptor] = None

    @model_validator(mode="after")
    def require_content_or_file(self):
        if self.content is not None:
            self.content = self.content.strip() or None
        if self.content is None and self.file is None:
            raise ValueError("Message must have content or a file")
        return self


class MessageRefRequest(BaseModel):
    message_id: UUID


class DeleteMessageRequest(BaseModel):
    message_id: UUID
    delete_for_everyone: bool = False


class MessageResponse(BaseModel):
    id: UUID
    room: str
    sender: str
    content: Optional[str] = None
    time: datetime
    file: Optional[FileDescriptor] = None
    read_by: List[str] = []

    @classmethod
    def from_model(cls, message) -> "MessageResponse":
        file = None
        if message.has_file:
            # A deleted blob keeps its metadata but loses its URL.
            file = FileDescriptor(
                url="" if message.file_deleted else message.file_url,
                name=message.file_name,
                mime_type=message.file_type or "application/octet-stream",
                size=message.file_size or 0,
                deleted=message.file_deleted,
            )
        return cls(
            id=message.id,
            room=message.room_name,
            sender=message.username,
            content=message.content,
            time=message.time,
            file=file,
            read_by=message.read_by,
        )


class ReadReceipt(BaseModel):
    message_id: UUID
    read_by: List[str]
