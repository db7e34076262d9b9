from sqlalchemy.orm import relationship
from sqlalchemy import Column, ForeignKey, Text, DateTime, Integer, String, Boolean, Uuid, UniqueConstraint

from .base import Base, utcnow


class Message(Base):
    __tablename__ = "messages"

    content = Column(Text, nullable=True)
    username = Column(String(50), nullable=False, index=True)

    room_id = Column(Uuid(as_uuid=True), ForeignKey("rooms.id"), nullable=False, index=True)
    room_name = Column(String(30), nullable=False, index=True)
    room = relationship("Room", back_populates="messages")

    # Attachment descriptor handed back by the blob store
    file_url = Column(String(500), nullable=True)
    file_name = Column(String(255), nullable=True)
    file_type = Column(String(100), nullable=True)
    file_size = Column(Integer, nullable=True)
    file_deleted = Column(Boolean, default=False, nullable=False)

    time = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    reads = relationship(
        "MessageRead",
        order_by="MessageRead.read_at",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    deletions = relationship(
        "MessageDeletion",
        order_by="MessageDeletion.deleted_at",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def has_file(self) -> bool:
        return self.file_url is not None

    @property
    def read_by(self) -> list[str]:
        return [r.username for r in self.reads]

    @property
    def deleted_for(self) -> list[str]:
        return [d.username for d in self.deletions]

    def __repr__(self):
        preview = (self.content or "")[:50]
        return f"<Message(id={self.id}, username={self.username}, content='{preview}...')>"


class MessageRead(Base):
    __tablename__ = "message_reads"
    __table_args__ = (UniqueConstraint("message_id", "username", name="uq_message_read"),)

    message_id = Column(Uuid(as_uuid=True), ForeignKey("messages.id", ondelete="CASCADE"), nullable=False)
    username = Column(String(50), nullable=False)
    read_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class MessageDeletion(Base):
    """Soft deletion: hides a message for one user only."""
    __tablename__ = "message_deletions"
    __table_args__ = (UniqueConstraint("message_id", "username", name="uq_message_deletion"),)

    message_id = Column(Uuid(as_uuid=True), ForeignKey("messages.id", ondelete="CASCADE"), nullable=False)
    username = Column(String(50), nullable=False)
    deleted_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
