from sqlalchemy import Column, String, DateTime, ForeignKey, Uuid, UniqueConstraint
from sqlalchemy.orm import relationship
from app.models.base import Base, utcnow


class Room(Base):
    __tablename__ = "rooms"

    name = Column(String(30), unique=True, nullable=False, index=True)
    topic = Column(String(200), nullable=False, default="General Chat")
    description = Column(String(200), nullable=False, default="")
    created_by = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    last_activity = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    participants = relationship(
        "RoomParticipant",
        back_populates="room",
        order_by="RoomParticipant.joined_at",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    messages = relationship("Message", back_populates="room")

    @property
    def participant_names(self) -> list[str]:
        return [p.username for p in self.participants]

    def __repr__(self):
        return f"<Room(id={self.id}, name='{self.name}')>"


class RoomParticipant(Base):
    """A username that has joined the room at least once. Never pruned."""
    __tablename__ = "room_participants"
    __table_args__ = (UniqueConstraint("room_id", "username", name="uq_room_participant"),)

    room_id = Column(Uuid(as_uuid=True), ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False)
    username = Column(String(50), nullable=False)
    joined_at = Column(DateTime(timezone=True), default=utcnow)

    room = relationship("Room", back_populates="participants")
