from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional


class CreateRoomRequest(BaseModel):
    room_name: str = Field(..., min_length=1, max_length=100, description="Room name, normalized server-side")
    topic: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=200)


class JoinRoomRequest(BaseModel):
    room_name: str = Field(..., min_length=1, max_length=100)


class RoomSummary(BaseModel):
    """One row of the room picker."""
    name: str
    topic: str
    member_count: int = 0
    last_activity: datetime


class RoomJoinedResponse(BaseModel):
    name: str
    topic: str
    member_count: int


class RoomResponse(BaseModel):
    name: str
    topic: str
    description: str = ""
    created_by: Optional[str] = None
    created_at: datetime
    last_activity: datetime
    participants: List[str] = []
    member_count: int = 0
    members: List[str] = []

    class Config:
        from_attributes = True
