from fastapi import APIRouter, Depends, Query
from typing import List

from ..schemas.message import MessageResponse
from ..schemas.room import RoomResponse, RoomSummary
from ..services.message_service import MessageService
from ..services.room_service import RoomService
from ..services.session_coordinator import SessionCoordinator
from app.dependencies.service_dependencies import (
    get_message_service,
    get_room_service,
    get_session_coordinator,
)

router = APIRouter(prefix="/api/rooms", tags=["rooms"])

@router.get("", response_model=List[RoomSummary])
async def list_rooms(
    room_service: RoomService = Depends(get_room_service),
    coordinator: SessionCoordinator = Depends(get_session_coordinator),
):
    """
    All rooms, most recently active first, with their live member counts.
    """
    return [
        RoomSummary(
            name=room.name,
            topic=room.topic,
            member_count=coordinator.membership.count_for(room.name),
            last_activity=room.last_activity,
        )
        for room in await room_service.list_all()
    ]

@router.get("/{room_name}", response_model=RoomResponse)
async def get_room(
    room_name: str,
    room_service: RoomService = Depends(get_room_service),
    coordinator: SessionCoordinator = Depends(get_session_coordinator),
):
    """
    Room details: everyone who ever joined, and who is in it right now.
    """
    room = await room_service.get_by_name(room_name)
    members = sorted(coordinator.membership.members_of(room.name))
    return RoomResponse(
        name=room.name,
        topic=room.topic,
        description=room.description,
        created_by=room.created_by,
        created_at=room.created_at,
        last_activity=room.last_activity,
        participants=room.participant_names,
        member_count=len(members),
        members=members,
    )

@router.get("/{room_name}/messages", response_model=List[MessageResponse])
async def get_room_messages(
    room_name: str,
    room_service: RoomService = Depends(get_room_service),
    message_service: MessageService = Depends(get_message_service),
    limit: int = Query(50, ge=1, le=100, description="Number of messages to return"),
):
    """
    Retrieve the latest messages of a room, oldest first.
    """
    room = await room_service.get_by_name(room_name)
    return [MessageResponse.from_model(m) for m in await message_service.history(room.name, limit)]
