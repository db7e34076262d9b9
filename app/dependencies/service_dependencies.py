from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.globals import file_service, session_coordinator, websocket_manager
from app.utils.websocket_manager import WebsocketManager

from app.database.postgres import get_db_session
from app.services.auth_service import AuthService
from app.services.file_service import FileService
from app.services.message_service import MessageService
from app.services.room_service import RoomService
from app.services.session_coordinator import SessionCoordinator

def get_websocket_manager() -> WebsocketManager:
    """
    Dependency that provides the singleton WebsocketManager instance.
    """
    return websocket_manager

def get_session_coordinator() -> SessionCoordinator:
    """
    Dependency that provides the singleton SessionCoordinator, which owns live presence and room occupancy.
    """
    return session_coordinator

def get_file_service() -> FileService:
    return file_service

def get_auth_service(db: AsyncSession = Depends(get_db_session)) -> AuthService:
    """
    Dependency that provides an instance of AuthService with an active database session.
    """
    return AuthService(db)

def get_room_service(db: AsyncSession = Depends(get_db_session)) -> RoomService:
    """
    Dependency that provides an instance of RoomService with an active database session.
    """
    return RoomService(db)

def get_message_service(db: AsyncSession = Depends(get_db_session)) -> MessageService:
    """
    Dependency that provides an instance of MessageService with an active database session.
    """
    return MessageService(db)
