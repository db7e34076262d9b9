from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class InboundEvent(str, Enum):
    SET_IDENTITY = "set_identity"
    LIST_ROOMS = "list_rooms"
    JOIN_ROOM = "join_room"
    LEAVE_ROOM = "leave_room"
    CREATE_ROOM = "create_room"
    SEND_MESSAGE = "send_message"
    TYPING = "typing"
    STOP_TYPING = "stop_typing"
    MARK_READ = "mark_read"
    DELETE_MESSAGE = "delete_message"
    DOWNLOAD_FILE = "download_file"
    DELETE_FILE = "delete_file"


class OutboundEvent(str, Enum):
    IDENTITY_SET = "identity_set"
    ROOM_LIST = "room_list"
    ROOM_JOINED = "room_joined"
    ROOM_HISTORY = "room_history"
    ROOM_LEFT = "room_left"
    USER_JOINED = "user_joined"
    USER_LEFT = "user_left"
    MESSAGE = "message"
    TYPING = "typing"
    STOP_TYPING = "stop_typing"
    MESSAGE_READ = "message_read"
    MESSAGE_DELETED = "message_deleted"
    MESSAGE_DELETED_FOR_ME = "message_deleted_for_me"
    FILE_DOWNLOAD_READY = "file_download_ready"
    FILE_DELETED = "file_deleted"
    FILE_DELETED_SUCCESS = "file_deleted_success"
    ERROR = "error"


class SetIdentityRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=50)


class TypingRequest(BaseModel):
    room: Optional[str] = None
