import json
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from app.core.exceptions import BaseAPIException, InvalidTokenException, ValidationException
from app.core.log_config import logger
from app.core.security import username_from_token
from app.dependencies.service_dependencies import get_session_coordinator, get_websocket_manager
from app.schemas.events import InboundEvent, SetIdentityRequest, TypingRequest
from app.schemas.message import DeleteMessageRequest, MessageCreateRequest, MessageRefRequest
from app.schemas.room import CreateRoomRequest, JoinRoomRequest
from app.services.session_coordinator import SessionCoordinator
from app.utils.websocket_manager import WebsocketManager

router = APIRouter(prefix="/ws", tags=["websocket"])


def _validation_detail(e: ValidationError) -> str:
    errors = e.errors()
    if not errors:
        return "Invalid payload"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


async def dispatch_frame(coordinator: SessionCoordinator, connection_id: str, message: dict) -> None:
    """Handles one raw ASGI receive message. Only text frames carry events."""
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(code=message.get("code", 1000), reason=message.get("reason"))

    data = message.get("text")
    if data is None:
        logger.warning(f"Binary frame from {connection_id} ignored.")
        await coordinator.send_error(
            connection_id, "unknown", ValidationException(detail="Only text frames are supported")
        )
        return
    await dispatch_event(coordinator, connection_id, data)


async def dispatch_event(coordinator: SessionCoordinator, connection_id: str, data: str) -> None:
    """
    Handles one inbound frame. Every failure in the chat error taxonomy is
    reported privately to the sender and the connection stays open.
    """
    try:
        message_data = json.loads(data)
        msg_type = message_data.get("type") if isinstance(message_data, dict) else None
        if not msg_type:
            logger.warning(f"Frame from {connection_id} is missing 'type' field: {data}")
            await coordinator.send_error(
                connection_id, "unknown", ValidationException(detail="Missing 'type' field")
            )
            return
    except json.JSONDecodeError:
        logger.warning(f"Invalid JSON received from {connection_id}: {data}")
        await coordinator.send_error(connection_id, "unknown", ValidationException(detail="Invalid JSON"))
        return

    # Fields may come flat beside "type" or wrapped in a "data" object.
    payload = message_data.get("data")
    if not isinstance(payload, dict):
        payload = message_data

    logger.debug(f"Event '{msg_type}' from {connection_id}: {payload}")

    try:
        if msg_type == InboundEvent.SET_IDENTITY:
            request = SetIdentityRequest(**payload)
            await coordinator.set_identity(connection_id, request.username)

        elif msg_type == InboundEvent.LIST_ROOMS:
            await coordinator.request_room_list(connection_id)

        elif msg_type == InboundEvent.JOIN_ROOM:
            request = JoinRoomRequest(**payload)
            await coordinator.join_room(connection_id, request.room_name)

        elif msg_type == InboundEvent.LEAVE_ROOM:
            await coordinator.leave_room(connection_id)

        elif msg_type == InboundEvent.CREATE_ROOM:
            request = CreateRoomRequest(**payload)
            await coordinator.create_room(
                connection_id, request.room_name, request.topic, request.description
            )

        elif msg_type == InboundEvent.SEND_MESSAGE:
            request = MessageCreateRequest(**payload)
            await coordinator.send_message(connection_id, request.content, request.file)

        elif msg_type == InboundEvent.TYPING:
            request = TypingRequest(**payload)
            await coordinator.typing(connection_id, request.room)

        elif msg_type == InboundEvent.STOP_TYPING:
            request = TypingRequest(**payload)
            await coordinator.stop_typing(connection_id, request.room)

        elif msg_type == InboundEvent.MARK_READ:
            request = MessageRefRequest(**payload)
            await coordinator.mark_read(connection_id, request.message_id)

        elif msg_type == InboundEvent.DELETE_MESSAGE:
            request = DeleteMessageRequest(**payload)
            await coordinator.delete_message(
                connection_id, request.message_id, request.delete_for_everyone
            )

        elif msg_type == InboundEvent.DOWNLOAD_FILE:
            request = MessageRefRequest(**payload)
            await coordinator.request_file_download(connection_id, request.message_id)

        elif msg_type == InboundEvent.DELETE_FILE:
            request = MessageRefRequest(**payload)
            await coordinator.delete_file(connection_id, request.message_id)

        else:
            raise ValidationException(detail=f"Unknown event type '{msg_type}'")

    except ValidationError as e:
        detail = _validation_detail(e)
        logger.warning(f"Invalid '{msg_type}' payload from {connection_id}: {detail}")
        await coordinator.send_error(connection_id, msg_type, ValidationException(detail=detail))

    except BaseAPIException as e:
        logger.warning(f"'{msg_type}' from {connection_id} failed: {e.detail}")
        await coordinator.send_error(connection_id, msg_type, e)


@router.websocket("")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    manager: WebsocketManager = Depends(get_websocket_manager),
    coordinator: SessionCoordinator = Depends(get_session_coordinator),
):
    username = None
    if token:
        try:
            username = username_from_token(token)
        except InvalidTokenException:
            logger.warning("WebSocket connection rejected: invalid token provided.")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid token")
            return

    connection_id = await manager.connect(websocket)
    coordinator.connect(connection_id)

    try:
        if username:
            await coordinator.set_identity(connection_id, username)

        while True:
            message = await websocket.receive()
            await dispatch_frame(coordinator, connection_id, message)

    except WebSocketDisconnect as e:
        logger.info(f"Connection {connection_id} disconnected. Code: {e.code}, Reason: {e.reason}")

    except Exception as e:
        logger.error(f"An unhandled error occurred in websocket {connection_id}: {e}", exc_info=True)

    finally:
        await coordinator.disconnect(connection_id)
        manager.disconnect(connection_id)
