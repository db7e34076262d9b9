import asyncio
import uuid

import pytest
from app.core.exceptions import (
    AuthenticationRequiredException,
    FileNotAvailableException,
    MessageNotFoundException,
    RoomAlreadyExistsException,
    RoomNotFoundException,
    UnauthorizedAccessException,
    ValidationException,
)
from app.schemas.message import FileDescriptor
from app.services.message_service import MessageService
from app.services.session_coordinator import SessionCoordinator


def room_names(room_list):
    return [room["name"] for room in room_list]

def count_in(room_list, name):
    return next(room["member_count"] for room in room_list if room["name"] == name)


@pytest.mark.asyncio
async def test_set_identity_acknowledges(coordinator, ws_manager):
    coordinator.connect("c1")
    await coordinator.set_identity("c1", "alice")

    assert ws_manager.events("c1", "identity_set") == [{"username": "alice"}]
    assert coordinator.presence.resolve_username("c1") == "alice"
    assert coordinator.connections["c1"].state == "identified"

@pytest.mark.asyncio
async def test_set_identity_same_name_is_a_no_op(coordinator, login):
    alice = await login("alice")
    await coordinator.set_identity(alice, "alice")
    assert coordinator.presence.connections_for("alice") == {alice}

@pytest.mark.asyncio
async def test_set_identity_cannot_rebind(coordinator, login):
    alice = await login("alice")
    with pytest.raises(ValidationException):
        await coordinator.set_identity(alice, "mallory")
    assert coordinator.presence.resolve_username(alice) == "alice"

@pytest.mark.asyncio
async def test_identity_required_before_joining(coordinator):
    coordinator.connect("c1")
    with pytest.raises(AuthenticationRequiredException):
        await coordinator.join_room("c1", "general")
    with pytest.raises(AuthenticationRequiredException):
        await coordinator.send_message("c1", "hello")

@pytest.mark.asyncio
async def test_unknown_connection_is_rejected(coordinator):
    with pytest.raises(AuthenticationRequiredException):
        await coordinator.request_room_list("ghost")

@pytest.mark.asyncio
async def test_request_room_list(coordinator, ws_manager, login):
    alice = await login("alice")
    await coordinator.request_room_list(alice)

    [room_list] = ws_manager.events(alice, "room_list")
    assert set(room_names(room_list)) == {"general", "random"}
    assert all(room["member_count"] == 0 for room in room_list)

@pytest.mark.asyncio
async def test_create_room_joins_creator(coordinator, ws_manager, login):
    alice = await login("alice")
    bob = await login("bob")

    joined = await coordinator.create_room(alice, "Team Chat")

    assert joined.name == "team-chat"
    assert joined.member_count == 1
    assert coordinator.membership.members_of("team-chat") == {"alice"}
    assert coordinator.connections[alice].current_room == "team-chat"
    assert ws_manager.events(alice, "room_joined")[0]["name"] == "team-chat"
    assert ws_manager.events(alice, "room_history") == [{"room": "team-chat", "messages": []}]
    # Every connection learns about the new room.
    assert "team-chat" in room_names(ws_manager.events(bob, "room_list")[-1])

@pytest.mark.asyncio
async def test_create_room_conflicts_with_normalized_name(coordinator, login):
    alice = await login("alice")
    with pytest.raises(RoomAlreadyExistsException):
        await coordinator.create_room(alice, "  GENERAL ")

@pytest.mark.asyncio
async def test_create_room_validates_name(coordinator, login):
    alice = await login("alice")
    with pytest.raises(ValidationException):
        await coordinator.create_room(alice, "ab")

@pytest.mark.asyncio
async def test_join_unknown_room(coordinator, login):
    alice = await login("alice")
    with pytest.raises(RoomNotFoundException):
        await coordinator.join_room(alice, "nowhere")
    assert coordinator.membership.room_of("alice") is None

@pytest.mark.asyncio
async def test_join_notifies_existing_members(coordinator, ws_manager, login):
    alice = await login("alice")
    bob = await login("bob")
    await coordinator.join_room(alice, "general")
    ws_manager.clear()

    await coordinator.join_room(bob, "General")

    assert ws_manager.events(alice, "user_joined") == [
        {"room": "general", "username": "bob", "member_count": 2}
    ]
    assert ws_manager.events(bob, "user_joined") == []
    assert ws_manager.events(bob, "room_joined")[0]["member_count"] == 2
    assert count_in(ws_manager.events(alice, "room_list")[-1], "general") == 2

@pytest.mark.asyncio
async def test_message_reaches_everyone_in_room(coordinator, ws_manager, login):
    alice = await login("alice")
    bob = await login("bob")
    carol = await login("carol")
    await coordinator.join_room(alice, "general")
    await coordinator.join_room(bob, "general")
    await coordinator.join_room(carol, "random")

    sent = await coordinator.send_message(alice, "hello")

    for connection_id in (alice, bob):
        [message] = ws_manager.events(connection_id, "message")
        assert message["content"] == "hello"
        assert message["sender"] == "alice"
        assert message["room"] == "general"
        assert message["read_by"] == ["alice"]
        assert message["id"] == str(sent.id)
    assert ws_manager.events(carol, "message") == []

@pytest.mark.asyncio
async def test_send_message_requires_a_room(coordinator, login):
    alice = await login("alice")
    with pytest.raises(ValidationException):
        await coordinator.send_message(alice, "hello")

@pytest.mark.asyncio
async def test_send_empty_message_is_rejected(coordinator, ws_manager, login):
    alice = await login("alice")
    await coordinator.join_room(alice, "general")

    with pytest.raises(ValidationException):
        await coordinator.send_message(alice, "   ")
    assert ws_manager.events(alice, "message") == []

@pytest.mark.asyncio
async def test_joining_pushes_history(coordinator, ws_manager, login):
    alice = await login("alice")
    await coordinator.join_room(alice, "general")
    await coordinator.send_message(alice, "first")
    await coordinator.send_message(alice, "second")

    bob = await login("bob")
    await coordinator.join_room(bob, "general")

    [history] = ws_manager.events(bob, "room_history")
    assert history["room"] == "general"
    assert [m["content"] for m in history["messages"]] == ["first", "second"]

@pytest.mark.asyncio
async def test_history_is_limited(ws_manager, session_factory):
    coordinator = SessionCoordinator(ws_manager, session_factory, history_limit=2)
    coordinator.connect("alice-1")
    await coordinator.set_identity("alice-1", "alice")
    await coordinator.join_room("alice-1", "general")
    for i in range(4):
        await coordinator.send_message("alice-1", f"m{i}")

    await coordinator.join_room("alice-1", "random")
    await coordinator.join_room("alice-1", "general")

    history = ws_manager.events("alice-1", "room_history")[-1]
    assert [m["content"] for m in history["messages"]] == ["m2", "m3"]

@pytest.mark.asyncio
async def test_switching_rooms(coordinator, ws_manager, login):
    alice = await login("alice")
    bob = await login("bob")
    await coordinator.join_room(alice, "general")
    await coordinator.join_room(bob, "general")
    ws_manager.clear()

    await coordinator.join_room(alice, "random")

    assert coordinator.membership.members_of("general") == {"bob"}
    assert coordinator.membership.members_of("random") == {"alice"}
    assert ws_manager.events(bob, "user_left") == [
        {"room": "general", "username": "alice", "member_count": 1}
    ]

    await coordinator.send_message(bob, "still here?")
    assert ws_manager.events(alice, "message") == []

@pytest.mark.asyncio
async def test_concurrent_joins_settle_in_one_room(coordinator, ws_manager, login):
    alice = await login("alice")

    await asyncio.gather(
        coordinator.join_room(alice, "general"),
        coordinator.join_room(alice, "random"),
    )

    room = coordinator.membership.room_of("alice")
    assert room in ("general", "random")
    assert coordinator.connections[alice].current_room == room
    assert coordinator.membership.counts() == {room: 1}
    assert coordinator.room_connections(room) == {alice}

@pytest.mark.asyncio
async def test_leave_room(coordinator, ws_manager, login):
    alice = await login("alice")
    bob = await login("bob")
    await coordinator.join_room(alice, "general")
    await coordinator.join_room(bob, "general")

    assert await coordinator.leave_room(alice) == "general"

    assert ws_manager.events(alice, "room_left") == [{"room": "general"}]
    assert ws_manager.events(bob, "user_left")[-1]["member_count"] == 1
    assert coordinator.connections[alice].state == "identified"
    with pytest.raises(ValidationException):
        await coordinator.leave_room(alice)

@pytest.mark.asyncio
async def test_disconnect_vacates_room(coordinator, ws_manager, login):
    alice = await login("alice")
    bob = await login("bob")
    await coordinator.join_room(alice, "general")
    await coordinator.join_room(bob, "general")
    ws_manager.clear()

    await coordinator.disconnect(bob)

    assert coordinator.membership.members_of("general") == {"alice"}
    assert not coordinator.presence.is_online("bob")
    assert ws_manager.events(alice, "user_left") == [
        {"room": "general", "username": "bob", "member_count": 1}
    ]
    assert count_in(ws_manager.events(alice, "room_list")[-1], "general") == 1
    assert ws_manager.events(bob) == []

    # Disconnecting again changes nothing.
    await coordinator.disconnect(bob)

@pytest.mark.asyncio
async def test_other_device_keeps_user_in_room(coordinator, ws_manager, login):
    phone = await login("bob")
    laptop = await login("bob")
    alice = await login("alice")
    await coordinator.join_room(phone, "general")
    await coordinator.join_room(alice, "general")
    ws_manager.clear()

    await coordinator.disconnect(laptop)

    assert coordinator.membership.members_of("general") == {"alice", "bob"}
    assert ws_manager.events(alice) == []

    await coordinator.disconnect(phone)
    assert coordinator.membership.members_of("general") == {"alice"}

@pytest.mark.asyncio
async def test_closed_connection_cannot_act(coordinator, login):
    alice = await login("alice")
    await coordinator.disconnect(alice)
    with pytest.raises(AuthenticationRequiredException):
        await coordinator.join_room(alice, "general")

@pytest.mark.asyncio
async def test_disconnect_while_sending(coordinator, ws_manager, session_factory, login):
    alice = await login("alice")
    bob = await login("bob")
    await coordinator.join_room(alice, "general")
    await coordinator.join_room(bob, "general")
    ws_manager.clear()

    sending = asyncio.create_task(coordinator.send_message(alice, "bye"))
    await asyncio.sleep(0)
    await coordinator.disconnect(alice)
    sent = await sending

    assert [m["id"] for m in ws_manager.events(bob, "message")] == [str(sent.id)]
    assert ws_manager.events(alice, "message") == []
    async with session_factory() as db:
        assert [m.content for m in await MessageService(db).history("general")] == ["bye"]

@pytest.mark.asyncio
async def test_typing_excludes_sender(coordinator, ws_manager, login):
    alice = await login("alice")
    alice_laptop = await login("alice")
    bob = await login("bob")
    for connection_id in (alice, alice_laptop, bob):
        await coordinator.join_room(connection_id, "general")
    ws_manager.clear()

    await coordinator.typing(alice)
    await coordinator.stop_typing(alice, "general")

    assert ws_manager.events(bob, "typing") == [{"sender": "alice", "room": "general"}]
    assert ws_manager.events(bob, "stop_typing") == [{"sender": "alice", "room": "general"}]
    assert ws_manager.events(alice) == []
    assert ws_manager.events(alice_laptop) == []

@pytest.mark.asyncio
async def test_typing_needs_a_room(coordinator, login):
    alice = await login("alice")
    with pytest.raises(ValidationException):
        await coordinator.typing(alice)

@pytest.mark.asyncio
async def test_read_receipt_goes_to_sender_only(coordinator, ws_manager, login):
    alice = await login("alice")
    alice_laptop = await login("alice")
    bob = await login("bob")
    await coordinator.join_room(alice, "general")
    await coordinator.join_room(bob, "general")
    sent = await coordinator.send_message(alice, "did you see this?")
    ws_manager.clear()

    receipt = await coordinator.mark_read(bob, sent.id)

    assert receipt.read_by == ["alice", "bob"]
    expected = [{"message_id": str(sent.id), "read_by": ["alice", "bob"]}]
    assert ws_manager.events(alice, "message_read") == expected
    assert ws_manager.events(alice_laptop, "message_read") == expected
    assert ws_manager.events(bob, "message_read") == []

    # A repeated receipt stores nothing new and notifies nobody.
    await coordinator.mark_read(bob, sent.id)
    assert len(ws_manager.events(alice, "message_read")) == 1

@pytest.mark.asyncio
async def test_mark_read_unknown_message(coordinator, login):
    bob = await login("bob")
    with pytest.raises(MessageNotFoundException):
        await coordinator.mark_read(bob, uuid.uuid4())

@pytest.mark.asyncio
async def test_delete_for_everyone(coordinator, ws_manager, login):
    alice = await login("alice")
    bob = await login("bob")
    await coordinator.join_room(alice, "general")
    await coordinator.join_room(bob, "general")
    sent = await coordinator.send_message(alice, "oops")

    with pytest.raises(UnauthorizedAccessException):
        await coordinator.delete_message(bob, sent.id, delete_for_everyone=True)

    await coordinator.delete_message(alice, sent.id, delete_for_everyone=True)

    expected = [{"message_id": str(sent.id), "room": "general"}]
    assert ws_manager.events(alice, "message_deleted") == expected
    assert ws_manager.events(bob, "message_deleted") == expected

    await coordinator.join_room(bob, "random")
    await coordinator.join_room(bob, "general")
    assert ws_manager.events(bob, "room_history")[-1]["messages"] == []

@pytest.mark.asyncio
async def test_delete_for_me(coordinator, ws_manager, login):
    alice = await login("alice")
    bob = await login("bob")
    await coordinator.join_room(alice, "general")
    await coordinator.join_room(bob, "general")
    sent = await coordinator.send_message(alice, "spoiler")
    ws_manager.clear()

    await coordinator.delete_message(bob, sent.id)

    assert ws_manager.events(bob, "message_deleted_for_me") == [{"message_id": str(sent.id)}]
    assert ws_manager.events(alice) == []

    await coordinator.join_room(bob, "random")
    await coordinator.join_room(bob, "general")
    await coordinator.join_room(alice, "random")
    await coordinator.join_room(alice, "general")
    assert ws_manager.events(bob, "room_history")[-1]["messages"] == []
    assert [m["content"] for m in ws_manager.events(alice, "room_history")[-1]["messages"]] == ["spoiler"]

@pytest.mark.asyncio
async def test_file_download_and_delete(coordinator, ws_manager, login):
    alice = await login("alice")
    bob = await login("bob")
    await coordinator.join_room(alice, "general")
    await coordinator.join_room(bob, "general")
    attachment = FileDescriptor(
        url="http://localhost:8000/api/files/1700000000000-notes.txt",
        name="notes.txt",
        mime_type="text/plain",
        size=12,
    )
    sent = await coordinator.send_message(alice, None, attachment)
    assert ws_manager.events(bob, "message")[-1]["file"]["name"] == "notes.txt"

    ready = await coordinator.request_file_download(bob, sent.id)
    assert ready["url"] == f"{attachment.url}?download=true"
    assert ws_manager.events(bob, "file_download_ready")[0]["name"] == "notes.txt"

    with pytest.raises(UnauthorizedAccessException):
        await coordinator.delete_file(bob, sent.id)

    await coordinator.delete_file(alice, sent.id)
    assert ws_manager.events(bob, "file_deleted") == [{"message_id": str(sent.id), "room": "general"}]
    assert ws_manager.events(alice, "file_deleted_success") == [{"message_id": str(sent.id)}]

    with pytest.raises(FileNotAvailableException):
        await coordinator.request_file_download(bob, sent.id)

@pytest.mark.asyncio
async def test_send_error_is_private(coordinator, ws_manager, login):
    alice = await login("alice")
    bob = await login("bob")

    await coordinator.send_error(alice, "join_room", ValidationException(detail="bad"))

    assert ws_manager.sent[-1] == (
        alice,
        {"type": "error", "data": {"event": "join_room", "detail": "bad", "status_code": 422}},
    )
    assert ws_manager.events(bob, "error") == []
