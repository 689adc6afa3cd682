"""Tests for RoomSessionMachine transitions and local guards."""

import pytest

from lobby.directory import RoomDirectory
from lobby.machine import RoomSessionMachine
from lobby.models import JoinFailureReason, RoomAction, RoomPayload, RoomPhase, RoomRequestResult
from shared import channels
from shared.channels import Destination
from transport.bus import EventCategory
from transport.tests.mocks import RecordingTransport
from transport.types import ConnectionState, Role, Session


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def transport():
    return RecordingTransport(Session(user_id="u1", display_name="Alice"))


@pytest.fixture
def directory(transport):
    return RoomDirectory(transport.bus)


@pytest.fixture
def clock():
    return _Clock()


@pytest.fixture
def machine(transport, directory, clock):
    return RoomSessionMachine(transport, transport.bus, directory, role_switch_cooldown_seconds=1.0, clock=clock)


def _slots(user_ids):
    return [{"userId": u, "username": u.upper()} for u in user_ids]


def _detail(room_id="7", players=("u1",), spectators=(), host="u1", **extra):
    return {
        "roomId": room_id,
        "hostId": host,
        "maxPlayers": 2,
        "players": _slots(players),
        "spectators": _slots(spectators),
        **extra,
    }


def _enter(machine, transport, room_id="7", **detail):
    machine.join_room(room_id)
    transport.deliver(channels.room_detail(room_id), _detail(room_id, **detail))


class TestJoin:
    def test_join_subscribes_room_topics_before_confirmation(self, machine, transport):
        result = machine.join_room("7")

        assert result == RoomRequestResult.SENT
        assert set(channels.room_topics("7")) <= transport.registry.topics
        assert transport.sent_to(Destination.ROOM_JOIN) == [{"roomId": "7", "userId": "u1", "username": "Alice"}]
        assert machine.phase == RoomPhase.LOBBY
        assert machine.is_joining

    def test_membership_in_players_confirms_join(self, machine, transport):
        _enter(machine, transport)

        assert machine.phase == RoomPhase.WAITING
        assert not machine.is_joining
        assert machine.room.host_id == "u1"
        assert [s.user_id for s in machine.room.players] == ["u1"]

    def test_membership_in_spectators_confirms_join(self, machine, transport):
        _enter(machine, transport, players=("u2",), spectators=("u1",), host="u2")
        assert machine.phase == RoomPhase.WAITING

    def test_detail_without_local_user_keeps_waiting_for_confirmation(self, machine, transport):
        machine.join_room("7")
        transport.deliver(channels.room_detail("7"), _detail(players=("u2",), host="u2"))

        assert machine.phase == RoomPhase.LOBBY
        assert machine.is_joining

    def test_join_failure_rolls_back(self, machine, transport):
        results = []
        transport.bus.on(EventCategory.JOIN_RESULT, results.append)
        machine.join_room("7")

        machine.handle_join_result({"type": "joinResult", "roomId": "7", "payload": "error: room full"})

        assert machine.phase == RoomPhase.LOBBY
        assert machine.active_room_id is None
        assert not set(channels.room_topics("7")) & transport.registry.topics
        assert results[0].success is False
        assert results[0].reason == JoinFailureReason.ROOM_FULL

    def test_join_result_for_other_room_ignored(self, machine, transport):
        results = []
        transport.bus.on(EventCategory.JOIN_RESULT, results.append)
        machine.join_room("7")

        machine.handle_join_result({"success": False, "roomId": "8", "error": "room not found"})

        assert machine.is_joining
        assert results == []

    def test_joining_second_room_leaves_first(self, machine, transport):
        _enter(machine, transport)

        machine.join_room("8")

        assert transport.sent_to(Destination.ROOM_LEAVE) == [{"roomId": "7", "userId": "u1"}]
        assert not set(channels.room_topics("7")) & transport.registry.topics
        assert set(channels.room_topics("8")) <= transport.registry.topics
        assert machine.active_room_id == "8"
        assert machine.room is None

    def test_join_same_room_is_noop(self, machine, transport):
        machine.join_room("7")
        assert machine.join_room("7") == RoomRequestResult.ALREADY_IN_ROOM
        assert len(transport.sent_to(Destination.ROOM_JOIN)) == 1

    def test_late_joiner_into_playing_room_requests_refresh(self, machine, transport):
        machine.join_room("7")
        transport.deliver(channels.room_detail("7"), _detail(players=("u2", "u1"), host="u2", isPlaying=True))

        assert machine.phase == RoomPhase.PLAYING
        assert transport.sent_to(Destination.GAME_STATE) == [{"roomId": "7", "playerId": "u1"}]

    def test_dropped_join_releases_room(self, machine, transport):
        transport.state = ConnectionState.DISCONNECTED

        assert machine.join_room("9") == RoomRequestResult.DROPPED

        assert machine.active_room_id is None
        assert not machine.is_joining
        assert machine.phase == RoomPhase.LOBBY
        assert not set(channels.room_topics("9")) & transport.registry.topics


class TestGameLifecycle:
    def test_start_requires_host(self, machine, transport):
        _enter(machine, transport, players=("u2", "u1"), host="u2")

        assert machine.start_game() == RoomRequestResult.NOT_HOST
        assert transport.sent_to(Destination.ROOM_START) == []

    def test_start_is_not_predicted(self, machine, transport):
        _enter(machine, transport)

        assert machine.start_game() == RoomRequestResult.SENT
        assert machine.phase == RoomPhase.WAITING
        assert transport.sent_to(Destination.ROOM_START) == [{"roomId": "7", "userId": "u1"}]

    def test_start_broadcast_on_game_channel(self, machine, transport):
        _enter(machine, transport)
        machine.handle_game_started("7")
        assert machine.phase == RoomPhase.PLAYING

    def test_start_action_on_room_channel(self, machine, transport):
        _enter(machine, transport)
        transport.deliver(channels.room_detail("7"), _detail(action="start"))
        assert machine.phase == RoomPhase.PLAYING

    def test_game_end_from_playing(self, machine, transport):
        _enter(machine, transport, players=("u2", "u1"), host="u2")
        machine.handle_game_started("7")

        machine.handle_game_ended("7")

        assert machine.phase == RoomPhase.ENDED
        assert machine.room.phase == RoomPhase.ENDED

    def test_return_to_waiting_after_end(self, machine, transport):
        _enter(machine, transport)
        machine.handle_game_started("7")
        machine.handle_game_ended("7")

        assert machine.return_to_waiting() == RoomRequestResult.SENT
        assert machine.phase == RoomPhase.WAITING

    def test_return_to_waiting_only_from_ended(self, machine, transport):
        _enter(machine, transport)
        assert machine.return_to_waiting() == RoomRequestResult.WRONG_PHASE

    def test_events_for_other_room_ignored(self, machine, transport):
        _enter(machine, transport)
        machine.handle_game_started("8")
        assert machine.phase == RoomPhase.WAITING

    def test_start_from_lobby_refused(self, machine):
        assert machine.start_game() == RoomRequestResult.NOT_IN_ROOM

    def test_late_playing_summary_keeps_waiting(self, machine, transport, directory):
        _enter(machine, transport)
        directory.apply_diff(RoomAction.CREATE, RoomPayload(room_id="7"))
        machine.handle_game_started("7")
        machine.handle_game_ended("7")
        machine.return_to_waiting()

        directory.apply_diff(RoomAction.UPDATE, RoomPayload(room_id="7", is_playing=True))

        assert machine.phase == RoomPhase.WAITING
        assert machine.room.phase == RoomPhase.WAITING


class TestSwitchRole:
    def test_spectator_blocked_when_room_full(self, machine, transport):
        _enter(machine, transport, players=("u2", "u3"), spectators=("u1",), host="u2")

        assert machine.switch_role() == RoomRequestResult.ROOM_FULL
        assert transport.sent_to(Destination.ROOM_SWITCH_ROLE) == []

    def test_directory_count_counts_toward_capacity(self, machine, transport, directory):
        _enter(machine, transport, players=("u2",), spectators=("u1",), host="u2")
        directory.apply_diff(RoomAction.JOIN, RoomPayload(room_id="7", max_players=2, current_player_count=2))

        assert machine.switch_role() == RoomRequestResult.ROOM_FULL

    def test_spectator_switches_when_seat_free(self, machine, transport):
        _enter(machine, transport, players=("u2",), spectators=("u1",), host="u2")

        assert machine.switch_role() == RoomRequestResult.SENT
        assert transport.sent_to(Destination.ROOM_SWITCH_ROLE) == [{"roomId": "7", "userId": "u1"}]
        # membership changes only with the next room detail
        assert machine.room.is_spectator("u1")

    def test_player_may_move_to_spectators_when_full(self, machine, transport):
        _enter(machine, transport, players=("u2", "u1"), host="u2")
        assert machine.switch_role() == RoomRequestResult.SENT

    def test_cooldown(self, machine, transport, clock):
        _enter(machine, transport, players=("u2", "u1"), host="u2")

        assert machine.switch_role() == RoomRequestResult.SENT
        clock.now += 0.5
        assert machine.switch_role() == RoomRequestResult.COOLDOWN
        clock.now += 0.5
        assert machine.switch_role() == RoomRequestResult.SENT
        assert len(transport.sent_to(Destination.ROOM_SWITCH_ROLE)) == 2

    def test_only_while_waiting(self, machine, transport):
        _enter(machine, transport)
        machine.handle_game_started("7")
        assert machine.switch_role() == RoomRequestResult.WRONG_PHASE

    def test_observer_connection_cannot_switch(self, clock):
        transport = RecordingTransport(Session(user_id="u1", display_name="Alice", role=Role.OBSERVER))
        machine = RoomSessionMachine(transport, transport.bus, RoomDirectory(transport.bus), clock=clock)
        _enter(machine, transport, players=("u2",), spectators=("u1",), host="u2")

        assert machine.switch_role() == RoomRequestResult.OBSERVER


class TestLeave:
    def test_leave_from_playing(self, machine, transport):
        closed = []
        machine.on_room_closed(closed.append)
        _enter(machine, transport)
        machine.handle_game_started("7")

        machine.leave_room()

        assert machine.phase == RoomPhase.LOBBY
        assert machine.active_room_id is None
        assert transport.registry.topics == frozenset()
        assert transport.sent_to(Destination.ROOM_LEAVE) == [{"roomId": "7", "userId": "u1"}]
        assert closed == ["7"]

    def test_leave_without_room_is_noop(self, machine, transport):
        machine.leave_room()
        assert transport.published == []

    def test_leave_while_disconnected_still_resets(self, machine, transport):
        _enter(machine, transport)
        transport.state = ConnectionState.DISCONNECTED

        machine.leave_room()

        assert machine.phase == RoomPhase.LOBBY

    def test_room_deleted_from_directory(self, machine, transport, directory):
        _enter(machine, transport)
        directory.apply_diff(RoomAction.CREATE, RoomPayload(room_id="7"))

        directory.handle_diff_message({"action": "delete", "room": {"roomId": "7"}})

        assert machine.phase == RoomPhase.LOBBY
        assert transport.sent_to(Destination.ROOM_LEAVE) == []

    def test_removed_from_member_lists(self, machine, transport):
        _enter(machine, transport, players=("u2", "u1"), host="u2")

        transport.deliver(channels.room_detail("7"), _detail(players=("u2",), host="u2", action="leave"))

        assert machine.phase == RoomPhase.LOBBY

    def test_closed_listener_failure_is_contained(self, machine, transport):
        def broken(_room_id):
            raise RuntimeError("ui gone")

        machine.on_room_closed(broken)
        _enter(machine, transport)

        machine.leave_room()

        assert machine.phase == RoomPhase.LOBBY


class TestReconnect:
    async def test_replay_requests_state_for_active_room(self, machine, transport):
        _enter(machine, transport)

        replayed = await transport.replay()

        assert sorted(replayed) == sorted(channels.room_topics("7"))
        assert transport.sent_to(Destination.GAME_STATE) == [{"roomId": "7", "playerId": "u1"}]

    async def test_replay_resends_unconfirmed_join(self, machine, transport):
        machine.join_room("7")

        await transport.replay()

        assert len(transport.sent_to(Destination.ROOM_JOIN)) == 2
        assert transport.sent_to(Destination.GAME_STATE) == []

    async def test_replay_in_lobby_sends_nothing(self, machine, transport):
        await transport.replay()
        assert transport.published == []


class TestCreateAndMisc:
    def test_created_room_is_entered_on_broadcast(self, machine, transport, directory):
        assert machine.create_room("My room", "omok", 2) == RoomRequestResult.SENT

        directory.handle_diff_message(
            {"action": "create", "room": {"roomId": "12", "hostId": "u1", "maxPlayers": 2, "gameType": "omok"}}
        )

        assert machine.active_room_id == "12"
        assert machine.phase == RoomPhase.WAITING
        assert set(channels.room_topics("12")) <= transport.registry.topics
        assert transport.sent_to(Destination.ROOM_CREATE)[0]["hostId"] == "u1"

    def test_other_users_room_is_not_entered(self, machine, directory):
        machine.create_room("Mine", "omok", 2)
        directory.handle_diff_message({"action": "create", "room": {"roomId": "13", "hostId": "u9"}})
        assert machine.active_room_id is None

    def test_invalid_create_request(self, machine, transport):
        assert machine.create_room("", "omok", 2) == RoomRequestResult.INVALID
        assert transport.published == []

    def test_toggle_ready_refused_for_host(self, machine, transport):
        _enter(machine, transport)
        assert machine.toggle_ready() == RoomRequestResult.IS_HOST

    def test_toggle_ready_for_guest(self, machine, transport):
        _enter(machine, transport, players=("u2", "u1"), host="u2")
        assert machine.toggle_ready() == RoomRequestResult.SENT
        assert transport.sent_to(Destination.ROOM_READY) == [{"roomId": "7", "userId": "u1"}]

    def test_update_settings_host_only(self, machine, transport):
        _enter(machine, transport)
        assert machine.update_room_settings(max_players=4) == RoomRequestResult.SENT
        assert transport.sent_to(Destination.ROOM_UPDATE) == [{"roomId": "7", "userId": "u1", "maxPlayers": 4}]

    def test_room_chat_emitted_once(self, machine, transport):
        received = []
        transport.bus.on(EventCategory.CHAT, received.append)
        _enter(machine, transport)
        message = {"roomId": "7", "userId": "u2", "username": "Bob", "message": "hi", "timestamp": 1700000000000}

        transport.deliver(channels.room_chat("7"), message)
        transport.deliver(channels.room_chat("7"), message)

        assert len(received) == 1
        assert received[0].text == "hi"
        assert received[0].room_id == "7"

    def test_send_chat(self, machine, transport):
        _enter(machine, transport)

        assert machine.send_chat("  hello ") == RoomRequestResult.SENT
        assert machine.send_chat("   ") == RoomRequestResult.INVALID
        assert transport.sent_to(Destination.ROOM_CHAT) == [
            {"roomId": "7", "userId": "u1", "username": "Alice", "message": "hello"}
        ]

    def test_invite(self, machine, transport):
        _enter(machine, transport)
        assert machine.send_invite("u5") == RoomRequestResult.SENT
        assert transport.sent_to(Destination.INVITE)[0]["targetUserId"] == "u5"

    def test_game_messages_forwarded_to_handler(self, machine, transport):
        received = []
        machine.set_game_handler(received.append)
        _enter(machine, transport)

        transport.deliver(channels.room_game("7"), {"type": "gameStart", "roomId": "7"})

        assert received == [{"type": "gameStart", "roomId": "7"}]
