"""GameEventRouter against a real room session and a recording transport."""

import typing

import pytest

from game.events import BOARD_CELLS, ConfirmedServerEvent
from game.reaction import ReactionPhase
from game.router import GameEventRouter
from game.types import GameActionResult, GameActionType
from lobby.directory import RoomDirectory
from lobby.machine import RoomSessionMachine
from lobby.models import RoomPhase
from shared import channels
from shared.channels import Destination
from transport.bus import EventCategory
from transport.tests.mocks import RecordingTransport
from transport.types import ConnectionState, Role, Session


def _slots(user_ids):
    return [{"userId": u, "username": u.upper()} for u in user_ids]


def _game(transport, room_id="7", **event):
    transport.deliver(channels.room_game(room_id), {"roomId": room_id, **event})


def _make(session=None):
    transport = RecordingTransport(session)
    directory = RoomDirectory(transport.bus)
    machine = RoomSessionMachine(transport, transport.bus, directory)
    router = GameEventRouter(transport, transport.bus, machine)
    machine.set_game_handler(router.handle_message)
    machine.on_room_closed(lambda _: router.reset())
    return transport, machine, router


def _enter(transport, machine, game_type, *, players=("u1", "u2"), spectators=(), host="u1"):
    machine.join_room("7")
    transport.deliver(
        channels.room_detail("7"),
        {
            "roomId": "7",
            "hostId": host,
            "gameType": game_type,
            "maxPlayers": 2,
            "players": _slots(players),
            "spectators": _slots(spectators),
        },
    )


def _play(transport, machine, game_type, **kwargs):
    _enter(transport, machine, game_type, **kwargs)
    _game(transport, type="gameStart", gameType=game_type)


def _game_sends(transport):
    return transport.sent_to(Destination.GAME_EVENT)


@pytest.fixture
def parts():
    return _make()


class TestDispatch:
    def test_every_event_type_has_a_handler(self, parts):
        _, _, router = parts
        union = typing.get_args(typing.get_args(ConfirmedServerEvent)[0])
        assert set(union) == set(router._handlers)

    def test_game_start_moves_room_to_playing(self, parts):
        transport, machine, router = parts
        events = []
        transport.bus.on(EventCategory.GAME_EVENT, events.append)

        _play(transport, machine, "omok")

        assert machine.phase == RoomPhase.PLAYING
        assert router.board.players == ("u1", "u2")
        assert [e.type for e in events] == ["gameStart"]

    def test_game_end_moves_room_to_ended(self, parts):
        transport, machine, router = parts
        _play(transport, machine, "omok")

        _game(transport, type="gameEnd", scores={"u1": 1, "u2": 0}, winnerId="u1")

        assert machine.phase == RoomPhase.ENDED
        assert router.scores == {"u1": 1, "u2": 0}
        assert router.winner_id == "u1"

    def test_event_for_other_room_is_dropped(self, parts):
        transport, machine, router = parts
        _play(transport, machine, "omok")
        events = []
        transport.bus.on(EventCategory.GAME_EVENT, events.append)

        router.handle_message({"type": "omokMove", "roomId": "8", "playerId": "u1", "position": 0})

        assert router.board.stone_count == 0
        assert events == []

    def test_event_of_another_game_is_dropped(self, parts):
        transport, machine, router = parts
        _play(transport, machine, "omok")

        _game(transport, type="spawnTarget", target={"id": "t1", "x": 0, "y": 0})

        assert router.targets.targets == []

    def test_unknown_and_malformed_events_are_dropped(self, parts, caplog):
        transport, machine, router = parts
        _play(transport, machine, "omok")

        _game(transport, type="teleport")
        _game(transport, type="omokMove", playerId="u1", position="center")
        router.handle_message(["not", "a", "dict"])

        assert router.board.stone_count == 0
        assert machine.phase == RoomPhase.PLAYING
        assert "invalid game event dropped" in caplog.text

    def test_leaving_resets_views(self, parts):
        transport, machine, router = parts
        _play(transport, machine, "omok")
        _game(transport, type="omokMove", playerId="u1", position=0)

        machine.leave_room()

        assert router.board.stone_count == 0
        assert router.board.players == ()


class TestOmok:
    def test_move_is_sent_without_touching_the_board(self, parts):
        transport, machine, router = parts
        _play(transport, machine, "omok")

        assert router.place_stone(112) == GameActionResult.SENT

        assert router.board.stone_count == 0
        (body,) = _game_sends(transport)
        assert body["type"] == GameActionType.OMOK_MOVE
        assert body["position"] == 112
        assert body["playerId"] == "u1"

    def test_gameplay_sends_are_not_buffered(self, parts):
        transport, machine, router = parts
        _play(transport, machine, "omok")
        router.place_stone(0)
        assert [bufferable for dest, _, bufferable in transport.published if dest == Destination.GAME_EVENT] == [False]

    def test_echo_places_stone_and_passes_turn(self, parts):
        transport, machine, router = parts
        _play(transport, machine, "omok")
        router.place_stone(112)

        _game(transport, type="omokMove", playerId="u1", position=112)

        assert router.board.stone_at(112) == "u1"
        assert router.place_stone(113) == GameActionResult.NOT_YOUR_TURN

    def test_move_out_of_turn_is_never_sent(self):
        transport, machine, router = _make(Session(user_id="u2", display_name="Bob"))
        _play(transport, machine, "omok")

        assert router.place_stone(0) == GameActionResult.NOT_YOUR_TURN
        assert _game_sends(transport) == []

    def test_occupied_and_out_of_range(self, parts):
        transport, machine, router = parts
        _play(transport, machine, "omok")
        _game(transport, type="omokMove", playerId="u1", position=0)
        _game(transport, type="omokMove", playerId="u2", position=1)

        assert router.place_stone(1) == GameActionResult.OCCUPIED
        assert router.place_stone(BOARD_CELLS) == GameActionResult.OUT_OF_RANGE
        assert router.place_stone(-1) == GameActionResult.OUT_OF_RANGE

    def test_competing_moves_on_same_cell_apply_once(self, parts):
        transport, machine, router = parts
        _play(transport, machine, "omok")
        moves = []
        transport.bus.on(EventCategory.GAME_EVENT, moves.append)

        _game(transport, type="omokMove", playerId="u1", position=112)
        _game(transport, type="omokMove", playerId="u2", position=112)

        assert router.board.stone_at(112) == "u1"
        assert [(m.player_id, m.position) for m in moves] == [("u1", 112)]
        assert router.board.stone_count == 1
        assert router.board.is_turn_of("u2")

    def test_move_refused_outside_playing(self, parts):
        transport, machine, router = parts
        _enter(transport, machine, "omok")
        assert router.place_stone(0) == GameActionResult.NOT_PLAYING

    def test_late_joiner_takes_turn_order_from_room(self):
        transport, machine, router = _make(Session(user_id="u2", display_name="Bob"))
        machine.join_room("7")
        transport.deliver(
            channels.room_detail("7"),
            {"roomId": "7", "hostId": "u1", "gameType": "omok", "isPlaying": True, "players": _slots(["u1", "u2"])},
        )

        _game(transport, type="omokMove", playerId="u1", position=40)

        assert machine.phase == RoomPhase.PLAYING
        assert router.board.stone_at(40) == "u1"
        assert router.place_stone(41) == GameActionResult.SENT

    def test_state_snapshot_replaces_board(self, parts):
        transport, machine, router = parts
        _play(transport, machine, "omok")
        _game(transport, type="omokMove", playerId="u1", position=0)
        cells = [None] * BOARD_CELLS
        cells[5] = "u2"

        _game(transport, type="omokState", cells=cells, players=["u1", "u2"], currentTurn=0)

        assert router.board.stone_at(0) is None
        assert router.board.stone_at(5) == "u2"
        assert router.board.is_turn_of("u1")


class TestObserver:
    def test_observer_cannot_send_gameplay(self):
        transport, machine, router = _make(Session(user_id="u9", display_name="Eve", role=Role.OBSERVER))
        _play(transport, machine, "omok", spectators=("u9",))

        assert router.place_stone(0) == GameActionResult.OBSERVER
        assert router.hit_target("t1") == GameActionResult.OBSERVER
        assert router.react() == GameActionResult.OBSERVER
        assert _game_sends(transport) == []

    def test_observer_still_sees_events(self):
        transport, machine, router = _make(Session(user_id="u9", display_name="Eve", role=Role.OBSERVER))
        _play(transport, machine, "omok", spectators=("u9",))

        _game(transport, type="omokMove", playerId="u1", position=7)

        assert router.board.stone_at(7) == "u1"


class TestAim:
    def test_hit_hides_target_and_reports_it(self, parts):
        transport, machine, router = parts
        _play(transport, machine, "aim")
        _game(transport, type="spawnTarget", target={"id": "t1", "x": 10, "y": 20})

        assert router.hit_target("t1") == GameActionResult.SENT

        assert router.targets.visible_targets == []
        (body,) = _game_sends(transport)
        assert (body["type"], body["targetId"]) == (GameActionType.HIT, "t1")

    def test_sync_brings_back_target_hit_by_someone_else(self, parts):
        transport, machine, router = parts
        _play(transport, machine, "aim")
        _game(transport, type="spawnTarget", target={"id": "t1", "x": 10, "y": 20})
        router.hit_target("t1")

        _game(transport, type="targetSync", targets=[{"id": "t1", "x": 10, "y": 20}])

        assert [t.id for t in router.targets.visible_targets] == ["t1"]

    def test_unknown_target_is_not_sent(self, parts):
        transport, machine, router = parts
        _play(transport, machine, "aim")
        assert router.hit_target("ghost") == GameActionResult.UNKNOWN_TARGET
        assert _game_sends(transport) == []

    def test_scores_come_from_server(self, parts):
        transport, machine, router = parts
        _play(transport, machine, "aim")
        _game(transport, type="spawnTarget", target={"id": "t1", "x": 0, "y": 0})
        router.hit_target("t1")
        assert router.targets.scores == {}

        _game(transport, type="scoreUpdate", playerId="u1", score=3)
        _game(transport, type="hitAck", playerId="u2", score=1)

        assert router.targets.scores == {"u1": 3, "u2": 1}


class TestReaction:
    def test_react_only_during_go_and_once(self, parts):
        transport, machine, router = parts
        _play(transport, machine, "reaction")

        assert router.react() == GameActionResult.WRONG_PHASE
        _game(transport, type="reactionPrepare")
        assert router.react() == GameActionResult.WRONG_PHASE
        _game(transport, type="reactionGo")

        assert router.react() == GameActionResult.SENT
        assert router.react() == GameActionResult.ALREADY_SENT
        assert [b["type"] for b in _game_sends(transport)] == [GameActionType.REACTION_HIT]

    def test_result_and_end(self, parts):
        transport, machine, router = parts
        _play(transport, machine, "reaction")
        _game(transport, type="reactionPrepare")
        _game(transport, type="reactionGo")
        _game(transport, type="reactionResult", playerId="u2", playerName="U2")
        _game(transport, type="reactionEnd")

        assert router.reaction.phase == ReactionPhase.ENDED
        assert router.reaction.winner_id == "u2"

    def test_only_host_starts_a_round(self):
        transport, machine, router = _make(Session(user_id="u2", display_name="Bob"))
        _play(transport, machine, "reaction")
        assert router.start_reaction_round() == GameActionResult.NOT_HOST
        assert router.start_countdown() == GameActionResult.NOT_HOST

    def test_host_starts_round(self, parts):
        transport, machine, router = parts
        _play(transport, machine, "reaction")

        assert router.start_reaction_round(immediate=True) == GameActionResult.SENT
        assert router.start_countdown() == GameActionResult.SENT

        start, countdown = _game_sends(transport)
        assert (start["type"], start["payload"]) == (GameActionType.REACTION_START, "immediate")
        assert countdown["type"] == GameActionType.COUNTDOWN_START

    def test_round_cannot_start_while_running(self, parts):
        transport, machine, router = parts
        _play(transport, machine, "reaction")
        _game(transport, type="reactionPrepare")
        assert router.start_reaction_round() == GameActionResult.WRONG_PHASE


class TestDisconnected:
    def test_send_while_disconnected_is_dropped(self, parts):
        transport, machine, router = parts
        _play(transport, machine, "omok")
        transport.state = ConnectionState.RECONNECTING

        assert router.place_stone(0) == GameActionResult.DROPPED
