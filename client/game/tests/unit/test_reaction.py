from game.events import ReactionEndEvent, ReactionResultEvent
from game.reaction import ReactionPhase, ReactionRace


class TestReactionRace:
    def test_round_flow(self):
        race = ReactionRace()
        race.prepare()
        assert race.phase == ReactionPhase.PREPARE
        race.go()
        race.mark_reacted()
        race.record_result(ReactionResultEvent(type="reactionResult", room_id="7", winner_id="u2", winner_name="Bob"))
        race.end(ReactionEndEvent(type="reactionEnd", room_id="7"))

        assert race.phase == ReactionPhase.ENDED
        assert race.winner_id == "u2"
        assert race.winner_name == "Bob"
        assert race.rounds_played == 1

    def test_prepare_starts_a_fresh_round(self):
        race = ReactionRace()
        race.go()
        race.mark_reacted()
        race.end(ReactionEndEvent(type="reactionEnd", room_id="7", winner_id="u1"))

        race.prepare()

        assert not race.has_reacted
        assert race.winner_id is None
        assert race.rounds_played == 1
