import pytest

from colloquy.cancellation import CancellationCoordinator
from colloquy.conversation import Conversation
from colloquy.message import TurnRole


@pytest.fixture
def convo():
    return Conversation(chat_id="c1")


def start_chain(convo, coordinator, text="hi"):
    user = convo.append(convo.new_turn(TurnRole.USER, text))
    scope = coordinator.open(user)
    answer = convo.append(convo.new_turn(TurnRole.ASSISTANT, answering=True))
    coordinator.track(scope, answer)
    return user, scope, answer


class TestCancelScope:
    def test_is_live_needs_answering_and_uncancelled(self, convo):
        coordinator = CancellationCoordinator(convo)
        _, scope, answer = start_chain(convo, coordinator)

        assert scope.is_live(answer)
        answer.answering = False
        assert not scope.is_live(answer)
        answer.answering = True
        scope.cancelled = True
        assert not scope.is_live(answer)


class TestCancellationCoordinator:
    def test_cancel_by_user_turn_stops_its_chain(self, convo):
        coordinator = CancellationCoordinator(convo)
        user, scope, answer = start_chain(convo, coordinator)

        stopped = coordinator.cancel(user.id)

        assert scope.cancelled
        assert stopped == [answer]
        assert not answer.answering

    def test_cancel_by_answer_turn(self, convo):
        coordinator = CancellationCoordinator(convo)
        _, scope, answer = start_chain(convo, coordinator)

        coordinator.cancel(answer.id)

        assert scope.cancelled
        assert not answer.answering

    def test_cancel_leaves_other_chains_running(self, convo):
        coordinator = CancellationCoordinator(convo)
        first_user, first_scope, first_answer = start_chain(convo, coordinator, "one")
        _, second_scope, second_answer = start_chain(convo, coordinator, "two")

        coordinator.cancel(first_user.id)

        assert first_scope.cancelled
        assert not second_scope.cancelled
        assert second_answer.answering

    def test_cancel_all(self, convo):
        coordinator = CancellationCoordinator(convo)
        _, first_scope, first_answer = start_chain(convo, coordinator, "one")
        _, second_scope, second_answer = start_chain(convo, coordinator, "two")
        stray = convo.append(convo.new_turn(TurnRole.ASSISTANT, answering=True))

        stopped = coordinator.cancel_all()

        assert first_scope.cancelled and second_scope.cancelled
        assert set(t.id for t in stopped) == {first_answer.id, second_answer.id, stray.id}
        assert convo.active_turns() == []

    def test_close_stops_owned_turns_and_forgets_scope(self, convo):
        coordinator = CancellationCoordinator(convo)
        _, scope, answer = start_chain(convo, coordinator)

        stopped = coordinator.close(scope)

        assert stopped == [answer]
        assert coordinator.scopes == []
        assert coordinator.owned_turns(scope) == []

    def test_superseded_chain_cannot_close_reused_slot(self, convo):
        coordinator = CancellationCoordinator(convo)
        user, old_scope, answer = start_chain(convo, coordinator)

        coordinator.cancel(user.id)
        new_scope = coordinator.open(user)
        answer.answering = True
        coordinator.track(new_scope, answer)

        assert coordinator.close(old_scope) == []
        assert answer.answering
        assert new_scope.is_live(answer)

    def test_ownership_moves_to_the_resending_chain(self, convo):
        coordinator = CancellationCoordinator(convo)
        user, old_scope, answer = start_chain(convo, coordinator)
        assert coordinator.owns(old_scope, answer)

        coordinator.cancel(user.id)
        assert coordinator.owns(old_scope, answer)

        new_scope = coordinator.open(user)
        coordinator.track(new_scope, answer)

        assert coordinator.owner(answer.id) is new_scope
        assert not coordinator.owns(old_scope, answer)
