import pytest

from talking_token.services.session import token as tk
from talking_token.services.session.token import TokenState, next_in_roster, transition


ROSTER = ['alice', 'bob', 'carol']


def holding(**kwargs):
    base = dict(current_holder='alice', time_remaining=90, max_speaking_seconds=90, current_topic_id='t1')
    base.update(kwargs)
    return TokenState(**base)


def test_next_in_roster_wraps():
    assert next_in_roster(ROSTER, 'alice') == 'bob'
    assert next_in_roster(ROSTER, 'carol') == 'alice'
    assert next_in_roster(ROSTER, 'zed') is None
    assert next_in_roster([], 'alice') is None


def test_pass_replaces_holder_and_resets_time():
    state = holding(time_remaining=12, is_running=True)
    after = transition(state, tk.PASS, ROSTER, participant_id='bob')
    assert after.current_holder == 'bob'
    assert after.previous_holder == 'alice'
    assert after.time_remaining == 90
    assert after.is_running is False
    assert after.status == tk.HOLDING


def test_pass_can_start_timer_immediately():
    after = transition(holding(), tk.PASS, ROSTER, start_on_pass=True, participant_id='bob')
    assert after.is_running is True


def test_pass_to_self_or_stranger_is_a_noop():
    state = holding(time_remaining=40, previous_holder='carol')
    assert transition(state, tk.PASS, ROSTER, participant_id='alice') is state
    assert transition(state, tk.PASS, ROSTER, participant_id='zed') is state


def test_pass_without_speaking_needs_holder_and_topic():
    assert transition(TokenState(current_topic_id='t1'), tk.PASS_WITHOUT_SPEAKING, ROSTER).current_holder is None
    no_topic = holding(current_topic_id=None)
    assert transition(no_topic, tk.PASS_WITHOUT_SPEAKING, ROSTER) is no_topic
    assert transition(holding(), tk.PASS_WITHOUT_SPEAKING, ROSTER).current_holder == 'bob'


def test_pass_without_speaking_single_member_roster():
    state = holding()
    assert transition(state, tk.PASS_WITHOUT_SPEAKING, ['alice']) is state


@pytest.mark.parametrize('method', [tk.PASS_FACILITATOR, tk.PASS_MANUAL])
def test_expiry_without_automatic_passing_stops_timer(method):
    state = holding(time_remaining=0, is_running=True)
    after = transition(state, tk.TIME_EXPIRED, ROSTER, pass_method=method)
    assert after.current_holder == 'alice'
    assert after.is_running is False


def test_expiry_with_automatic_passing_moves_on():
    state = holding(current_holder='carol', time_remaining=0, is_running=True)
    after = transition(state, tk.TIME_EXPIRED, ROSTER, pass_method=tk.PASS_AUTOMATIC)
    assert after.current_holder == 'alice'
    assert after.previous_holder == 'carol'
    assert after.time_remaining == 90


def test_expiry_automatic_with_single_member_only_stops():
    state = holding(time_remaining=0, is_running=True)
    after = transition(state, tk.TIME_EXPIRED, ['alice'], pass_method=tk.PASS_AUTOMATIC)
    assert after.current_holder == 'alice'
    assert after.is_running is False


def test_set_topic_clears_previous_holder_only():
    state = holding(previous_holder='bob')
    after = transition(state, tk.SET_TOPIC, ROSTER, topic_id='t2')
    assert after.current_topic_id == 't2'
    assert after.previous_holder is None
    assert after.current_holder == 'alice'
    assert transition(after, tk.SET_TOPIC, ROSTER, topic_id='t2') is after


def test_set_max_while_paused_resets_remaining():
    after = transition(holding(time_remaining=30), tk.SET_MAX, seconds=60)
    assert after.max_speaking_seconds == 60
    assert after.time_remaining == 60


def test_set_max_while_running_keeps_remaining():
    after = transition(holding(time_remaining=30, is_running=True), tk.SET_MAX, seconds=120)
    assert after.max_speaking_seconds == 120
    assert after.time_remaining == 30
    # Never above the new budget
    shrunk = transition(holding(time_remaining=80, is_running=True), tk.SET_MAX, seconds=45)
    assert shrunk.time_remaining == 45


def test_start_pause_reset():
    idle = TokenState()
    assert transition(idle, tk.START) is idle
    spent = holding(time_remaining=0)
    assert transition(spent, tk.START) is spent

    running = transition(holding(), tk.START)
    assert running.is_running
    paused = transition(running, tk.PAUSE)
    assert not paused.is_running
    assert transition(paused, tk.PAUSE) is paused

    reset = transition(holding(time_remaining=5, is_running=True), tk.RESET)
    assert reset.time_remaining == 90
    assert not reset.is_running


def test_elapsed_counts_down_and_floors_at_zero():
    state = holding(time_remaining=4, is_running=True)
    assert transition(state, tk.ELAPSED, seconds=3).time_remaining == 1
    assert transition(state, tk.ELAPSED, seconds=9).time_remaining == 0


def test_release_only_for_current_or_everyone():
    state = holding(previous_holder='bob')
    assert transition(state, tk.RELEASE, participant_id='carol') is state
    cleared = transition(state, tk.RELEASE, participant_id='bob')
    assert cleared.previous_holder is None
    assert cleared.current_holder == 'alice'
    released = transition(state, tk.RELEASE, participant_id='alice')
    assert released.status == tk.IDLE
    assert released.previous_holder is None


def test_unknown_action():
    with pytest.raises(ValueError):
        transition(TokenState(), 'teleport')


def test_from_dict_clamps_remaining():
    state = TokenState.from_dict({'max_speaking_seconds': 60, 'time_remaining': 500, 'current_holder': ''})
    assert state.time_remaining == 60
    assert state.current_holder is None
