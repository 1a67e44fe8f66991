"""Token state and its transition function.

``transition(state, action, ...)`` is pure: it returns a new TokenState (or
the same object when the action is a no-op) and never touches the ledger or
the timer. The engine compares before/after to decide on side effects.
"""

from dataclasses import dataclass, replace
from typing import Optional, Sequence


PASS_AUTOMATIC = 'automatic'
PASS_FACILITATOR = 'facilitator'
PASS_MANUAL = 'manual'
PASS_METHODS = (PASS_AUTOMATIC, PASS_FACILITATOR, PASS_MANUAL)

IDLE = 'idle'
HOLDING = 'holding'

# Actions
PASS = 'pass'
PASS_WITHOUT_SPEAKING = 'pass_without_speaking'
TIME_EXPIRED = 'time_expired'
SET_TOPIC = 'set_topic'
CLEAR_TOPIC = 'clear_topic'
SET_MAX = 'set_max'
START = 'start'
PAUSE = 'pause'
RESET = 'reset'
ELAPSED = 'elapsed'
RELEASE = 'release'


@dataclass(frozen=True)
class TokenState:
    current_holder: Optional[str] = None
    previous_holder: Optional[str] = None
    time_remaining: int = 90
    is_running: bool = False
    max_speaking_seconds: int = 90
    current_topic_id: Optional[str] = None

    @property
    def status(self) -> str:
        return HOLDING if self.current_holder else IDLE

    def to_dict(self):
        return {
            'current_holder': self.current_holder,
            'previous_holder': self.previous_holder,
            'time_remaining': self.time_remaining,
            'is_running': self.is_running,
            'max_speaking_seconds': self.max_speaking_seconds,
            'current_topic_id': self.current_topic_id,
            'status': self.status,
        }

    @classmethod
    def from_dict(cls, data) -> 'TokenState':
        budget = int(data['max_speaking_seconds'])
        if budget <= 0:
            raise ValueError('max_speaking_seconds must be positive')
        remaining = min(max(0, int(data.get('time_remaining', budget))), budget)
        return cls(
            current_holder=data.get('current_holder') or None,
            previous_holder=data.get('previous_holder') or None,
            time_remaining=remaining,
            is_running=bool(data.get('is_running', False)),
            max_speaking_seconds=budget,
            current_topic_id=data.get('current_topic_id') or None,
        )


@dataclass(frozen=True)
class SessionSettings:
    """Facilitator-controlled policy, kept apart from the token state."""

    pass_method: str = PASS_FACILITATOR
    start_on_pass: bool = False

    def to_dict(self):
        return {'pass_method': self.pass_method, 'start_on_pass': self.start_on_pass}

    @classmethod
    def from_dict(cls, data) -> 'SessionSettings':
        method = data.get('pass_method', PASS_FACILITATOR)
        if method not in PASS_METHODS:
            raise ValueError(f"unknown pass method: {method}")
        return cls(pass_method=method, start_on_pass=bool(data.get('start_on_pass', False)))


def next_in_roster(roster: Sequence[str], current: Optional[str]) -> Optional[str]:
    """Return the participant after ``current`` in roster order (wrapping)."""
    if not roster or current not in roster:
        return None
    return roster[(roster.index(current) + 1) % len(roster)]


def transition(
    state: TokenState,
    action: str,
    roster: Sequence[str] = (),
    pass_method: str = PASS_FACILITATOR,
    start_on_pass: bool = False,
    participant_id: Optional[str] = None,
    topic_id: Optional[str] = None,
    seconds: int = 0,
) -> TokenState:
    if action == PASS:
        if participant_id is None or participant_id == state.current_holder or participant_id not in roster:
            return state
        return replace(
            state,
            previous_holder=state.current_holder,
            current_holder=participant_id,
            time_remaining=state.max_speaking_seconds,
            is_running=bool(start_on_pass),
        )

    if action == PASS_WITHOUT_SPEAKING:
        if not state.current_holder or not state.current_topic_id:
            return state
        nxt = next_in_roster(roster, state.current_holder)
        if nxt is None or nxt == state.current_holder:
            return state
        return transition(state, PASS, roster, start_on_pass=start_on_pass, participant_id=nxt)

    if action == TIME_EXPIRED:
        if not state.current_holder:
            return state
        if pass_method == PASS_AUTOMATIC and len(roster) > 1:
            nxt = next_in_roster(roster, state.current_holder)
            return transition(state, PASS, roster, start_on_pass=start_on_pass, participant_id=nxt)
        if not state.is_running:
            return state
        return replace(state, is_running=False)

    if action == SET_TOPIC:
        if topic_id is None or topic_id == state.current_topic_id:
            return state
        return replace(state, current_topic_id=topic_id, previous_holder=None)

    if action == CLEAR_TOPIC:
        if topic_id is None or topic_id != state.current_topic_id:
            return state
        return replace(state, current_topic_id=None)

    if action == SET_MAX:
        budget = int(seconds)
        if budget <= 0 or budget == state.max_speaking_seconds:
            return state
        if state.is_running:
            # Leave the running speaker alone unless the new budget is smaller
            return replace(state, max_speaking_seconds=budget, time_remaining=min(state.time_remaining, budget))
        return replace(state, max_speaking_seconds=budget, time_remaining=budget)

    if action == START:
        if state.is_running or not state.current_holder or state.time_remaining <= 0:
            return state
        return replace(state, is_running=True)

    if action == PAUSE:
        if not state.is_running:
            return state
        return replace(state, is_running=False)

    if action == RESET:
        if not state.is_running and state.time_remaining == state.max_speaking_seconds:
            return state
        return replace(state, is_running=False, time_remaining=state.max_speaking_seconds)

    if action == ELAPSED:
        # A final flush may land after a pause
        if seconds <= 0 or not state.current_holder:
            return state
        return replace(state, time_remaining=max(0, state.time_remaining - int(seconds)))

    if action == RELEASE:
        if participant_id is not None and participant_id != state.current_holder:
            if participant_id == state.previous_holder:
                return replace(state, previous_holder=None)
            return state
        if not state.current_holder and not state.previous_holder and not state.is_running:
            return state
        return replace(
            state,
            current_holder=None,
            previous_holder=None,
            is_running=False,
            time_remaining=state.max_speaking_seconds,
        )

    raise ValueError(f"unknown token action: {action}")
