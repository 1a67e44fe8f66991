"""Session state engine.

A SessionEngine owns one session: the roster, the topics, the token state,
the participation ledger and the speaking timer. Every mutation goes through
one of its public methods under a single lock, and every timer update goes
through ``_on_elapsed`` under the same lock, so the ledger and the token
state always move together.

Misuse (passing to oneself, unknown ids, skipping without a holder) is a
silent no-op: methods return False or None instead of raising.
"""

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Tuple

from . import records
from . import token as tk
from .ledger import Ledger, LedgerEntry
from .roster import Participant, Topic, clean_text, generate_id
from .stats import SessionStats, aggregate, percentage
from .timer import TimerService
from .token import SessionSettings, TokenState


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable view of a session handed to consumers."""

    token: TokenState
    settings: SessionSettings
    participants: Tuple[Participant, ...]
    topics: Tuple[Topic, ...]
    ledger: Tuple[LedgerEntry, ...]
    started_at: Optional[float]
    last_stats: Optional[SessionStats]
    epoch: int

    def participant(self, participant_id) -> Optional[Participant]:
        return next((p for p in self.participants if p.id == participant_id), None)

    def entry(self, participant_id, topic_id) -> Optional[LedgerEntry]:
        return next(
            (e for e in self.ledger if e.participant_id == participant_id and e.topic_id == topic_id),
            None,
        )

    def participation(self):
        """Per-topic count of participants who spoke, as in the tracker view."""
        total = len(self.participants)
        overview = []
        for topic in self.topics:
            spoken = sum(1 for e in self.ledger if e.topic_id == topic.id and e.has_spoken)
            overview.append({
                'topic_id': topic.id,
                'title': topic.title,
                'participants_spoken': spoken,
                'participation_rate': percentage(spoken, total),
            })
        return overview

    def to_dict(self):
        holder = self.participant(self.token.current_holder)
        previous = self.participant(self.token.previous_holder)
        return {
            'token': self.token.to_dict(),
            'current_holder_name': holder.name if holder else None,
            'previous_holder_name': previous.name if previous else None,
            'settings': self.settings.to_dict(),
            'participants': [p.to_dict() for p in self.participants],
            'topics': [t.to_dict(self.token.current_topic_id) for t in self.topics],
            'ledger': [e.to_dict() for e in self.ledger],
            'participation': self.participation(),
            'started_at': self.started_at,
            'last_stats': self.last_stats.to_dict() if self.last_stats else None,
        }


@dataclass(frozen=True)
class _ClosedTurn:
    """Owner of the epoch that was just closed, waiting for its last flush."""

    epoch: int
    holder: Optional[str]
    topic_id: Optional[str]
    remaining: int
    # Same speaker keeps going, so late seconds still count down
    countdown: bool = False


class SessionEngine:

    def __init__(
        self,
        max_speaking_seconds: int = 90,
        settings: Optional[SessionSettings] = None,
        min_speaking_seconds: int = 10,
        max_speaking_limit: int = 180,
        timer_factory: Callable[..., TimerService] = TimerService,
        clock: Callable[[], float] = time.time,
    ):
        self._lock = threading.RLock()
        self._clock = clock
        self.min_speaking_seconds = int(min_speaking_seconds)
        self.max_speaking_limit = max(self.min_speaking_seconds, int(max_speaking_limit))
        budget = self._clamp_budget(max_speaking_seconds)

        self._participants: List[Participant] = []
        self._topics: List[Topic] = []
        self._ledger = Ledger()
        self._token = TokenState(time_remaining=budget, max_speaking_seconds=budget)
        self._settings = settings or SessionSettings()
        self._started_at: Optional[float] = None
        self._last_stats: Optional[SessionStats] = None
        self._epoch = 0
        self._closing: Optional[_ClosedTurn] = None
        # Seconds credited to the holder's current turn
        self._turn_credit = 0
        self._listeners: List[Callable[[SessionSnapshot, str], None]] = []

        self._timer_factory = timer_factory
        self.timer = self._new_timer()

    @classmethod
    def from_records(cls, stored, started_at=None, **kwargs) -> 'SessionEngine':
        """Build an engine from persisted records.

        ``stored`` maps record names to raw values. The result is normalized:
        the ledger is completed to the full cross-product, dangling ids are
        cleared and the timer starts out paused.
        """
        engine = cls(**kwargs)
        participants = records.load_participants(stored.get(records.PARTICIPANTS))
        topics = records.load_topics(stored.get(records.TOPICS))
        state = records.load_token_state(stored.get(records.TOKEN_STATE), engine._token.max_speaking_seconds)
        entries = records.load_ledger(stored.get(records.LEDGER))

        participant_ids = [p.id for p in participants]
        topic_ids = [t.id for t in topics]
        budget = engine._clamp_budget(state.max_speaking_seconds)
        engine._participants = participants
        engine._topics = topics
        engine._ledger = Ledger.restore(participant_ids, topic_ids, entries)
        engine._token = replace(
            state,
            current_holder=state.current_holder if state.current_holder in participant_ids else None,
            previous_holder=state.previous_holder if state.previous_holder in participant_ids else None,
            current_topic_id=state.current_topic_id if state.current_topic_id in topic_ids else None,
            max_speaking_seconds=budget,
            time_remaining=min(state.time_remaining, budget),
            is_running=False,
        )
        engine._settings = records.load_settings(stored.get(records.SETTINGS), engine._settings)
        engine._last_stats = records.load_stats(stored.get(records.LAST_STATS))
        engine._started_at = started_at
        return engine

    def to_records(self):
        with self._lock:
            return {
                records.PARTICIPANTS: [p.to_dict() for p in self._participants],
                records.TOPICS: [t.to_dict(self._token.current_topic_id) for t in self._topics],
                records.TOKEN_STATE: self._token.to_dict(),
                records.LEDGER: [e.to_dict() for e in self._ledger],
                records.SETTINGS: self._settings.to_dict(),
                records.LAST_STATS: self._last_stats.to_dict() if self._last_stats else None,
            }

    # ---- queries ----

    @property
    def token(self) -> TokenState:
        return self._token

    @property
    def settings(self) -> SessionSettings:
        return self._settings

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def started_at(self) -> Optional[float]:
        return self._started_at

    @property
    def last_stats(self) -> Optional[SessionStats]:
        return self._last_stats

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(
                token=self._token,
                settings=self._settings,
                participants=tuple(self._participants),
                topics=tuple(self._topics),
                ledger=self._ledger.entries(),
                started_at=self._started_at,
                last_stats=self._last_stats,
                epoch=self._epoch,
            )

    def subscribe(self, listener: Callable[[SessionSnapshot, str], None]) -> None:
        self._listeners.append(listener)

    # ---- roster and topics ----

    def add_participant(self, name, participant_id=None) -> Optional[Participant]:
        name = clean_text(name)
        if not name:
            return None
        with self._lock:
            participant = Participant(id=participant_id or self._unused_id(), name=name)
            if self._find_participant(participant.id) is not None:
                return None
            self._participants.append(participant)
            self._ledger.add_participant(participant.id)
            logger.info(f"[roster-add] participant={participant.id}")
            self._notify('participant_added')
            return participant

    def remove_participant(self, participant_id) -> bool:
        with self._lock:
            participant = self._find_participant(participant_id)
            if participant is None:
                return False
            self._participants.remove(participant)
            self._ledger.drop_participant(participant_id)
            self._apply_holder_change(tk.transition(self._token, tk.RELEASE, participant_id=participant_id))
            logger.info(f"[roster-remove] participant={participant_id}")
            self._notify('participant_removed')
            return True

    def reset_participants(self) -> None:
        with self._lock:
            self._participants = []
            self._ledger = Ledger([], [t.id for t in self._topics])
            self._apply_holder_change(tk.transition(self._token, tk.RELEASE))
            logger.info("[roster-reset]")
            self._notify('participants_reset')

    def add_topic(self, title, description=None, topic_id=None) -> Optional[Topic]:
        title = clean_text(title)
        if not title:
            return None
        with self._lock:
            topic = Topic(id=topic_id or self._unused_id(), title=title, description=clean_text(description) or None)
            if self._find_topic(topic.id) is not None:
                return None
            self._topics.append(topic)
            self._ledger.add_topic(topic.id)
            logger.info(f"[topic-add] topic={topic.id}")
            if self._token.current_topic_id is None:
                self._switch_topic(topic.id)
            self._notify('topic_added')
            return topic

    def edit_topic(self, topic_id, title=None, description=None) -> Optional[Topic]:
        with self._lock:
            topic = self._find_topic(topic_id)
            if topic is None:
                return None
            new_title = clean_text(title) if title is not None else topic.title
            if not new_title:
                return None
            new_description = topic.description
            if description is not None:
                new_description = clean_text(description) or None
            edited = replace(topic, title=new_title, description=new_description)
            self._topics[self._topics.index(topic)] = edited
            self._notify('topic_edited')
            return edited

    def remove_topic(self, topic_id) -> bool:
        with self._lock:
            topic = self._find_topic(topic_id)
            if topic is None:
                return False
            self._topics.remove(topic)
            self._ledger.drop_topic(topic_id)
            self._token = tk.transition(self._token, tk.CLEAR_TOPIC, topic_id=topic_id)
            logger.info(f"[topic-remove] topic={topic_id}")
            self._notify('topic_removed')
            return True

    def set_active_topic(self, topic_id) -> bool:
        with self._lock:
            if self._find_topic(topic_id) is None:
                return False
            if not self._switch_topic(topic_id):
                return False
            self._notify('topic_activated')
            return True

    def reset_all(self) -> None:
        with self._lock:
            self._participants = []
            self._topics = []
            self._ledger = Ledger()
            self._apply_holder_change(tk.transition(self._token, tk.RELEASE))
            self._token = replace(
                self._token,
                current_topic_id=None,
                is_running=False,
                time_remaining=self._token.max_speaking_seconds,
            )
            self._started_at = None
            logger.info("[session-reset]")
            self._notify('session_reset')

    # ---- token ----

    def pass_token_to(self, participant_id) -> bool:
        with self._lock:
            before = self._token
            after = self._transition(tk.PASS, participant_id=participant_id)
            if after is before:
                return False
            self._hand_over(before, after, passed=False)
            self._notify('token_passed')
            return True

    def pass_without_speaking(self) -> bool:
        with self._lock:
            before = self._token
            after = self._transition(tk.PASS_WITHOUT_SPEAKING)
            if after is before:
                return False
            self._hand_over(before, after, passed=True)
            self._notify('token_skipped')
            return True

    def on_time_expired(self) -> bool:
        with self._lock:
            before = self._token
            after = self._transition(tk.TIME_EXPIRED)
            if after is before:
                return False
            if after.current_holder != before.current_holder:
                self._hand_over(before, after, passed=False)
                self._notify('time_expired')
                return True
            self._token = after
            self.timer.stop()
            logger.info(f"[token-expired] holder={after.current_holder} waiting for facilitator")
            self._notify('time_expired')
            return True

    def set_max_speaking_seconds(self, value) -> bool:
        try:
            budget = self._clamp_budget(value)
        except (TypeError, ValueError, OverflowError):
            return False
        with self._lock:
            before = self._token
            self._token = tk.transition(before, tk.SET_MAX, seconds=budget)
            if self._token is before:
                return False
            self._notify('settings_changed')
            return True

    def set_pass_method(self, method) -> bool:
        if method not in tk.PASS_METHODS:
            return False
        with self._lock:
            if method == self._settings.pass_method:
                return False
            self._settings = replace(self._settings, pass_method=method)
            self._notify('settings_changed')
            return True

    def set_start_on_pass(self, enabled) -> bool:
        with self._lock:
            enabled = bool(enabled)
            if enabled == self._settings.start_on_pass:
                return False
            self._settings = replace(self._settings, start_on_pass=enabled)
            self._notify('settings_changed')
            return True

    def start(self) -> bool:
        with self._lock:
            before = self._token
            after = self._transition(tk.START)
            if after is before:
                return False
            self._token = after
            self._mark_started()
            if not self.timer.available:
                logger.warning("[timer-restart] previous timer unavailable")
                self.timer = self._new_timer()
            self.timer.start(self._epoch)
            self._notify('timer_started')
            return True

    def pause(self) -> bool:
        with self._lock:
            before = self._token
            after = self._transition(tk.PAUSE)
            if after is before:
                return False
            self._token = after
            self.timer.stop()
            self._notify('timer_paused')
            return True

    def reset(self) -> bool:
        with self._lock:
            before = self._token
            after = self._transition(tk.RESET)
            if after is before:
                return False
            self._close_epoch(before)
            self._token = after
            self._notify('timer_reset')
            return True

    # ---- session ----

    def end_session(self, end_time=None) -> SessionStats:
        with self._lock:
            if self._token.is_running:
                self._token = tk.transition(self._token, tk.PAUSE)
                self.timer.stop()
            now = self._clock() if end_time is None else end_time
            start = self._started_at if self._started_at is not None else now
            stats = aggregate(start, self._participants, self._topics, self._ledger, end_time=now)
            self._last_stats = stats
            self._started_at = None
            logger.info(f"[session-end] duration={stats.total_duration}s topics={len(stats.topic_stats)}")
            self._notify('session_ended')
            return stats

    def shutdown(self) -> None:
        self.timer.shutdown()

    # ---- timer callbacks ----

    def _on_elapsed(self, seconds, epoch) -> None:
        with self._lock:
            if epoch != self._epoch:
                self._on_closed_elapsed(seconds, epoch)
                return
            before = self._token
            after = tk.transition(before, tk.ELAPSED, seconds=seconds)
            credited = min(int(seconds), before.time_remaining)
            self._token = after
            self._credit(before.current_holder, before.current_topic_id, credited)
            if after is not before:
                self._notify('time_elapsed')
            if after.time_remaining == 0 and after.is_running:
                self.on_time_expired()

    def _on_closed_elapsed(self, seconds, epoch) -> None:
        """Credit the last flush of a closed epoch to the turn that owned it."""
        closing = self._closing
        if closing is None or epoch != closing.epoch:
            logger.debug(f"[timer-stale] epoch={epoch} current={self._epoch} dropped={seconds}s")
            return
        credited = min(int(seconds), closing.remaining)
        if credited <= 0:
            return
        self._closing = replace(closing, remaining=closing.remaining - credited)
        self._credit(closing.holder, closing.topic_id, credited)
        if closing.countdown and self._token.current_holder == closing.holder:
            self._token = tk.transition(self._token, tk.ELAPSED, seconds=credited)
        logger.debug(f"[timer-late-flush] epoch={epoch} holder={closing.holder} credited={credited}s")
        self._notify('time_elapsed')

    def _on_timer_failure(self) -> None:
        with self._lock:
            logger.warning("[timer-unavailable] treating timer as paused")
            before = self._token
            self._token = tk.transition(before, tk.PAUSE)
            if self._token is not before:
                self._notify('timer_paused')

    # ---- internals ----

    def _new_timer(self) -> TimerService:
        return self._timer_factory(self._on_elapsed, on_failure=self._on_timer_failure)

    def _transition(self, action, **kwargs) -> TokenState:
        return tk.transition(
            self._token,
            action,
            roster=[p.id for p in self._participants],
            pass_method=self._settings.pass_method,
            start_on_pass=self._settings.start_on_pass,
            **kwargs,
        )

    def _hand_over(self, before: TokenState, after: TokenState, passed: bool) -> None:
        outgoing, topic_id = before.current_holder, before.current_topic_id
        # Unreported seconds go to the outgoing holder before the epoch moves on
        self._close_epoch(before)
        if outgoing and topic_id:
            if passed:
                self._drop_unspoken_turn(outgoing, topic_id)
                self._ledger.record_pass(outgoing, topic_id)
            else:
                self._ledger.record_turn(outgoing, topic_id, 0, new_turn=False)
                self._update_participant(outgoing, lambda p: replace(p, has_spoken=True))
        self._token = after
        self._open_turn()
        self._mark_started()
        if after.is_running:
            self.timer.start(self._epoch)
        logger.info(
            f"[token-pass] from={outgoing} to={after.current_holder} topic={topic_id} "
            f"skipped={passed} epoch={self._epoch}"
        )

    def _apply_holder_change(self, after: TokenState) -> None:
        before = self._token
        if after.current_holder != before.current_holder:
            self._close_epoch(before)
        self._token = after

    def _switch_topic(self, topic_id) -> bool:
        if topic_id is None or topic_id == self._token.current_topic_id:
            return False
        before = self._token
        # Seconds spoken so far belong to the topic being left
        self._close_epoch(before, countdown=True)
        self._drop_unspoken_turn(before.current_holder, before.current_topic_id)
        self._token = tk.transition(self._token, tk.SET_TOPIC, topic_id=topic_id)
        self._participants = [replace(p, has_spoken=False) for p in self._participants]
        self._open_turn()
        logger.info(f"[topic-active] topic={topic_id}")
        if self._token.is_running:
            if self._token.time_remaining > 0:
                self.timer.start(self._epoch)
            else:
                self.on_time_expired()
        return True

    def _close_epoch(self, before: TokenState, countdown: bool = False) -> None:
        """Start a new epoch, flushing the closing one into its own turn.

        The inline timer flushes synchronously inside ``stop()``. A worker
        delivers the flush later, tagged with the closed epoch, and
        ``_on_closed_elapsed`` routes it to the same (holder, topic).
        """
        self._closing = _ClosedTurn(
            epoch=self._epoch,
            holder=before.current_holder,
            topic_id=before.current_topic_id,
            remaining=before.time_remaining,
            countdown=countdown,
        )
        self._epoch += 1
        self.timer.stop()
        if not countdown:
            self.timer.reset()

    def _credit(self, holder, topic_id, seconds) -> None:
        if not seconds or not holder or not topic_id or (holder, topic_id) not in self._ledger:
            return
        turns_before = self._ledger.get(holder, topic_id).turn_count
        entry = self._ledger.accrue_speaking_time(holder, topic_id, seconds)
        turns = entry.turn_count - turns_before
        self._update_participant(holder, lambda p: p.credited(seconds=seconds, turns=turns))
        if holder == self._token.current_holder and topic_id == self._token.current_topic_id:
            self._turn_credit += seconds

    def _drop_unspoken_turn(self, holder, topic_id) -> None:
        if self._turn_credit or not holder or not topic_id or (holder, topic_id) not in self._ledger:
            return
        turns_before = self._ledger.get(holder, topic_id).turn_count
        if self._ledger.cancel_turn(holder, topic_id).turn_count < turns_before:
            self._update_participant(holder, lambda p: replace(p, turn_count=max(0, p.turn_count - 1)))

    def _open_turn(self) -> None:
        self._turn_credit = 0
        holder, topic_id = self._token.current_holder, self._token.current_topic_id
        if holder and topic_id:
            self._ledger.begin_turn(holder, topic_id)
            self._update_participant(holder, lambda p: p.credited(turns=1))

    def _mark_started(self) -> None:
        if self._started_at is None:
            self._started_at = self._clock()

    def _update_participant(self, participant_id, change) -> None:
        for i, participant in enumerate(self._participants):
            if participant.id == participant_id:
                self._participants[i] = change(participant)
                return

    def _find_participant(self, participant_id) -> Optional[Participant]:
        return next((p for p in self._participants if p.id == participant_id), None)

    def _find_topic(self, topic_id) -> Optional[Topic]:
        return next((t for t in self._topics if t.id == topic_id), None)

    def _unused_id(self) -> str:
        taken = {p.id for p in self._participants} | {t.id for t in self._topics}
        while True:
            new_id = generate_id()
            if new_id not in taken:
                return new_id

    def _clamp_budget(self, value) -> int:
        return min(max(int(value), self.min_speaking_seconds), self.max_speaking_limit)

    def _notify(self, reason: str) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap, reason)
            except Exception:
                logger.exception(f"[listener-failed] reason={reason}")
