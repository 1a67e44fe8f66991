"""Participation ledger.

One entry per (participant, topic) pair, kept as the full cross-product of
the current roster and topic list. Entries are immutable; every update swaps
in a new entry and re-checks the ledger invariants.
"""

from dataclasses import dataclass, replace
from typing import Dict, Iterable, Iterator, List, Tuple


Key = Tuple[str, str]


class LedgerInvariantError(AssertionError):
    pass


@dataclass(frozen=True)
class LedgerEntry:
    participant_id: str
    topic_id: str
    has_spoken: bool = False
    has_passed: bool = False
    speaking_time: int = 0
    turn_count: int = 0
    pass_count: int = 0

    @property
    def key(self) -> Key:
        return (self.participant_id, self.topic_id)

    def to_dict(self):
        return {
            'participant_id': self.participant_id,
            'topic_id': self.topic_id,
            'has_spoken': self.has_spoken,
            'has_passed': self.has_passed,
            'speaking_time': self.speaking_time,
            'turn_count': self.turn_count,
            'pass_count': self.pass_count,
        }

    @classmethod
    def from_dict(cls, data) -> 'LedgerEntry':
        entry = cls(
            participant_id=str(data['participant_id']),
            topic_id=str(data['topic_id']),
            has_spoken=bool(data.get('has_spoken', False)),
            has_passed=bool(data.get('has_passed', False)),
            speaking_time=int(data.get('speaking_time', 0)),
            turn_count=int(data.get('turn_count', 0)),
            pass_count=int(data.get('pass_count', 0)),
        )
        _check_entry(entry)
        return entry


def _check_entry(entry: LedgerEntry) -> None:
    if entry.turn_count < 0 or entry.pass_count < 0 or entry.speaking_time < 0:
        raise LedgerInvariantError(f"negative counter in {entry.key}")
    if entry.turn_count == 0 and entry.pass_count == 0 and entry.speaking_time != 0:
        raise LedgerInvariantError(f"speaking time without a turn in {entry.key}")


class Ledger:
    """Mapping of (participant_id, topic_id) to LedgerEntry."""

    def __init__(self, participant_ids: Iterable[str] = (), topic_ids: Iterable[str] = ()):
        self._participants: List[str] = []
        self._topics: List[str] = []
        self._entries: Dict[Key, LedgerEntry] = {}
        for pid in participant_ids:
            self.add_participant(pid)
        for tid in topic_ids:
            self.add_topic(tid)

    @classmethod
    def restore(cls, participant_ids, topic_ids, entries: Iterable[LedgerEntry]) -> 'Ledger':
        """Rebuild a ledger from stored entries.

        Entries for unknown ids are dropped and missing pairs are zero-filled.
        """
        ledger = cls(participant_ids, topic_ids)
        for entry in entries:
            if entry.key in ledger._entries:
                ledger._entries[entry.key] = entry
        ledger.check_invariants()
        return ledger

    def __len__(self):
        return len(self._entries)

    def __iter__(self) -> Iterator[LedgerEntry]:
        return iter(self._entries.values())

    def __contains__(self, key):
        return key in self._entries

    def get(self, participant_id, topic_id) -> LedgerEntry:
        entry = self._entries.get((participant_id, topic_id))
        return entry if entry is not None else LedgerEntry(participant_id, topic_id)

    def keys(self):
        return set(self._entries)

    def entries(self) -> Tuple[LedgerEntry, ...]:
        return tuple(self._entries.values())

    # ---- roster/topic maintenance ----

    def add_participant(self, participant_id) -> None:
        if participant_id in self._participants:
            return
        self._participants.append(participant_id)
        for tid in self._topics:
            self._entries[(participant_id, tid)] = LedgerEntry(participant_id, tid)

    def add_topic(self, topic_id) -> None:
        if topic_id in self._topics:
            return
        self._topics.append(topic_id)
        for pid in self._participants:
            self._entries[(pid, topic_id)] = LedgerEntry(pid, topic_id)

    def drop_participant(self, participant_id) -> None:
        if participant_id in self._participants:
            self._participants.remove(participant_id)
        self._entries = {k: e for k, e in self._entries.items() if k[0] != participant_id}

    def drop_topic(self, topic_id) -> None:
        if topic_id in self._topics:
            self._topics.remove(topic_id)
        self._entries = {k: e for k, e in self._entries.items() if k[1] != topic_id}

    # ---- accounting ----

    def begin_turn(self, participant_id, topic_id) -> LedgerEntry:
        """Count a turn when the token is received on a topic."""
        entry = self.get(participant_id, topic_id)
        return self._put(replace(entry, turn_count=entry.turn_count + 1))

    def record_turn(self, participant_id, topic_id, elapsed_seconds=0, new_turn=True) -> LedgerEntry:
        """Record a spoken turn.

        ``new_turn=False`` closes a turn already counted by ``begin_turn``.
        """
        entry = self.get(participant_id, topic_id)
        turns = entry.turn_count + 1 if new_turn or entry.turn_count == 0 else entry.turn_count
        return self._put(replace(
            entry,
            has_spoken=True,
            turn_count=turns,
            speaking_time=entry.speaking_time + max(0, int(elapsed_seconds)),
        ))

    def cancel_turn(self, participant_id, topic_id) -> LedgerEntry:
        """Take back a turn opened by ``begin_turn`` that saw no speech."""
        entry = self.get(participant_id, topic_id)
        if entry.turn_count == 0 or (entry.turn_count == 1 and entry.speaking_time):
            return entry
        return self._put(replace(entry, turn_count=entry.turn_count - 1))

    def record_pass(self, participant_id, topic_id) -> LedgerEntry:
        entry = self.get(participant_id, topic_id)
        return self._put(replace(entry, has_passed=True, pass_count=entry.pass_count + 1))

    def accrue_speaking_time(self, participant_id, topic_id, delta_seconds) -> LedgerEntry:
        delta = max(0, int(delta_seconds))
        entry = self.get(participant_id, topic_id)
        if not delta:
            return entry
        # Time spoken always belongs to some turn
        turns = entry.turn_count or 1
        return self._put(replace(entry, speaking_time=entry.speaking_time + delta, turn_count=turns))

    def _put(self, entry: LedgerEntry) -> LedgerEntry:
        if entry.participant_id not in self._participants:
            self._participants.append(entry.participant_id)
        if entry.topic_id not in self._topics:
            self._topics.append(entry.topic_id)
            for pid in self._participants:
                self._entries.setdefault((pid, entry.topic_id), LedgerEntry(pid, entry.topic_id))
        self._entries[entry.key] = entry
        for tid in self._topics:
            self._entries.setdefault((entry.participant_id, tid), LedgerEntry(entry.participant_id, tid))
        self.check_invariants()
        return entry

    def check_invariants(self) -> None:
        expected = {(p, t) for p in self._participants for t in self._topics}
        if set(self._entries) != expected:
            raise LedgerInvariantError("ledger keys differ from participants x topics")
        for entry in self._entries.values():
            _check_entry(entry)
