"""End-of-session statistics.

``aggregate`` is a pure function of its inputs: given the same timestamps,
roster, topics and ledger entries it always returns an equal SessionStats.
"""

import math
import time
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from .ledger import LedgerEntry
from .roster import Participant, Topic


def percentage(part, total) -> int:
    """Share of ``part`` in ``total`` as a whole percent, 0 when total is 0."""
    if not total or total <= 0:
        return 0
    # Halves round up
    return int(math.floor(100 * part / total + 0.5))


def format_duration(seconds) -> str:
    """Format seconds as MM:SS, or H:MM:SS from one hour up."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


@dataclass(frozen=True)
class ParticipantStats:
    participant_id: str
    name: str
    speaking_time: int
    turn_count: int
    pass_count: int
    percentage: int

    def to_dict(self):
        return {
            'participant_id': self.participant_id,
            'name': self.name,
            'speaking_time': self.speaking_time,
            'speaking_time_display': format_duration(self.speaking_time),
            'turn_count': self.turn_count,
            'pass_count': self.pass_count,
            'percentage': self.percentage,
        }

    @classmethod
    def from_dict(cls, data) -> 'ParticipantStats':
        return cls(
            participant_id=str(data['participant_id']),
            name=str(data['name']),
            speaking_time=int(data['speaking_time']),
            turn_count=int(data['turn_count']),
            pass_count=int(data['pass_count']),
            percentage=int(data['percentage']),
        )


@dataclass(frozen=True)
class TopicStats:
    topic_id: str
    title: str
    description: Optional[str]
    total_duration: int
    session_percentage: int
    participant_stats: Tuple[ParticipantStats, ...]

    def to_dict(self):
        return {
            'topic_id': self.topic_id,
            'title': self.title,
            'description': self.description,
            'total_duration': self.total_duration,
            'total_duration_display': format_duration(self.total_duration),
            'session_percentage': self.session_percentage,
            'participant_stats': [p.to_dict() for p in self.participant_stats],
        }

    @classmethod
    def from_dict(cls, data) -> 'TopicStats':
        return cls(
            topic_id=str(data['topic_id']),
            title=str(data['title']),
            description=data.get('description'),
            total_duration=int(data['total_duration']),
            session_percentage=int(data.get('session_percentage', 0)),
            participant_stats=tuple(ParticipantStats.from_dict(p) for p in data['participant_stats']),
        )


@dataclass(frozen=True)
class SessionStats:
    start_time: float
    end_time: float
    total_duration: int
    topic_stats: Tuple[TopicStats, ...]

    def to_dict(self):
        return {
            'start_time': self.start_time,
            'end_time': self.end_time,
            'total_duration': self.total_duration,
            'total_duration_display': format_duration(self.total_duration),
            'topic_stats': [t.to_dict() for t in self.topic_stats],
        }

    @classmethod
    def from_dict(cls, data) -> 'SessionStats':
        return cls(
            start_time=float(data['start_time']),
            end_time=float(data['end_time']),
            total_duration=int(data['total_duration']),
            topic_stats=tuple(TopicStats.from_dict(t) for t in data['topic_stats']),
        )


def aggregate(
    start_time: float,
    participants: Iterable[Participant],
    topics: Iterable[Topic],
    ledger: Iterable[LedgerEntry],
    end_time: Optional[float] = None,
) -> SessionStats:
    if end_time is None:
        end_time = time.time()
    total_duration = max(0, int(math.floor(end_time - start_time + 0.5)))
    participants = list(participants)
    entries = list(ledger)

    topic_stats = []
    for topic in topics:
        by_participant = {e.participant_id: e for e in entries if e.topic_id == topic.id}
        topic_total = sum(e.speaking_time for e in by_participant.values())
        rows = []
        for participant in participants:
            entry = by_participant.get(participant.id)
            speaking = entry.speaking_time if entry else 0
            rows.append(ParticipantStats(
                participant_id=participant.id,
                name=participant.name,
                speaking_time=speaking,
                turn_count=entry.turn_count if entry else 0,
                pass_count=entry.pass_count if entry else 0,
                percentage=percentage(speaking, topic_total),
            ))
        topic_stats.append(TopicStats(
            topic_id=topic.id,
            title=topic.title,
            description=topic.description,
            total_duration=topic_total,
            session_percentage=percentage(topic_total, total_duration),
            participant_stats=tuple(rows),
        ))

    return SessionStats(
        start_time=start_time,
        end_time=end_time,
        total_duration=total_duration,
        topic_stats=tuple(topic_stats),
    )
