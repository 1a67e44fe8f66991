import random
import string
from dataclasses import dataclass, replace
from typing import Optional


def generate_id(length=7):
    """Generate a short opaque id for participants and topics."""
    return ''.join(random.choices(string.ascii_lowercase + string.digits, k=length))


def clean_text(value) -> str:
    return value.strip() if isinstance(value, str) else ''


@dataclass(frozen=True)
class Participant:
    id: str
    name: str
    speaking_time: int = 0
    turn_count: int = 0
    # Scoped to the active topic, cleared on topic switch
    has_spoken: bool = False

    def credited(self, seconds=0, turns=0) -> 'Participant':
        return replace(
            self,
            speaking_time=self.speaking_time + max(0, int(seconds)),
            turn_count=self.turn_count + max(0, int(turns)),
        )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'speaking_time': self.speaking_time,
            'turn_count': self.turn_count,
            'has_spoken': self.has_spoken,
        }

    @classmethod
    def from_dict(cls, data) -> 'Participant':
        name = clean_text(data['name'])
        if not name or not data.get('id'):
            raise ValueError('participant requires id and name')
        return cls(
            id=str(data['id']),
            name=name,
            speaking_time=max(0, int(data.get('speaking_time', 0))),
            turn_count=max(0, int(data.get('turn_count', 0))),
            has_spoken=bool(data.get('has_spoken', False)),
        )


@dataclass(frozen=True)
class Topic:
    id: str
    title: str
    description: Optional[str] = None

    def to_dict(self, current_topic_id=None):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'is_active': self.id == current_topic_id,
        }

    @classmethod
    def from_dict(cls, data) -> 'Topic':
        title = clean_text(data['title'])
        if not title or not data.get('id'):
            raise ValueError('topic requires id and title')
        return cls(id=str(data['id']), title=title, description=clean_text(data.get('description')) or None)
