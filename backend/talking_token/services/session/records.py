"""Plain-record codec for persisting a session.

A session is stored as independent records (roster, topics, token state,
ledger, settings and the last stats). Each loader accepts a JSON string, an
already-decoded value or None, and falls back to its default when the record
is missing or malformed so a damaged store never blocks startup.
"""

import json
import logging
from typing import List, Optional

from .ledger import LedgerEntry, LedgerInvariantError
from .roster import Participant, Topic
from .stats import SessionStats
from .token import SessionSettings, TokenState


logger = logging.getLogger(__name__)

PARTICIPANTS = 'participants'
TOPICS = 'topics'
TOKEN_STATE = 'token_state'
LEDGER = 'ledger'
SETTINGS = 'settings'
LAST_STATS = 'last_stats'

RECORD_NAMES = (PARTICIPANTS, TOPICS, TOKEN_STATE, LEDGER, SETTINGS, LAST_STATS)


def dump(value) -> str:
    return json.dumps(value, sort_keys=True)


def _load(raw, name, build, default):
    if raw is None or raw == '':
        return default
    try:
        data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
        return build(data)
    except (ValueError, TypeError, KeyError, AttributeError, LedgerInvariantError) as exc:
        logger.warning(f"[records-fallback] record={name} error={exc!r}")
        return default


def _unique(items):
    seen = set()
    out = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        out.append(item)
    return out


def load_participants(raw) -> List[Participant]:
    return _load(raw, PARTICIPANTS, lambda data: _unique(Participant.from_dict(p) for p in data), [])


def load_topics(raw) -> List[Topic]:
    return _load(raw, TOPICS, lambda data: _unique(Topic.from_dict(t) for t in data), [])


def load_token_state(raw, default_max_speaking_seconds=90) -> TokenState:
    default = TokenState(
        time_remaining=default_max_speaking_seconds,
        max_speaking_seconds=default_max_speaking_seconds,
    )
    return _load(raw, TOKEN_STATE, TokenState.from_dict, default)


def load_ledger(raw) -> List[LedgerEntry]:
    return _load(raw, LEDGER, lambda data: [LedgerEntry.from_dict(e) for e in data], [])


def load_settings(raw, default: Optional[SessionSettings] = None) -> SessionSettings:
    return _load(raw, SETTINGS, SessionSettings.from_dict, default or SessionSettings())


def load_stats(raw) -> Optional[SessionStats]:
    return _load(raw, LAST_STATS, SessionStats.from_dict, None)
