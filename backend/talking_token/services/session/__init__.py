"""Session domain services: token, timer, ledger and statistics.

This package holds the session state engine. It has no Flask imports so
HTTP routes, socket handlers and tests can all drive it the same way.
"""

from .engine import SessionEngine, SessionSnapshot
from .ledger import Ledger, LedgerEntry
from .roster import Participant, Topic
from .stats import SessionStats, aggregate, format_duration
from .timer import TimerService
from .token import SessionSettings, TokenState
