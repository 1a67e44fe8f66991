import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///talking_token.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # Speaking budget per turn (seconds)
    DEFAULT_MAX_SPEAKING_SEC = int(os.environ.get('DEFAULT_MAX_SPEAKING_SEC', '90'))
    MIN_SPEAKING_SEC = int(os.environ.get('MIN_SPEAKING_SEC', '10'))
    MAX_SPEAKING_SEC = int(os.environ.get('MAX_SPEAKING_SEC', '180'))
    # automatic, facilitator or manual. Only automatic passes on expiry.
    TOKEN_PASS_METHOD = os.environ.get('TOKEN_PASS_METHOD', 'facilitator')
    # Start the countdown as soon as the token changes hands
    START_TIMER_ON_PASS = os.environ.get('START_TIMER_ON_PASS', '0').lower() in ('1', 'true', 'yes')
    # Timer worker cadence: poll every tick, report at least every N seconds accrued
    # or every interval of wall-clock time, whichever comes first.
    TIMER_TICK_SEC = float(os.environ.get('TIMER_TICK_SEC', '1.0'))
    TIMER_FLUSH_SECONDS = int(os.environ.get('TIMER_FLUSH_SECONDS', '5'))
    TIMER_FLUSH_INTERVAL_SEC = float(os.environ.get('TIMER_FLUSH_INTERVAL_SEC', '3'))
    # Optional: heartbeat interval for timer worker logs (sec). 0 disables.
    TIMER_HEARTBEAT_SEC = int(os.environ.get('TIMER_HEARTBEAT_SEC', '0'))
    # Optional: debounce pass/skip actions (ms). 0 disables.
    CONTROL_DEBOUNCE_MS = int(os.environ.get('CONTROL_DEBOUNCE_MS', '0'))
