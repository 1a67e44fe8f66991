import threading
from functools import partial
from typing import Dict, Optional

from flask import current_app, has_app_context

from talking_token import db, socketio
from talking_token.models import Meeting
from talking_token.services.session import SessionEngine, SessionSettings, TimerService


EXTENSION_KEY = 'talking_token'


def get_registry(app=None) -> 'MeetingRegistry':
    app = app or current_app
    return app.extensions[EXTENSION_KEY]


class MeetingRegistry:
    """Live SessionEngine per meeting code, persisted after every change."""

    def __init__(self, app=None):
        self.app = None
        self._engines: Dict[str, SessionEngine] = {}
        self._lock = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        self.app = app
        app.extensions[EXTENSION_KEY] = self

    def create(self) -> Meeting:
        meeting = Meeting()
        db.session.add(meeting)
        db.session.commit()
        engine = self._build(meeting)
        self._save(meeting.meeting_code, engine)
        self.app.logger.info(f"[meeting-create] meeting={meeting.meeting_code}")
        return meeting

    def get(self, meeting_code) -> Optional[SessionEngine]:
        if not meeting_code:
            return None
        code = meeting_code.upper()
        with self._lock:
            engine = self._engines.get(code)
        if engine is not None:
            return engine
        meeting = Meeting.query.filter_by(meeting_code=code).first()
        if not meeting:
            return None
        return self._build(meeting)

    def discard(self, meeting_code) -> None:
        with self._lock:
            engine = self._engines.pop(meeting_code.upper(), None)
        if engine is not None:
            engine.shutdown()

    def clear(self) -> None:
        with self._lock:
            engines, self._engines = list(self._engines.values()), {}
        for engine in engines:
            engine.shutdown()

    def _timer_factory(self):
        cfg = self.app.config
        options = dict(
            flush_seconds=int(cfg.get('TIMER_FLUSH_SECONDS', 5)),
            flush_interval=float(cfg.get('TIMER_FLUSH_INTERVAL_SEC', 3)),
            tick=float(cfg.get('TIMER_TICK_SEC', 1.0)),
            heartbeat=float(cfg.get('TIMER_HEARTBEAT_SEC', 0)),
        )
        # Tests drive time explicitly instead of running a worker
        if cfg.get('TESTING') and not cfg.get('ENABLE_TIMER_WORKER_IN_TESTS'):
            return partial(TimerService, inline=True, **options)
        return partial(TimerService, start_background_task=socketio.start_background_task, **options)

    def _build(self, meeting: Meeting) -> SessionEngine:
        cfg = self.app.config
        code = meeting.meeting_code
        settings = SessionSettings(
            pass_method=cfg.get('TOKEN_PASS_METHOD', 'facilitator'),
            start_on_pass=bool(cfg.get('START_TIMER_ON_PASS', False)),
        )
        engine = SessionEngine.from_records(
            meeting.stored_records(),
            started_at=meeting.started_at,
            max_speaking_seconds=int(cfg.get('DEFAULT_MAX_SPEAKING_SEC', 90)),
            min_speaking_seconds=int(cfg.get('MIN_SPEAKING_SEC', 10)),
            max_speaking_limit=int(cfg.get('MAX_SPEAKING_SEC', 180)),
            settings=settings,
            timer_factory=self._timer_factory(),
        )
        with self._lock:
            existing = self._engines.get(code)
            if existing is not None:
                engine.shutdown()
                return existing
            self._engines[code] = engine
        engine.subscribe(partial(self._on_change, code))
        return engine

    def _on_change(self, meeting_code, snapshot, reason) -> None:
        engine = self._engines.get(meeting_code)
        if engine is not None:
            self._save(meeting_code, engine)
        socketio.emit(
            'state_update',
            {'meeting_code': meeting_code, 'reason': reason, 'state': snapshot.to_dict()},
            to=f"meeting:{meeting_code}",
            namespace='/ws',
        )

    def _save(self, meeting_code, engine: SessionEngine) -> None:
        # Timer updates arrive outside any request
        if has_app_context():
            self._write(meeting_code, engine)
            return
        with self.app.app_context():
            self._write(meeting_code, engine)

    def _write(self, meeting_code, engine: SessionEngine) -> None:
        try:
            meeting = Meeting.query.filter_by(meeting_code=meeting_code).first()
            if not meeting:
                return
            meeting.store_records(engine.to_records())
            meeting.started_at = engine.started_at
            db.session.add(meeting)
            db.session.commit()
        except Exception:
            db.session.rollback()
            self.app.logger.exception(f"[meeting-save-failed] meeting={meeting_code}")
