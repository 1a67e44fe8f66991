from flask import Blueprint, jsonify, request, current_app
from talking_token.services.meetings.registry import get_registry
from talking_token.services.session.token import PASS_METHODS
import math
import time


meetings = Blueprint('meetings', __name__)

_last_control_action: dict[str, float] = {}


def _engine(meeting_code):
    return get_registry().get(meeting_code)


def _not_found():
    return jsonify({'error': 'Meeting not found'}), 404


def _state(engine):
    return jsonify(engine.snapshot().to_dict())


def _debounced(action: str, meeting_code: str) -> bool:
    try:
        debounce_ms = int(current_app.config.get('CONTROL_DEBOUNCE_MS', 0))
    except Exception:
        debounce_ms = 0
    if debounce_ms <= 0:
        return False
    key = f"{action}:{meeting_code.upper()}"
    now = time.time() * 1000.0
    last = _last_control_action.get(key, 0)
    if now - last < debounce_ms:
        return True
    _last_control_action[key] = now
    return False


@meetings.route('/create', methods=['POST'])
def create_meeting():
    meeting = get_registry().create()
    return jsonify({
        'message': 'New meeting created!',
        'meeting_code': meeting.meeting_code
    }), 201


@meetings.route('/<string:meeting_code>/state', methods=['GET'])
def get_meeting_state(meeting_code):
    engine = _engine(meeting_code)
    if engine is None:
        return _not_found()
    return _state(engine)


# ---- roster ----

@meetings.route('/<string:meeting_code>/participants', methods=['POST'])
def add_participant(meeting_code):
    data = request.get_json(silent=True) or {}
    name = data.get('name')
    if not isinstance(name, str) or not name.strip():
        return jsonify({'error': 'Participant name is required'}), 400
    engine = _engine(meeting_code)
    if engine is None:
        return _not_found()
    participant = engine.add_participant(name)
    if participant is None:
        return jsonify({'error': 'Participant could not be added'}), 400
    return jsonify(participant.to_dict()), 201


@meetings.route('/<string:meeting_code>/participants/<string:participant_id>', methods=['DELETE'])
def remove_participant(meeting_code, participant_id):
    engine = _engine(meeting_code)
    if engine is None:
        return _not_found()
    engine.remove_participant(participant_id)
    return _state(engine)


@meetings.route('/<string:meeting_code>/participants/reset', methods=['POST'])
def reset_participants(meeting_code):
    engine = _engine(meeting_code)
    if engine is None:
        return _not_found()
    engine.reset_participants()
    return _state(engine)


# ---- topics ----

@meetings.route('/<string:meeting_code>/topics', methods=['POST'])
def add_topic(meeting_code):
    data = request.get_json(silent=True) or {}
    title = data.get('title')
    if not isinstance(title, str) or not title.strip():
        return jsonify({'error': 'Topic title is required'}), 400
    engine = _engine(meeting_code)
    if engine is None:
        return _not_found()
    topic = engine.add_topic(title, data.get('description'))
    if topic is None:
        return jsonify({'error': 'Topic could not be added'}), 400
    return jsonify(topic.to_dict(engine.token.current_topic_id)), 201


@meetings.route('/<string:meeting_code>/topics/<string:topic_id>', methods=['PUT'])
def edit_topic(meeting_code, topic_id):
    data = request.get_json(silent=True) or {}
    title = data.get('title')
    if title is not None and (not isinstance(title, str) or not title.strip()):
        return jsonify({'error': 'Topic title cannot be empty'}), 400
    engine = _engine(meeting_code)
    if engine is None:
        return _not_found()
    topic = engine.edit_topic(topic_id, title=title, description=data.get('description'))
    if topic is None:
        return jsonify({'error': 'Topic not found'}), 404
    return jsonify(topic.to_dict(engine.token.current_topic_id))


@meetings.route('/<string:meeting_code>/topics/<string:topic_id>', methods=['DELETE'])
def remove_topic(meeting_code, topic_id):
    engine = _engine(meeting_code)
    if engine is None:
        return _not_found()
    engine.remove_topic(topic_id)
    return _state(engine)


@meetings.route('/<string:meeting_code>/topics/<string:topic_id>/activate', methods=['POST'])
def activate_topic(meeting_code, topic_id):
    engine = _engine(meeting_code)
    if engine is None:
        return _not_found()
    engine.set_active_topic(topic_id)
    return _state(engine)


# ---- token and timer ----

@meetings.route('/<string:meeting_code>/token/pass', methods=['POST'])
def pass_token(meeting_code):
    data = request.get_json(silent=True) or {}
    participant_id = data.get('participant_id')
    if not participant_id:
        return jsonify({'error': 'participant_id is required'}), 400
    engine = _engine(meeting_code)
    if engine is None:
        return _not_found()
    if _debounced('pass', meeting_code):
        return jsonify({'message': 'debounced'}), 202
    engine.pass_token_to(participant_id)
    return _state(engine)


@meetings.route('/<string:meeting_code>/token/skip', methods=['POST'])
def pass_without_speaking(meeting_code):
    engine = _engine(meeting_code)
    if engine is None:
        return _not_found()
    if _debounced('skip', meeting_code):
        return jsonify({'message': 'debounced'}), 202
    engine.pass_without_speaking()
    return _state(engine)


@meetings.route('/<string:meeting_code>/timer/<string:action>', methods=['POST'])
def control_timer(meeting_code, action):
    if action not in ('start', 'pause', 'reset'):
        return jsonify({'error': f'Unknown timer action: {action}'}), 400
    engine = _engine(meeting_code)
    if engine is None:
        return _not_found()
    getattr(engine, action)()
    return _state(engine)


@meetings.route('/<string:meeting_code>/settings', methods=['PUT'])
def update_settings(meeting_code):
    data = request.get_json(silent=True) or {}
    max_seconds = data.get('max_speaking_seconds')
    pass_method = data.get('pass_method')
    if max_seconds is not None and (
        isinstance(max_seconds, bool)
        or not isinstance(max_seconds, (int, float))
        or (isinstance(max_seconds, float) and not math.isfinite(max_seconds))
    ):
        return jsonify({'error': 'max_speaking_seconds must be a number'}), 400
    if pass_method is not None and pass_method not in PASS_METHODS:
        return jsonify({'error': f'Unknown pass method: {pass_method}'}), 400
    engine = _engine(meeting_code)
    if engine is None:
        return _not_found()
    if max_seconds is not None:
        engine.set_max_speaking_seconds(max_seconds)
    if pass_method is not None:
        engine.set_pass_method(pass_method)
    if 'start_on_pass' in data:
        engine.set_start_on_pass(bool(data.get('start_on_pass')))
    return _state(engine)


# ---- session ----

@meetings.route('/<string:meeting_code>/end', methods=['POST'])
def end_meeting(meeting_code):
    engine = _engine(meeting_code)
    if engine is None:
        return _not_found()
    stats = engine.end_session()
    current_app.logger.info(f"[meeting-end] meeting={meeting_code.upper()} duration={stats.total_duration}s")
    return jsonify(stats.to_dict())


@meetings.route('/<string:meeting_code>/stats', methods=['GET'])
def last_stats(meeting_code):
    engine = _engine(meeting_code)
    if engine is None:
        return _not_found()
    stats = engine.last_stats
    if stats is None:
        return jsonify({'error': 'No finished session yet'}), 404
    return jsonify(stats.to_dict())


@meetings.route('/<string:meeting_code>/reset', methods=['POST'])
def reset_meeting(meeting_code):
    engine = _engine(meeting_code)
    if engine is None:
        return _not_found()
    engine.reset_all()
    return _state(engine)
