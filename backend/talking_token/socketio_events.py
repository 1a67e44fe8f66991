from flask_socketio import join_room, leave_room, emit
from talking_token import socketio
from talking_token.services.meetings.registry import get_registry


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_join_meeting(data):
    meeting_code = (data or {}).get('meeting_code')
    if not meeting_code:
        emit('error', {'message': 'meeting_code is required'})
        return
    code = meeting_code.upper()
    room = f"meeting:{code}"
    join_room(room)
    emit('joined', {'room': room})
    # Late joiners get the current state right away
    engine = get_registry().get(code)
    if engine is not None:
        emit('state_update', {'meeting_code': code, 'reason': 'joined', 'state': engine.snapshot().to_dict()})


def handle_leave_meeting(data):
    meeting_code = (data or {}).get('meeting_code')
    if not meeting_code:
        emit('error', {'message': 'meeting_code is required'})
        return
    room = f"meeting:{meeting_code.upper()}"
    leave_room(room)
    emit('left', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    socketio.on_event('connect', handle_connect, namespace='/ws')
    socketio.on_event('join_meeting', handle_join_meeting, namespace='/ws')
    socketio.on_event('leave_meeting', handle_leave_meeting, namespace='/ws')
    socketio.on_event('ping', handle_ping, namespace='/ws')

    if testing:
        # Test-only mirror on default namespace
        socketio.on_event('connect', handle_connect, namespace='/')
        socketio.on_event('join_meeting', handle_join_meeting, namespace='/')
        socketio.on_event('leave_meeting', handle_leave_meeting, namespace='/')
        socketio.on_event('ping', handle_ping, namespace='/')
