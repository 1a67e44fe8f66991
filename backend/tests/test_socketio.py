def _events(sio_client, name):
    return [pkt for pkt in sio_client.get_received('/ws') if pkt['name'] == name]


def test_socket_connect_and_join(sio_client):
    # Ensure we are connected to /ws
    if not sio_client.is_connected('/ws'):
        sio_client.connect(namespace='/ws')
    assert sio_client.is_connected('/ws')

    # Flush any initial events
    sio_client.get_received('/ws')

    # Join a room and expect a joined ack
    sio_client.emit('join_meeting', {'meeting_code': 'abcd'}, namespace='/ws')
    joined = _events(sio_client, 'joined')
    assert joined and joined[0]['args'][0]['room'] == 'meeting:ABCD'


def test_join_requires_code(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('join_meeting', {}, namespace='/ws')
    assert _events(sio_client, 'error')


def test_late_joiner_gets_current_state(sio_client, client):
    code = client.post('/api/meetings/create').get_json()['meeting_code']
    client.post(f'/api/meetings/{code}/participants', json={'name': 'Alice'})

    sio_client.get_received('/ws')
    sio_client.emit('join_meeting', {'meeting_code': code}, namespace='/ws')
    updates = _events(sio_client, 'state_update')
    assert len(updates) == 1
    payload = updates[0]['args'][0]
    assert payload['meeting_code'] == code
    assert payload['reason'] == 'joined'
    assert [p['name'] for p in payload['state']['participants']] == ['Alice']


def test_mutations_are_broadcast_to_the_room(sio_client, client):
    code = client.post('/api/meetings/create').get_json()['meeting_code']
    sio_client.emit('join_meeting', {'meeting_code': code}, namespace='/ws')
    sio_client.get_received('/ws')

    alice = client.post(f'/api/meetings/{code}/participants', json={'name': 'Alice'}).get_json()
    client.post(f'/api/meetings/{code}/topics', json={'title': 'Roadmap'})
    client.post(f'/api/meetings/{code}/token/pass', json={'participant_id': alice['id']})

    updates = [pkt['args'][0] for pkt in _events(sio_client, 'state_update')]
    assert [u['reason'] for u in updates] == ['participant_added', 'topic_added', 'token_passed']
    assert updates[-1]['state']['token']['current_holder'] == alice['id']


def test_leave_stops_updates(sio_client, client):
    code = client.post('/api/meetings/create').get_json()['meeting_code']
    sio_client.emit('join_meeting', {'meeting_code': code}, namespace='/ws')
    sio_client.emit('leave_meeting', {'meeting_code': code}, namespace='/ws')
    assert _events(sio_client, 'left')

    client.post(f'/api/meetings/{code}/participants', json={'name': 'Alice'})
    assert _events(sio_client, 'state_update') == []


def test_ping(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('ping', {'n': 1}, namespace='/ws')
    pongs = _events(sio_client, 'pong')
    assert pongs and pongs[0]['args'][0] == {'n': 1}
