"""Tests for the HTTP API."""
import json

import pytest

from conftest import SIGNATURE


@pytest.fixture
def started(client):
    """Start a session over HTTP and return its response data."""
    response = client.post('/api/sessions', json={
        'class_id': 'CS101',
        'issuer_id': 'teacher-1',
        'rotation_interval_seconds': 60
    })
    assert response.status_code == 201
    return json.loads(response.data)['data']


def redeem(client, started, participant='stu-1', **extra):
    body = {
        'participant_id': participant,
        'token': started['token']['tokenString'],
        'signature': SIGNATURE
    }
    body.update(extra)
    return client.post('/api/attendance/redeem', json=body)


def test_health_check(client):
    response = client.get('/health')
    assert response.status_code == 200
    data = json.loads(response.data)
    assert data['status'] == 'healthy'
    assert data['ledger'] == 'memory'


@pytest.mark.parametrize('prefix', ['/api/sessions', '/api/participants', '/api/attendance'])
def test_blueprint_health(client, prefix):
    response = client.get(f'{prefix}/health')
    assert response.status_code == 200
    assert json.loads(response.data)['error'] is False


def test_start_session(started):
    assert started['session']['status'] == 'active'
    assert started['session']['class_id'] == 'CS101'
    assert started['token']['sequenceNumber'] == 1
    assert len(started['token']['pin']) == 4


def test_start_session_validation(client):
    response = client.post('/api/sessions', json={'class_id': 'CS101', 'issuer_id': 't', 'rotation_interval_seconds': 0})
    assert response.status_code == 400
    data = json.loads(response.data)
    assert data['error'] is True
    assert data['code'] == 'invalid_config'


def test_unknown_session(client):
    response = client.get('/api/sessions/missing')
    assert response.status_code == 404
    assert json.loads(response.data)['code'] == 'session_not_found'


def test_current_token(client, started):
    session_id = started['session']['session_id']
    response = client.get(f'/api/sessions/{session_id}/token')
    data = json.loads(response.data)['data']
    assert data['tokenString'] == started['token']['tokenString']

    response = client.get(f'/api/sessions/{session_id}/token?format=qr')
    data = json.loads(response.data)['data']
    assert data['qrImage'].startswith('data:image/png;base64,')


def test_session_lifecycle(client, started):
    session_id = started['session']['session_id']

    response = client.post(f'/api/sessions/{session_id}/rotate')
    assert json.loads(response.data)['data']['sequenceNumber'] == 2

    response = client.post(f'/api/sessions/{session_id}/pause')
    assert json.loads(response.data)['data']['status'] == 'paused'

    response = client.post(f'/api/sessions/{session_id}/rotate')
    assert response.status_code == 409
    assert json.loads(response.data)['code'] == 'session_not_active'

    response = client.get(f'/api/sessions/{session_id}/timer')
    assert json.loads(response.data)['data']['paused'] is True

    response = client.post(f'/api/sessions/{session_id}/resume')
    assert json.loads(response.data)['data']['token']['sequenceNumber'] == 3

    response = client.post(f'/api/sessions/{session_id}/end')
    assert json.loads(response.data)['data']['status'] == 'ended'

    response = redeem(client, started)
    assert response.status_code == 409
    assert json.loads(response.data)['code'] == 'session_ended'


def test_redeem_and_duplicate(client, started):
    response = redeem(client, started)
    assert response.status_code == 201
    data = json.loads(response.data)['data']
    assert data['state'] == 'present'
    assert data['duplicate'] is False

    response = redeem(client, started)
    assert response.status_code == 200
    again = json.loads(response.data)['data']
    assert again['duplicate'] is True
    assert again['record']['record_id'] == data['record']['record_id']


def test_redeem_validation(client, started):
    response = client.post('/api/attendance/redeem', json={'participant_id': 'stu-1'})
    assert response.status_code == 400
    assert json.loads(response.data)['code'] == 'validation_error'

    response = client.post('/api/attendance/redeem', json={
        'participant_id': 'stu-1', 'token': 'forged', 'signature': SIGNATURE
    })
    assert response.status_code == 400
    assert json.loads(response.data)['code'] == 'unknown_token'


def test_moderation_endpoints(client, started):
    response = redeem(client, started, signature=None)
    record = json.loads(response.data)['data']['record']
    assert record['state'] == 'flagged'

    response = client.post(f"/api/attendance/records/{record['record_id']}/approve")
    assert json.loads(response.data)['data']['record']['state'] == 'present'

    response = client.post(f"/api/attendance/records/{record['record_id']}/approve")
    assert response.status_code == 200
    assert json.loads(response.data)['data']['changed'] is False

    response = client.post(f"/api/attendance/records/{record['record_id']}/reject")
    assert response.status_code == 409
    assert json.loads(response.data)['code'] == 'already_decided'

    response = client.post('/api/attendance/records/missing/approve')
    assert response.status_code == 404


def test_bulk_endpoints(client, started):
    session_id = started['session']['session_id']
    for n in range(3):
        redeem(client, started, participant=f'stu-{n}', signature=None)

    response = client.post('/api/attendance/bulk-reject', json={'session_id': session_id, 'scope': 'flagged'})
    assert json.loads(response.data)['data']['count'] == 3

    response = client.post('/api/attendance/bulk-approve', json={'session_id': session_id, 'scope': 'everything'})
    assert response.status_code == 400


def test_feed_and_records(client, started):
    session_id = started['session']['session_id']
    redeem(client, started, participant='stu-1')
    redeem(client, started, participant='stu-2', signature=None)

    response = client.get(f'/api/attendance/feed?session_id={session_id}')
    feed = json.loads(response.data)['data']
    assert [e['participant_id'] for e in feed['present']] == ['stu-1']
    assert [e['participant_id'] for e in feed['flagged']] == ['stu-2']
    assert feed['suppressed'] is False

    response = client.get('/api/attendance/records')
    assert json.loads(response.data)['data']['total'] == 2


def test_clear_requires_scope(client, started):
    response = client.post('/api/attendance/clear', json={})
    assert response.status_code == 400


def test_clear(client, started):
    session_id = started['session']['session_id']
    redeem(client, started)

    response = client.post('/api/attendance/clear', json={'session_id': session_id})
    assert json.loads(response.data)['data']['deleted'] == 1

    response = client.get(f'/api/attendance/feed?session_id={session_id}')
    feed = json.loads(response.data)['data']
    assert feed['total'] == 0
    assert feed['suppressed'] is True
    assert feed['generation'] == 1


def test_export_csv(client, started):
    redeem(client, started)
    response = client.get('/api/attendance/export?class_id=CS101')
    assert response.status_code == 200
    assert response.mimetype == 'text/csv'
    assert 'attachment' in response.headers['Content-Disposition']
    lines = response.get_data(as_text=True).splitlines()
    assert lines[0].startswith('recordId,participantId,displayName')
    assert len(lines) == 2


def test_export_and_clear(client, started):
    redeem(client, started)
    response = client.post('/api/attendance/export-and-clear', json={'all': True})
    data = json.loads(response.data)['data']
    assert data['count'] == 1
    assert data['cleared'] == 1
    assert data['clear_failed'] is False

    response = client.get('/api/attendance/records')
    assert json.loads(response.data)['data']['total'] == 0


def test_participants(client, started):
    response = client.post('/api/participants', json={
        'participant_id': 'stu-1',
        'display_name': 'Ada Lovelace',
        'device_hash': 'device-a'
    })
    assert response.status_code == 201
    assert json.loads(response.data)['data']['device_enrolled'] is True

    response = client.get('/api/participants/stu-1')
    assert json.loads(response.data)['data']['display_name'] == 'Ada Lovelace'

    response = redeem(client, started, device_hash='device-b')
    assert json.loads(response.data)['data']['record']['reason'] == 'device_mismatch'

    response = client.get('/api/participants/nobody')
    assert response.status_code == 404

    response = client.post('/api/participants', json={'participant_id': 'stu-2'})
    assert response.status_code == 400


def test_unknown_route(client):
    response = client.get('/api/nowhere')
    assert response.status_code == 404
    assert json.loads(response.data)['error'] is True


def test_redeem_with_non_ascii_pin(client, started):
    response = redeem(client, started, pin='é123')
    assert response.status_code == 201
    assert json.loads(response.data)['data']['record']['reason'] == 'pin_mismatch'
