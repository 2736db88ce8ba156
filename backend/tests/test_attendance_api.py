"""Test attendance endpoints."""
import json

import pytest

from presence import create_app, db
from presence.config import config_map
from presence.config.testing import TestingConfig
from presence.services.errors import VerificationUnavailable
from presence.services.face_recognition_service import FaceRecognitionService

from conftest import (
    FAR_AWAY, MATCHING_DESCRIPTOR, NEARBY, ORIGIN, OTHER_DESCRIPTOR, REFERENCE_DESCRIPTOR,
    StubVerifier, auth_headers
)


def start_payload(**overrides):
    payload = {
        'courseId': 'course-1',
        'subject': 'Data Structures',
        'latitude': ORIGIN.latitude,
        'longitude': ORIGIN.longitude,
        'radius': 100
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def session_id(client, staff_headers):
    response = client.post('/api/attendance/start', json=start_payload(), headers=staff_headers)
    assert response.status_code == 201
    return json.loads(response.data)['data']['session']['id']


@pytest.fixture
def registered_student(client, student_headers):
    response = client.post('/api/faces/register', json={'template': REFERENCE_DESCRIPTOR},
                           headers=student_headers)
    assert response.status_code == 201
    return student_headers


def mark(client, headers, session_id, photo=MATCHING_DESCRIPTOR, location=None):
    payload = {'sessionId': session_id, 'photo': photo}
    if location is not None:
        payload.update(latitude=location.latitude, longitude=location.longitude)
    return client.post('/api/attendance/mark-with-face', json=payload, headers=headers)


def test_health_check(client):
    response = client.get('/api/attendance/health')
    assert response.status_code == 200
    assert json.loads(response.data)['message'] == 'Attendance service is running'


def test_requires_token(client):
    response = client.post('/api/attendance/start', json=start_payload())
    assert response.status_code == 401


# =================== Start / end ===================

def test_start_session(client, staff_headers):
    response = client.post('/api/attendance/start', json=start_payload(), headers=staff_headers)

    assert response.status_code == 201
    session = json.loads(response.data)['data']['session']
    assert session['course_id'] == 'course-1'
    assert session['owner_id'] == 'staff-1'
    assert session['active'] is True
    assert session['radius'] == 100


def test_start_uses_default_radius(client, staff_headers):
    payload = start_payload()
    del payload['radius']

    response = client.post('/api/attendance/start', json=payload, headers=staff_headers)

    assert json.loads(response.data)['data']['session']['radius'] == 100.0


def test_students_cannot_start(client, student_headers):
    response = client.post('/api/attendance/start', json=start_payload(), headers=student_headers)
    assert response.status_code == 403


@pytest.mark.parametrize('overrides', [
    {'courseId': None},
    {'subject': ''},
    {'latitude': None},
    {'latitude': 123.0},
    {'longitude': 'east'},
    {'radius': 0},
    {'radius': 'wide'},
])
def test_start_validation(client, staff_headers, overrides):
    response = client.post('/api/attendance/start', json=start_payload(**overrides),
                           headers=staff_headers)
    assert response.status_code == 400


def test_second_start_conflicts(client, staff_headers, session_id):
    response = client.post('/api/attendance/start', json=start_payload(), headers=staff_headers)

    assert response.status_code == 409
    data = json.loads(response.data)
    assert data['details']['code'] == 'active_session_exists'
    assert data['details']['session_id'] == session_id


def test_end_then_restart(client, staff_headers, session_id):
    response = client.post(f'/api/attendance/end/{session_id}', headers=staff_headers)
    assert response.status_code == 200
    data = json.loads(response.data)['data']
    assert data['session']['active'] is False
    assert data['session']['ended_at'] is not None

    response = client.post('/api/attendance/start', json=start_payload(), headers=staff_headers)
    assert response.status_code == 201


def test_end_unknown_session(client, staff_headers):
    response = client.post('/api/attendance/end/missing', headers=staff_headers)
    assert response.status_code == 404


def test_only_owner_can_end(client, session_id):
    response = client.post(f'/api/attendance/end/{session_id}',
                           headers=auth_headers('staff-2', 'staff'))
    assert response.status_code == 403


# =================== Marking ===================

def test_mark_within_radius(client, registered_student, session_id):
    response = mark(client, registered_student, session_id, location=NEARBY)

    assert response.status_code == 200
    data = json.loads(response.data)['data']
    assert data['status'] == 'success'
    assert data['distance'] == pytest.approx(43.3, abs=1.0)
    assert data['record']['participant_id'] == 'student-1'


def test_mark_outside_radius(client, registered_student, session_id):
    response = mark(client, registered_student, session_id, location=FAR_AWAY)

    assert response.status_code == 403
    data = json.loads(response.data)
    assert data['details']['status'] == 'outside_geofence'
    assert data['details']['distance'] > 1000


def test_mark_without_location(client, registered_student, session_id):
    response = mark(client, registered_student, session_id)

    assert response.status_code == 200
    assert json.loads(response.data)['data']['distance'] is None


def test_mark_location_required_by_policy(app, client, registered_student, session_id):
    app.extensions['marking_workflow'].require_location = True

    response = mark(client, registered_student, session_id)

    assert response.status_code == 400
    assert json.loads(response.data)['details']['status'] == 'location_required'


def test_mark_twice(client, registered_student, session_id):
    assert mark(client, registered_student, session_id).status_code == 200

    response = mark(client, registered_student, session_id)

    assert response.status_code == 409
    assert json.loads(response.data)['details']['status'] == 'duplicate_marking'


def test_mark_face_mismatch(client, registered_student, session_id):
    response = mark(client, registered_student, session_id, photo=OTHER_DESCRIPTOR)

    assert response.status_code == 401
    assert json.loads(response.data)['details']['status'] == 'face_mismatch'


def test_mark_verifier_unavailable(app, client, registered_student, session_id):
    app.extensions['marking_workflow'].verifier = StubVerifier(
        error=VerificationUnavailable("Face matcher unreachable")
    )

    response = mark(client, registered_student, session_id)

    assert response.status_code == 503
    assert json.loads(response.data)['details']['status'] == 'verification_unavailable'
    attendance = client.get(f'/api/attendance/session/{session_id}/attendance',
                            headers=registered_student)
    assert json.loads(attendance.data)['data']['attendance'] == []


def test_mark_closed_session(client, staff_headers, registered_student, session_id):
    client.post(f'/api/attendance/end/{session_id}', headers=staff_headers)

    response = mark(client, registered_student, session_id)

    assert response.status_code == 404


def test_mark_requires_registered_face(client, student_headers, session_id):
    response = mark(client, student_headers, session_id)
    assert response.status_code == 400


def test_mark_requires_session_and_photo(client, registered_student):
    response = client.post('/api/attendance/mark-with-face', json={}, headers=registered_student)
    assert response.status_code == 400


def test_mark_rejects_invalid_location(client, registered_student, session_id):
    response = client.post('/api/attendance/mark-with-face', json={
        'sessionId': session_id,
        'photo': MATCHING_DESCRIPTOR,
        'latitude': 'north',
        'longitude': 77.59
    }, headers=registered_student)
    assert response.status_code == 400


def test_staff_cannot_mark(client, staff_headers, session_id):
    response = mark(client, staff_headers, session_id)
    assert response.status_code == 403


# =================== Listings ===================

def test_list_attendance_in_marking_order(client, session_id):
    for participant in ('student-a', 'student-b'):
        headers = auth_headers(participant, 'student')
        client.post('/api/faces/register', json={'template': REFERENCE_DESCRIPTOR}, headers=headers)
        assert mark(client, headers, session_id, location=NEARBY).status_code == 200

    response = client.get(f'/api/attendance/session/{session_id}/attendance',
                          headers=auth_headers('student-a', 'student'))

    data = json.loads(response.data)['data']
    assert [r['participant_id'] for r in data['attendance']] == ['student-a', 'student-b']
    assert data['total_present'] == 2


def test_list_attendance_unknown_session(client, staff_headers):
    response = client.get('/api/attendance/session/missing/attendance', headers=staff_headers)
    assert response.status_code == 404


def test_get_session(client, staff_headers, session_id):
    response = client.get(f'/api/attendance/session/{session_id}', headers=staff_headers)
    assert json.loads(response.data)['data']['session']['id'] == session_id


def test_active_sessions(client, staff_headers, session_id):
    client.post('/api/attendance/start', json=start_payload(courseId='course-2'),
                headers=staff_headers)

    response = client.get('/api/attendance/active-sessions', headers=staff_headers)

    sessions = json.loads(response.data)['data']['sessions']
    assert {s['course_id'] for s in sessions} == {'course-1', 'course-2'}


def test_student_active_sessions(client, staff_headers, student_headers, session_id):
    client.post('/api/attendance/start', json=start_payload(courseId='course-2'),
                headers=staff_headers)

    response = client.post('/api/attendance/student-active-sessions',
                           json={'courseIds': ['course-1', 'course-9']}, headers=student_headers)
    sessions = json.loads(response.data)['data']['sessions']
    assert [s['id'] for s in sessions] == [session_id]

    response = client.post('/api/attendance/student-active-sessions',
                           json={'courseIds': []}, headers=student_headers)
    assert json.loads(response.data)['data']['sessions'] == []


def test_course_sessions_include_closed(client, staff_headers, session_id):
    client.post(f'/api/attendance/end/{session_id}', headers=staff_headers)
    client.post('/api/attendance/start', json=start_payload(), headers=staff_headers)

    response = client.get('/api/attendance/sessions/course-1', headers=staff_headers)

    sessions = json.loads(response.data)['data']['sessions']
    assert len(sessions) == 2
    assert [s['active'] for s in sessions] == [True, False]
    assert 'attendance' in sessions[0]


# =================== Marking pre-check ===================

@pytest.fixture
def decrypt_calls(monkeypatch):
    """Record template decryptions; any decryption fails as unavailable."""
    calls = []

    def fail_decrypt(participant_id, encrypted_template, secret):
        calls.append(participant_id)
        raise VerificationUnavailable("Stored face template could not be decrypted")

    monkeypatch.setattr(FaceRecognitionService, 'decrypt_template', staticmethod(fail_decrypt))
    return calls


def test_mark_closed_session_skips_template(client, staff_headers, registered_student,
                                            session_id, decrypt_calls):
    client.post(f'/api/attendance/end/{session_id}', headers=staff_headers)

    response = mark(client, registered_student, session_id)

    assert response.status_code == 404
    assert json.loads(response.data)['details']['status'] == 'session_not_found'
    assert decrypt_calls == []


def test_mark_unknown_session_skips_template(client, registered_student, decrypt_calls):
    response = mark(client, registered_student, 'missing-session')

    assert response.status_code == 404
    assert decrypt_calls == []


def test_mark_open_session_decrypts_template(client, registered_student, session_id, decrypt_calls):
    response = mark(client, registered_student, session_id)

    assert response.status_code == 503
    assert decrypt_calls == ['student-1']


# =================== Malformed bodies ===================

@pytest.mark.parametrize('path', [
    '/api/attendance/start',
    '/api/attendance/student-active-sessions',
])
def test_staff_routes_reject_json_array(client, staff_headers, path):
    response = client.post(path, json=['course-1'], headers=staff_headers)
    assert response.status_code == 400


@pytest.mark.parametrize('path', [
    '/api/attendance/mark-with-face',
    '/api/faces/register',
])
def test_student_routes_reject_json_array(client, student_headers, path):
    response = client.post(path, json=[1, 2, 3], headers=student_headers)
    assert response.status_code == 400


def test_start_reports_missing_fields(client, staff_headers):
    response = client.post('/api/attendance/start', json={'subject': 'Data Structures'},
                           headers=staff_headers)

    assert response.status_code == 400
    assert json.loads(response.data)['details']['errors'] == ['courseId is required']


# =================== Rate limiting ===================

class RateLimitedConfig(TestingConfig):
    RATELIMIT_ENABLED = True
    MARKING_RATE_LIMIT = "10 per minute"


@pytest.fixture
def limited_app(monkeypatch):
    """Test app with rate limiting switched on."""
    monkeypatch.setitem(config_map, 'rate-limited', RateLimitedConfig)
    app = create_app('rate-limited')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


def open_session(client):
    response = client.post('/api/attendance/start', json=start_payload(),
                           headers=auth_headers('staff-1', 'staff'))
    assert response.status_code == 201
    return json.loads(response.data)['data']['session']['id']


def register(client, headers):
    response = client.post('/api/faces/register', json={'template': REFERENCE_DESCRIPTOR},
                           headers=headers)
    assert response.status_code == 201


def test_marking_limit_is_per_participant(limited_app):
    """A whole class behind one address can mark within the same minute."""
    client = limited_app.test_client()
    session_id = open_session(client)

    codes = []
    for n in range(12):
        headers = auth_headers(f'classmate-{n}', 'student')
        register(client, headers)
        codes.append(mark(client, headers, session_id).status_code)

    assert codes == [200] * 12
    attendance = client.get(f'/api/attendance/session/{session_id}/attendance',
                            headers=auth_headers('staff-1', 'staff'))
    assert json.loads(attendance.data)['data']['total_present'] == 12


def test_marking_limit_applies_to_one_participant(limited_app):
    client = limited_app.test_client()
    session_id = open_session(client)
    headers = auth_headers('repeat-student', 'student')
    register(client, headers)

    codes = [mark(client, headers, session_id).status_code for _ in range(11)]

    assert codes[0] == 200
    assert codes[1:10] == [409] * 9
    assert codes[10] == 429
