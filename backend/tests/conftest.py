"""Shared fixtures for the verified-presence test suite."""
import pytest
from flask_jwt_extended import create_access_token

from presence import create_app, db
from presence.services.errors import VerificationUnavailable
from presence.services.face_recognition_service import BiometricVerifier, MatchResult
from presence.services.gps_service import Coordinate
from presence.services.session_service import SessionConfig, SessionStore

ORIGIN = Coordinate(12.9716, 77.5946)
NEARBY = Coordinate(12.9716, 77.5950)      # ~43m from ORIGIN
FAR_AWAY = Coordinate(12.9800, 77.6100)    # ~1.9km from ORIGIN

REFERENCE_DESCRIPTOR = [0.1] * 128
MATCHING_DESCRIPTOR = [0.12] * 128
OTHER_DESCRIPTOR = [0.9] * 128


class StubVerifier(BiometricVerifier):
    """Verifier returning a canned answer and counting calls."""

    def __init__(self, is_match=True, distance=0.2, error=None):
        self.result = MatchResult(is_match=is_match, distance=distance)
        self.error = error
        self.calls = 0

    def verify(self, captured_image, reference_image):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


def make_config(course_id='course-1', owner_id='staff-1', radius=100.0, **overrides):
    values = dict(
        course_id=course_id,
        owner_id=owner_id,
        subject='Data Structures',
        origin=ORIGIN,
        radius_meters=radius
    )
    values.update(overrides)
    return SessionConfig(**values)


@pytest.fixture
def store():
    """Store without persistence."""
    return SessionStore()


@pytest.fixture
def verifier():
    return StubVerifier()


@pytest.fixture
def unavailable_verifier():
    return StubVerifier(error=VerificationUnavailable("No face detected in captured image"))


@pytest.fixture
def app():
    """Create test app."""
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


def auth_headers(identity: str, role: str) -> dict:
    token = create_access_token(identity=identity, additional_claims={'role': role})
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def staff_headers(app):
    return auth_headers('staff-1', 'staff')


@pytest.fixture
def student_headers(app):
    return auth_headers('student-1', 'student')
