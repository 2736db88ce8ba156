"""Expected, caller-recoverable outcomes of the attendance engine."""
from typing import Optional


class AttendanceError(Exception):
    """Base class for every rejection the engine can produce."""

    code = 'attendance_error'

    def __init__(self, message: str = None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__

    def to_dict(self) -> dict:
        """Structured detail for API responses."""
        return {'code': self.code, 'message': self.message}


class SessionNotFound(AttendanceError):
    """No open attendance session found."""
    code = 'session_not_found'


class ActiveSessionExists(AttendanceError):
    """There is already an active session for this course."""
    code = 'active_session_exists'

    def __init__(self, course_id: str, session_id: str):
        super().__init__(f"Course {course_id} already has active session {session_id}")
        self.course_id = course_id
        self.session_id = session_id

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['session_id'] = self.session_id
        return data


class SessionClosed(AttendanceError):
    """Attendance session is closed."""
    code = 'session_closed'


class DuplicateMarking(AttendanceError):
    """Attendance already marked."""
    code = 'duplicate_marking'


class VerificationUnavailable(AttendanceError):
    """Face verification is temporarily unavailable."""
    code = 'verification_unavailable'


class FaceMismatch(AttendanceError):
    """Face verification failed. Please ensure proper lighting and angle."""
    code = 'face_mismatch'

    def __init__(self, match_distance: Optional[float] = None):
        super().__init__()
        self.match_distance = match_distance

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['match_distance'] = self.match_distance
        return data


class OutsideGeofence(AttendanceError):
    """Outside attendance radius."""
    code = 'outside_geofence'

    def __init__(self, distance_meters: float, radius_meters: float):
        super().__init__(f"Outside attendance radius ({round(distance_meters)}m away)")
        self.distance_meters = distance_meters
        self.radius_meters = radius_meters

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['distance'] = self.distance_meters
        data['radius'] = self.radius_meters
        return data


class LocationRequired(AttendanceError):
    """Location is required to mark attendance"""
    code = 'location_required'

    def __init__(self, radius_meters: float):
        super().__init__()
        self.radius_meters = radius_meters


class InvalidConfig(AttendanceError):
    """Invalid session configuration."""
    code = 'invalid_config'

    def __init__(self, errors: list):
        super().__init__("; ".join(errors))
        self.errors = errors

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['errors'] = self.errors
        return data
