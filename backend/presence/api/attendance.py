# File: backend/presence/api/attendance.py
"""Attendance API endpoints with face and location verification."""
from flask import Blueprint, current_app, request
from flask_jwt_extended import jwt_required, get_jwt_identity
from presence import limiter
from presence.models.face_template import FaceTemplate
from presence.services.errors import AttendanceError
from presence.services.face_recognition_service import FaceRecognitionService
from presence.services.marking_service import MarkingStatus
from presence.services.session_service import SessionConfig
from presence.utils.decorators import participant_key, staff_required, student_required
from presence.utils.helpers import attendance_error_response, error_response, success_response
from presence.utils.validators import Validator

attendance_bp = Blueprint('attendance', __name__)

# HTTP status for each marking outcome
MARKING_STATUS_CODES = {
    MarkingStatus.SUCCESS: 200,
    MarkingStatus.LOCATION_REQUIRED: 400,
    MarkingStatus.FACE_MISMATCH: 401,
    MarkingStatus.OUTSIDE_GEOFENCE: 403,
    MarkingStatus.SESSION_NOT_FOUND: 404,
    MarkingStatus.SESSION_CLOSED: 409,
    MarkingStatus.DUPLICATE_MARKING: 409,
    MarkingStatus.VERIFICATION_UNAVAILABLE: 503,
}


def _store():
    return current_app.extensions['session_store']


def _workflow():
    return current_app.extensions['marking_workflow']


@attendance_bp.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    return success_response(message='Attendance service is running')


@attendance_bp.route('/start', methods=['POST'])
@jwt_required()
@staff_required
def start_session():
    """Start an attendance session for a course (staff)."""
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return error_response("Request body must be a JSON object", 400)

        validation = Validator.validate_required_fields(data, ['courseId', 'subject'])
        if not validation['is_valid']:
            return error_response(
                "CourseId and subject required", 400, details={'errors': validation['errors']}
            )

        origin, errors = Validator.parse_coordinate(data, required=True)
        if errors:
            return error_response("Invalid session location", 400, details={'errors': errors})

        radius = current_app.config['DEFAULT_RADIUS_METERS']
        if data.get('radius') not in (None, ''):
            radius, errors = Validator.parse_float(data['radius'], 'radius')
            if errors:
                return error_response("Invalid session radius", 400, details={'errors': errors})

        config = SessionConfig(
            course_id=str(data['courseId']),
            owner_id=get_jwt_identity(),
            subject=str(data['subject']).strip(),
            origin=origin,
            radius_meters=radius
        )
        session = _store().start_session(config)

        return success_response(
            data={'session': session.to_dict()},
            message="Attendance session started"
        ), 201

    except AttendanceError as e:
        return attendance_error_response(e)
    except Exception:
        current_app.logger.exception("Error starting attendance session")
        return error_response("Server error starting attendance", 500)


@attendance_bp.route('/end/<session_id>', methods=['POST'])
@jwt_required()
@staff_required
def end_session(session_id):
    """End an attendance session (session owner only)."""
    try:
        session = _store().get(session_id)

        if session.config.owner_id != get_jwt_identity():
            return error_response("Not authorized for this session", 403)

        session = _store().close_session(session_id)

        return success_response(
            data={
                'session': session.to_dict(),
                'notification': f"Staff ended attendance for course {session.config.course_id}"
            },
            message="Attendance session ended"
        )

    except AttendanceError as e:
        return attendance_error_response(e)
    except Exception:
        current_app.logger.exception("Error ending session %s", session_id)
        return error_response("Server error ending attendance", 500)


@attendance_bp.route('/mark-with-face', methods=['POST'])
@jwt_required()
@student_required
@limiter.limit(lambda: current_app.config['MARKING_RATE_LIMIT'], key_func=participant_key)
def mark_with_face():
    """Mark attendance after face and location verification (student)."""
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return error_response("Request body must be a JSON object", 400)

        participant_id = get_jwt_identity()

        validation = Validator.validate_required_fields(data, ['sessionId', 'photo'])
        if not validation['is_valid']:
            return error_response(
                "Session ID and captured photo required", 400,
                details={'errors': validation['errors']}
            )

        location, errors = Validator.parse_coordinate(data)
        if errors:
            return error_response("Invalid location", 400, details={'errors': errors})

        session_id = str(data['sessionId'])

        # Reject unknown or closed sessions before the template key derivation
        rejection = _workflow().precheck(session_id, participant_id)
        if rejection:
            return error_response(
                rejection.message, MARKING_STATUS_CODES[rejection.status],
                details=rejection.to_dict()
            )

        template = FaceTemplate.for_participant(participant_id)
        if not template:
            return error_response("No registered face template found for this participant", 400)

        reference = FaceRecognitionService.decrypt_template(
            participant_id, template.encrypted_template, current_app.config['SECRET_KEY']
        )

        outcome = _workflow().mark_with_verification(
            session_id=session_id,
            participant_id=participant_id,
            captured_image=data['photo'],
            reference_image=reference,
            reported_location=location
        )

        status_code = MARKING_STATUS_CODES[outcome.status]
        if outcome.success:
            return success_response(data=outcome.to_dict(), message=outcome.message)

        return error_response(outcome.message, status_code, details=outcome.to_dict())

    except AttendanceError as e:
        return attendance_error_response(e)
    except Exception:
        current_app.logger.exception("Error in face attendance for %s", get_jwt_identity())
        return error_response("Server error during face attendance", 500)


@attendance_bp.route('/session/<session_id>', methods=['GET'])
@jwt_required()
def get_session(session_id):
    """Get a session handle."""
    try:
        session = _store().get(session_id)
        return success_response(data={'session': session.to_dict()})

    except AttendanceError as e:
        return attendance_error_response(e)


@attendance_bp.route('/session/<session_id>/attendance', methods=['GET'])
@jwt_required()
def list_attendance(session_id):
    """Get attendance for a session, in marking order."""
    try:
        session = _store().get(session_id)
        records = [record.to_dict() for record in session.attendance()]

        return success_response(data={
            'session_id': session.id,
            'attendance': records,
            'total_present': len(records)
        })

    except AttendanceError as e:
        return attendance_error_response(e)


@attendance_bp.route('/active-sessions', methods=['GET'])
@jwt_required()
def active_sessions():
    """Get all active sessions."""
    sessions = _store().active_sessions()
    return success_response(data={'sessions': [session.to_dict() for session in sessions]})


@attendance_bp.route('/student-active-sessions', methods=['POST'])
@jwt_required()
def student_active_sessions():
    """Get active sessions among the given courses."""
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return error_response("Request body must be a JSON object", 400)

    course_ids = data.get('courseIds')

    if not course_ids:
        return success_response(data={'sessions': []})

    if not isinstance(course_ids, list):
        return error_response("courseIds must be a list", 400)

    sessions = _store().active_sessions_for_courses(str(course_id) for course_id in course_ids)
    return success_response(data={'sessions': [session.to_dict() for session in sessions]})


@attendance_bp.route('/sessions/<course_id>', methods=['GET'])
@jwt_required()
def course_sessions(course_id):
    """Get all sessions for a course, newest first."""
    sessions = _store().sessions_for_course(course_id)
    return success_response(data={
        'sessions': [session.to_dict(include_attendance=True) for session in sessions]
    })
