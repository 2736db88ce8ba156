"""Helper functions for the application."""
from flask import jsonify
from typing import Dict, Any

from presence.services.errors import (
    AttendanceError, ActiveSessionExists, DuplicateMarking, InvalidConfig, SessionClosed,
    SessionNotFound, VerificationUnavailable
)

# HTTP status for each engine rejection raised outside the marking workflow
ERROR_STATUS_CODES = {
    InvalidConfig: 400,
    SessionNotFound: 404,
    ActiveSessionExists: 409,
    SessionClosed: 409,
    DuplicateMarking: 409,
    VerificationUnavailable: 503,
}


def handle_error(error, status_code: int):
    """Handle application errors with consistent format."""
    return jsonify({
        'error': True,
        'message': str(error),
        'status_code': status_code
    }), status_code


def success_response(data: Any = None, message: str = "Success"):
    """Return consistent success response."""
    response = {
        'error': False,
        'message': message
    }

    if data is not None:
        response['data'] = data

    return jsonify(response)


def error_response(message: str, status_code: int = 400, details: Dict = None):
    """Return consistent error response."""
    response = {
        'error': True,
        'message': message,
        'status_code': status_code
    }

    if details is not None:
        response['details'] = details

    return jsonify(response), status_code


def attendance_error_response(error: AttendanceError):
    """Render an engine rejection with its structured detail."""
    status_code = ERROR_STATUS_CODES.get(type(error), 400)
    return error_response(error.message, status_code, details=error.to_dict())
