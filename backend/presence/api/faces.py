# File: backend/presence/api/faces.py
"""Face template registration endpoints."""
from flask import Blueprint, current_app, request
from flask_jwt_extended import jwt_required, get_jwt_identity
from presence import db
from presence.models.face_template import FaceTemplate
from presence.services.face_recognition_service import FaceRecognitionService
from presence.services.session_service import utcnow
from presence.utils.decorators import student_required
from presence.utils.helpers import error_response, success_response
from presence.utils.validators import Validator

faces_bp = Blueprint('faces', __name__)


@faces_bp.route('/register', methods=['POST'])
@jwt_required()
@student_required
def register_face():
    """Register (or replace) the caller's reference face template."""
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return error_response("Request body must be a JSON object", 400)

        validation = Validator.validate_required_fields(data, ['template'])
        if not validation['is_valid']:
            return error_response("Face template required", 400, details={'errors': validation['errors']})
        template_data = data['template']

        participant_id = get_jwt_identity()
        encrypted, template_hash = FaceRecognitionService.encrypt_template(
            participant_id, template_data, current_app.config['SECRET_KEY']
        )

        template = FaceTemplate.for_participant(participant_id)
        created = template is None
        if created:
            template = FaceTemplate(participant_id=participant_id)

        template.encrypted_template = encrypted
        template.template_hash = template_hash
        template.registered_at = utcnow()
        template.save()

        current_app.logger.info(
            "Face template %s for %s", "registered" if created else "replaced", participant_id
        )

        return success_response(
            data=template.to_dict(),
            message="Face registered successfully" if created else "Face registration updated"
        ), 201 if created else 200

    except Exception:
        db.session.rollback()
        current_app.logger.exception("Error registering face template")
        return error_response("Server error registering face", 500)


@faces_bp.route('/status', methods=['GET'])
@jwt_required()
def face_status():
    """Whether the caller has a registered face template."""
    template = FaceTemplate.for_participant(get_jwt_identity())

    return success_response(data={
        'registered': template is not None,
        'registered_at': template.registered_at.isoformat() if template else None
    })
