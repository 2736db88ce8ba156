# backend/presence/models/face_template.py
"""Registered reference face for a participant."""
from presence import db
from presence.models.base import BaseModel


class FaceTemplate(BaseModel):
    """Encrypted reference template used for face verification."""

    __tablename__ = 'face_templates'

    id = db.Column(db.Integer, primary_key=True)
    participant_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    encrypted_template = db.Column(db.Text, nullable=False)
    template_hash = db.Column(db.String(64), nullable=False)
    registered_at = db.Column(db.DateTime, nullable=False)

    @classmethod
    def for_participant(cls, participant_id: str) -> 'FaceTemplate':
        return cls.query.filter_by(participant_id=participant_id).first()

    def to_dict(self):
        return super().to_dict(exclude=['id', 'encrypted_template', 'created_at', 'updated_at'])
