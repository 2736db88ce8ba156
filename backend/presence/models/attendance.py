# backend/presence/models/attendance.py
"""Attendance record model with verification details."""
from presence import db
from presence.models.base import BaseModel
from presence.services.gps_service import Coordinate
from presence.services.session_service import PresenceRecord


class AttendanceRecord(BaseModel):
    """Attendance record model."""

    __tablename__ = 'attendance_records'
    __table_args__ = (
        # One record per participant per session, even across processes
        db.UniqueConstraint('session_id', 'participant_id', name='uq_session_participant'),
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(32), db.ForeignKey('attendance_sessions.id'), nullable=False)
    participant_id = db.Column(db.String(64), nullable=False, index=True)
    marked_at = db.Column(db.DateTime, nullable=False)

    # Verification details
    face_verified = db.Column(db.Boolean, default=False, nullable=False)
    location_verified = db.Column(db.Boolean, default=False, nullable=False)

    # Location where check-in happened
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)
    distance_meters = db.Column(db.Float, nullable=True)

    @classmethod
    def from_presence_record(cls, session_id: str, record: PresenceRecord) -> 'AttendanceRecord':
        location = record.verified_location
        return cls(
            session_id=session_id,
            participant_id=record.participant_id,
            marked_at=record.marked_at,
            face_verified=record.biometric_verified,
            location_verified=record.location_verified,
            latitude=location.latitude if location else None,
            longitude=location.longitude if location else None,
            distance_meters=record.distance_meters
        )

    def to_presence_record(self) -> PresenceRecord:
        location = None
        if self.latitude is not None and self.longitude is not None:
            location = Coordinate(self.latitude, self.longitude)

        return PresenceRecord(
            participant_id=self.participant_id,
            marked_at=self.marked_at,
            verified_location=location,
            distance_meters=self.distance_meters,
            biometric_verified=self.face_verified
        )

    def __repr__(self):
        return f'<AttendanceRecord {self.participant_id}-{self.session_id}>'
