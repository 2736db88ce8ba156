# backend/presence/models/attendance_session.py
"""Persisted attendance session."""
from presence import db
from presence.models.base import BaseModel
from presence.services.gps_service import Coordinate
from presence.services.session_service import AttendanceSession, SessionConfig, SessionState


class AttendanceSessionModel(BaseModel):
    """Durable copy of an attendance session's configuration and lifecycle."""

    __tablename__ = 'attendance_sessions'

    id = db.Column(db.String(32), primary_key=True)
    course_id = db.Column(db.String(64), nullable=False, index=True)
    owner_id = db.Column(db.String(64), nullable=False)
    subject = db.Column(db.String(255), nullable=False)

    # Geofence origin
    latitude = db.Column(db.Float, nullable=False)
    longitude = db.Column(db.Float, nullable=False)
    radius_meters = db.Column(db.Float, nullable=False, default=100.0)

    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)
    started_at = db.Column(db.DateTime, nullable=False)
    ended_at = db.Column(db.DateTime, nullable=True)

    # Relationships
    records = db.relationship(
        'AttendanceRecord', backref='session', lazy='select',
        order_by='AttendanceRecord.marked_at'
    )

    @classmethod
    def from_session(cls, session: AttendanceSession) -> 'AttendanceSessionModel':
        config = session.config
        return cls(
            id=session.id,
            course_id=config.course_id,
            owner_id=config.owner_id,
            subject=config.subject,
            latitude=config.origin.latitude,
            longitude=config.origin.longitude,
            radius_meters=config.radius_meters,
            is_active=session.is_open,
            started_at=config.started_at,
            ended_at=session.ended_at
        )

    def to_session(self) -> AttendanceSession:
        """Rebuild the in-memory session, records included."""
        config = SessionConfig(
            course_id=self.course_id,
            owner_id=self.owner_id,
            subject=self.subject,
            origin=Coordinate(self.latitude, self.longitude),
            radius_meters=self.radius_meters,
            started_at=self.started_at
        )
        return AttendanceSession(
            config,
            session_id=self.id,
            state=SessionState.OPEN if self.is_active else SessionState.CLOSED,
            ended_at=self.ended_at,
            records=[record.to_presence_record() for record in self.records]
        )

    def __repr__(self):
        return f'<AttendanceSessionModel {self.id} course={self.course_id}>'
