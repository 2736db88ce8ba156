"""Models package with all models."""
from .base import BaseModel
from .attendance_session import AttendanceSessionModel
from .attendance import AttendanceRecord
from .face_template import FaceTemplate

__all__ = [
    'BaseModel', 'AttendanceSessionModel', 'AttendanceRecord', 'FaceTemplate'
]
