# File: backend/presence/services/session_service.py
"""Attendance session state machine and the in-process session registry."""
import logging
import math
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional

from presence.services.errors import (
    ActiveSessionExists, DuplicateMarking, InvalidConfig, SessionClosed, SessionNotFound
)
from presence.services.gps_service import Coordinate

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how the database stores datetimes."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SessionState(Enum):
    """Session lifecycle states."""
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class SessionConfig:
    """Session parameters fixed at start time."""
    course_id: str
    owner_id: str
    subject: str
    origin: Coordinate
    radius_meters: float = 100.0
    started_at: datetime = field(default_factory=utcnow)

    def validate(self) -> List[str]:
        """Return configuration errors, empty when valid."""
        errors = []

        if not self.course_id:
            errors.append("Course ID is required")
        if not self.owner_id:
            errors.append("Owner ID is required")
        if not isinstance(self.subject, str) or not self.subject.strip():
            errors.append("Subject is required")

        if not isinstance(self.origin, Coordinate):
            errors.append("Origin must be a coordinate")
        else:
            errors.extend(self.origin.validate())

        if isinstance(self.radius_meters, bool) or not isinstance(self.radius_meters, (int, float)) \
                or not math.isfinite(self.radius_meters) or self.radius_meters <= 0:
            errors.append("Radius must be a positive number of meters")

        return errors

    def to_dict(self) -> Dict:
        return {
            'course_id': self.course_id,
            'owner_id': self.owner_id,
            'subject': self.subject,
            'latitude': self.origin.latitude,
            'longitude': self.origin.longitude,
            'radius': self.radius_meters,
            'started_at': self.started_at.isoformat()
        }


@dataclass(frozen=True)
class PresenceRecord:
    """One participant's verified presence in a session."""
    participant_id: str
    marked_at: datetime
    verified_location: Optional[Coordinate] = None
    distance_meters: Optional[float] = None
    biometric_verified: bool = False

    @property
    def location_verified(self) -> bool:
        return self.distance_meters is not None

    def to_dict(self) -> Dict:
        return {
            'participant_id': self.participant_id,
            'status': 'Present',
            'marked_at': self.marked_at.isoformat(),
            'location': self.verified_location.to_dict() if self.verified_location else None,
            'distance': self.distance_meters,
            'face_verified': self.biometric_verified,
            'location_verified': self.location_verified
        }


class SessionJournal:
    """
    Durable storage hooks called by sessions and the store.

    Every hook runs inside the critical section of the change it records, so a
    hook that raises aborts that change. The base class keeps nothing.
    """

    def session_started(self, session: 'AttendanceSession') -> None:
        """Persist a newly created session."""

    def session_closed(self, session_id: str, ended_at: datetime) -> None:
        """Persist a session closing (or re-closing)."""

    def presence_marked(self, session_id: str, record: PresenceRecord) -> None:
        """Persist a presence record."""


class AttendanceSession:
    """
    A live attendance session.

    Starts OPEN and moves to CLOSED once; there is no reopen. Records are
    append-only and keyed by participant, and ``mark_present`` is the only
    way to add one. Each session has its own lock so marking in one session
    never waits on another.
    """

    def __init__(
        self,
        config: SessionConfig,
        session_id: str = None,
        journal: SessionJournal = None,
        state: SessionState = SessionState.OPEN,
        ended_at: Optional[datetime] = None,
        records: Iterable[PresenceRecord] = ()
    ):
        self.id = session_id or uuid.uuid4().hex
        self.config = config
        self._journal = journal
        self._state = state
        self._ended_at = ended_at
        self._records: Dict[str, PresenceRecord] = {
            record.participant_id: record for record in records
        }
        self._lock = threading.Lock()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is SessionState.OPEN

    @property
    def ended_at(self) -> Optional[datetime]:
        return self._ended_at

    def close(self, ended_at: datetime = None) -> datetime:
        """
        Close the session.

        Closing an already closed session is a no-op apart from overwriting
        ``ended_at`` with the latest close time.
        """
        with self._lock:
            ended_at = ended_at or utcnow()
            if self._journal is not None:
                self._journal.session_closed(self.id, ended_at)

            was_open = self.is_open
            self._state = SessionState.CLOSED
            self._ended_at = ended_at

        if was_open:
            logger.info("Session %s for course %s closed", self.id, self.config.course_id)
        return ended_at

    def mark_present(self, participant_id: str, record: PresenceRecord) -> PresenceRecord:
        """
        Commit a presence record.

        Raises:
            SessionClosed: the session is no longer open (checked first).
            DuplicateMarking: the participant is already present.
        """
        if record.participant_id != participant_id:
            raise ValueError("Record belongs to a different participant")

        with self._lock:
            if not self.is_open:
                raise SessionClosed()

            if participant_id in self._records:
                raise DuplicateMarking()

            if self._journal is not None:
                self._journal.presence_marked(self.id, record)

            self._records[participant_id] = record

        return record

    def has_marked(self, participant_id: str) -> bool:
        with self._lock:
            return participant_id in self._records

    def attendance(self) -> List[PresenceRecord]:
        """Snapshot of the records, ordered by ``marked_at``."""
        with self._lock:
            records = list(self._records.values())
        return sorted(records, key=lambda record: record.marked_at)

    def to_dict(self, include_attendance: bool = False) -> Dict:
        """Session handle for API responses."""
        data = {
            'id': self.id,
            **self.config.to_dict(),
            'active': self.is_open,
            'state': self.state.value,
            'ended_at': self.ended_at.isoformat() if self.ended_at else None,
        }

        attendance = self.attendance()
        data['total_present'] = len(attendance)
        if include_attendance:
            data['attendance'] = [record.to_dict() for record in attendance]

        return data

    def __repr__(self) -> str:
        return f'<AttendanceSession {self.id} {self.state.value}>'


class SessionStore:
    """
    Thread-safe registry of sessions by id and of the active session per course.

    The store's lock guards only its two indexes. It is always taken before a
    session's lock, never after, so the two cannot deadlock.
    """

    def __init__(self, journal: SessionJournal = None):
        self._journal = journal
        self._lock = threading.Lock()
        self._sessions: Dict[str, AttendanceSession] = {}
        self._active_by_course: Dict[str, str] = {}

    def _active_locked(self, course_id: str) -> Optional[AttendanceSession]:
        session_id = self._active_by_course.get(course_id)
        if session_id is None:
            return None

        session = self._sessions[session_id]
        if not session.is_open:
            # Closed directly on the session rather than through the store
            del self._active_by_course[course_id]
            return None
        return session

    def start_session(self, config: SessionConfig) -> AttendanceSession:
        """
        Atomically create the course's single open session.

        Raises:
            InvalidConfig: malformed parameters.
            ActiveSessionExists: the course already has an open session.
        """
        errors = config.validate()
        if errors:
            raise InvalidConfig(errors)

        with self._lock:
            existing = self._active_locked(config.course_id)
            if existing is not None:
                raise ActiveSessionExists(config.course_id, existing.id)

            session = AttendanceSession(config, journal=self._journal)
            if self._journal is not None:
                self._journal.session_started(session)

            self._sessions[session.id] = session
            self._active_by_course[config.course_id] = session.id

        logger.info(
            "Session %s started for course %s by %s (radius %.0fm)",
            session.id, config.course_id, config.owner_id, config.radius_meters
        )
        return session

    def get(self, session_id: str) -> AttendanceSession:
        """Look up any session, open or closed."""
        with self._lock:
            session = self._sessions.get(session_id)

        if session is None:
            raise SessionNotFound(f"Session {session_id} not found")
        return session

    def active_for_course(self, course_id: str) -> AttendanceSession:
        with self._lock:
            session = self._active_locked(course_id)

        if session is None:
            raise SessionNotFound(f"No active session for course {course_id}")
        return session

    def close_session(self, session_id: str) -> AttendanceSession:
        """Close a session and free its course for a new one."""
        session = self.get(session_id)
        session.close()

        with self._lock:
            if self._active_by_course.get(session.config.course_id) == session.id:
                del self._active_by_course[session.config.course_id]

        return session

    def active_sessions_for_courses(self, course_ids: Iterable[str]) -> List[AttendanceSession]:
        with self._lock:
            sessions = [self._active_locked(course_id) for course_id in set(course_ids)]
        return sorted(
            (session for session in sessions if session is not None),
            key=lambda session: session.config.started_at
        )

    def active_sessions(self) -> List[AttendanceSession]:
        with self._lock:
            course_ids = list(self._active_by_course)
        return self.active_sessions_for_courses(course_ids)

    def sessions_for_course(self, course_id: str) -> List[AttendanceSession]:
        """Every known session of a course, newest first."""
        with self._lock:
            sessions = [s for s in self._sessions.values() if s.config.course_id == course_id]
        return sorted(sessions, key=lambda session: session.config.started_at, reverse=True)

    def load(self, sessions: Iterable[AttendanceSession]) -> int:
        """
        Register sessions restored from storage.

        When storage holds several open sessions for one course only the most
        recently started stays open; the older ones are closed.
        """
        count = 0
        with self._lock:
            for session in sorted(sessions, key=lambda s: s.config.started_at):
                session._journal = self._journal
                self._sessions[session.id] = session
                count += 1

                if not session.is_open:
                    continue

                course_id = session.config.course_id
                previous = self._active_by_course.get(course_id)
                if previous is not None:
                    logger.warning(
                        "Course %s has several open sessions; %s supersedes %s",
                        course_id, session.id, previous
                    )
                    self._sessions[previous].close()
                self._active_by_course[course_id] = session.id

        logger.info("Loaded %d attendance sessions", count)
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
