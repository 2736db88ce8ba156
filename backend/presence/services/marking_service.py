# File: backend/presence/services/marking_service.py
"""Verified marking: biometric + geofence checks, then an atomic commit."""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from presence.services.errors import (
    AttendanceError, FaceMismatch, LocationRequired, OutsideGeofence, SessionNotFound,
    VerificationUnavailable
)
from presence.services.face_recognition_service import BiometricVerifier, MatchResult
from presence.services.gps_service import Coordinate, GPSService
from presence.services.session_service import (
    AttendanceSession, PresenceRecord, SessionStore, utcnow
)

logger = logging.getLogger(__name__)


class MarkingStatus(Enum):
    """Terminal outcome of one marking attempt."""
    SUCCESS = "success"
    SESSION_NOT_FOUND = "session_not_found"
    SESSION_CLOSED = "session_closed"
    DUPLICATE_MARKING = "duplicate_marking"
    VERIFICATION_UNAVAILABLE = "verification_unavailable"
    FACE_MISMATCH = "face_mismatch"
    OUTSIDE_GEOFENCE = "outside_geofence"
    LOCATION_REQUIRED = "location_required"


@dataclass
class MarkingOutcome:
    """Result of a marking attempt with enough detail to explain a rejection."""
    status: MarkingStatus
    session_id: str
    participant_id: str
    message: str
    record: Optional[PresenceRecord] = None
    distance_meters: Optional[float] = None
    radius_meters: Optional[float] = None
    match_distance: Optional[float] = None

    @classmethod
    def rejected(cls, error: AttendanceError, session_id: str, participant_id: str) -> 'MarkingOutcome':
        """Build the outcome for an engine rejection, keeping its measurements."""
        return cls(
            status=MarkingStatus(error.code),
            session_id=session_id,
            participant_id=participant_id,
            message=error.message,
            distance_meters=getattr(error, 'distance_meters', None),
            radius_meters=getattr(error, 'radius_meters', None),
            match_distance=getattr(error, 'match_distance', None)
        )

    @property
    def success(self) -> bool:
        return self.status is MarkingStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'session_id': self.session_id,
            'participant_id': self.participant_id,
            'message': self.message,
            'distance': self.distance_meters,
            'radius': self.radius_meters,
            'match_distance': self.match_distance,
            'record': self.record.to_dict() if self.record else None
        }


class VerifiedMarkingWorkflow:
    """
    Orchestrates a single "mark present" attempt.

    🎯 Flow (each step can end the attempt):
    1. Session must exist and be open (cheap pre-check)
    2. Face must match the registered reference
    3. Reported location must be inside the session radius (skipped when no
       location was reported, unless ``require_location`` is set)
    4. Commit through ``AttendanceSession.mark_present``

    Each step raises its ``AttendanceError``; the first one raised becomes the
    outcome. The verifier runs before any session lock is taken; only the
    commit in step 4 is serialised per session.
    """

    def __init__(
        self,
        store: SessionStore,
        verifier: BiometricVerifier,
        require_location: bool = False,
        clock: Callable = utcnow
    ):
        self.store = store
        self.verifier = verifier
        self.require_location = require_location
        self.clock = clock

    def open_session(self, session_id: str) -> AttendanceSession:
        """Resolve a session that is still accepting markings."""
        try:
            session = self.store.get(session_id)
        except SessionNotFound:
            session = None

        if session is None or not session.is_open:
            raise SessionNotFound("No active attendance session found")
        return session

    def precheck(self, session_id: str, participant_id: str) -> Optional[MarkingOutcome]:
        """Rejection for a session that cannot be marked, None when it is open."""
        try:
            self.open_session(session_id)
        except SessionNotFound as error:
            return self._log(MarkingOutcome.rejected(error, session_id, participant_id))
        return None

    def mark_with_verification(
        self,
        session_id: str,
        participant_id: str,
        captured_image: Any,
        reference_image: Any,
        reported_location: Optional[Coordinate] = None
    ) -> MarkingOutcome:
        """Run every check and commit a presence record if all pass."""
        try:
            session = self.open_session(session_id)
            match = self._match_face(participant_id, captured_image, reference_image)
            distance = self._check_location(session, reported_location)

            record = PresenceRecord(
                participant_id=participant_id,
                marked_at=self.clock(),
                verified_location=reported_location,
                distance_meters=distance,
                biometric_verified=True
            )
            session.mark_present(participant_id, record)
        except AttendanceError as error:
            return self._log(MarkingOutcome.rejected(error, session_id, participant_id))

        return self._log(MarkingOutcome(
            status=MarkingStatus.SUCCESS,
            session_id=session_id,
            participant_id=participant_id,
            message="Attendance marked successfully (Face & location verified)"
            if distance is not None else "Attendance marked successfully (Face verified)",
            record=record,
            distance_meters=distance,
            radius_meters=session.config.radius_meters,
            match_distance=match.distance
        ))

    def _match_face(self, participant_id: str, captured_image: Any, reference_image: Any) -> MatchResult:
        try:
            match = self.verifier.verify(captured_image, reference_image)
        except VerificationUnavailable:
            raise
        except Exception as e:
            logger.exception("Face verifier failed for %s", participant_id)
            raise VerificationUnavailable() from e

        if not match.is_match:
            raise FaceMismatch(match.distance)
        return match

    def _check_location(self, session: AttendanceSession, location: Optional[Coordinate]) -> Optional[float]:
        """Distance from the session origin, None when no location was reported."""
        radius = session.config.radius_meters

        if location is None:
            if self.require_location:
                raise LocationRequired(radius)
            return None

        check = GPSService.verify_location(location, session.config.origin, radius)
        if not check['is_inside']:
            raise OutsideGeofence(check['distance'], radius)
        return check['distance']

    @staticmethod
    def _log(outcome: MarkingOutcome) -> MarkingOutcome:
        log = logger.info if outcome.success else logger.warning
        log("Marking %s for %s in session %s: %s",
            outcome.status.value, outcome.participant_id, outcome.session_id, outcome.message)
        return outcome
