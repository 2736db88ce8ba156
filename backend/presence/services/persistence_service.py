# File: backend/presence/services/persistence_service.py
"""Database-backed journal for the session store."""
import logging
from datetime import datetime
from typing import List

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from presence.services.errors import DuplicateMarking
from presence.services.session_service import (
    AttendanceSession, PresenceRecord, SessionJournal, SessionStore
)

logger = logging.getLogger(__name__)


class SQLAlchemySessionJournal(SessionJournal):
    """
    Writes session changes through Flask-SQLAlchemy.

    Each hook commits its own transaction. A failed write is rolled back and
    re-raised, which aborts the in-memory change that triggered it.
    """

    def __init__(self, db):
        self.db = db

    def _commit(self, action: str) -> None:
        try:
            self.db.session.commit()
        except SQLAlchemyError:
            self.db.session.rollback()
            logger.exception("Failed to persist %s", action)
            raise

    def session_started(self, session: AttendanceSession) -> None:
        from presence.models.attendance_session import AttendanceSessionModel

        self.db.session.add(AttendanceSessionModel.from_session(session))
        self._commit(f"session {session.id}")

    def session_closed(self, session_id: str, ended_at: datetime) -> None:
        from presence.models.attendance_session import AttendanceSessionModel

        row = AttendanceSessionModel.get_by_id(session_id)
        if row is None:
            logger.warning("Closing session %s that was never persisted", session_id)
            return

        row.is_active = False
        row.ended_at = ended_at
        self._commit(f"close of session {session_id}")

    def presence_marked(self, session_id: str, record: PresenceRecord) -> None:
        from presence.models.attendance import AttendanceRecord

        self.db.session.add(AttendanceRecord.from_presence_record(session_id, record))
        try:
            self.db.session.commit()
        except IntegrityError:
            self.db.session.rollback()
            stored = AttendanceRecord.query.filter_by(
                session_id=session_id, participant_id=record.participant_id
            ).first()
            if stored is not None:
                # Another process already stored this participant
                raise DuplicateMarking()
            logger.exception(
                "Failed to persist presence of %s in session %s",
                record.participant_id, session_id
            )
            raise
        except SQLAlchemyError:
            self.db.session.rollback()
            logger.exception(
                "Failed to persist presence of %s in session %s",
                record.participant_id, session_id
            )
            raise

    def load_sessions(self) -> List[AttendanceSession]:
        """Every stored session with its records."""
        from presence.models.attendance_session import AttendanceSessionModel

        rows = AttendanceSessionModel.query.order_by(AttendanceSessionModel.started_at).all()
        return [row.to_session() for row in rows]


def rehydrate_store(store: SessionStore, journal: SQLAlchemySessionJournal) -> int:
    """Load stored sessions into ``store`` so invariants survive restarts."""
    return store.load(journal.load_sessions())
