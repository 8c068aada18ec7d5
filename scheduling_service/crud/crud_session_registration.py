# scheduling_service/crud/crud_session_registration.py
from typing import Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session

from .base import CRUDBase
from scheduling_service.models.session import Session as SessionModel
from scheduling_service.models.session_registration import (
    SessionRegistration,
    SessionRegistrationStatus,
)
from scheduling_service.schemas.capacity import SessionRegistration as SessionRegistrationSchema


class CRUDSessionRegistration(
    CRUDBase[SessionRegistration, SessionRegistrationSchema, SessionRegistrationSchema]
):
    def get_for_update(self, db: Session, id: str) -> Optional[SessionRegistration]:
        """Re-read a registration with a row lock (no-op on SQLite)."""
        return (
            db.query(self.model)
            .filter(self.model.id == id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def get_active_for(
        self, db: Session, *, session_id: str, registration_id: str
    ) -> Optional[SessionRegistration]:
        """A registrant's non-cancelled registration for a session, if any."""
        return (
            db.query(self.model)
            .filter(
                self.model.session_id == session_id,
                self.model.registration_id == registration_id,
                self.model.status != SessionRegistrationStatus.CANCELLED,
            )
            .first()
        )

    def create_pending(self, db: Session, *, session_id: str, registration_id: str) -> SessionRegistration:
        """Stage a PENDING registration in the current transaction (no commit)."""
        db_obj = self.model(
            session_id=session_id,
            registration_id=registration_id,
            status=SessionRegistrationStatus.PENDING,
        )
        db.add(db_obj)
        db.flush()
        return db_obj

    def count_by_status(self, db: Session, *, session_id: str) -> Dict[SessionRegistrationStatus, int]:
        rows = (
            db.query(self.model.status, func.count(self.model.id))
            .filter(self.model.session_id == session_id)
            .group_by(self.model.status)
            .all()
        )
        counts = {status: 0 for status in SessionRegistrationStatus}
        for status, count in rows:
            counts[status] = count
        return counts

    def max_waitlist_position(self, db: Session, *, session_id: str) -> int:
        return (
            db.query(func.max(self.model.waitlist_position))
            .filter(self.model.session_id == session_id)
            .scalar()
            or 0
        )

    def get_waitlisted_ordered(
        self, db: Session, *, session_id: str, limit: Optional[int] = None
    ) -> List[SessionRegistration]:
        """Waitlisted registrations, smallest position first."""
        query = (
            db.query(self.model)
            .filter(
                self.model.session_id == session_id,
                self.model.status == SessionRegistrationStatus.WAITLISTED,
            )
            .order_by(self.model.waitlist_position.asc(), self.model.waitlisted_at.asc())
        )
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def get_confirmed_latest_first(
        self, db: Session, *, session_id: str, limit: int
    ) -> List[SessionRegistration]:
        return (
            db.query(self.model)
            .filter(
                self.model.session_id == session_id,
                self.model.status == SessionRegistrationStatus.CONFIRMED,
            )
            .order_by(self.model.registered_at.desc(), self.model.id.desc())
            .limit(limit)
            .all()
        )

    def get_active_by_event(self, db: Session, *, event_id: str) -> List[SessionRegistration]:
        """CONFIRMED and WAITLISTED registrations for every active session of an event."""
        return (
            db.query(self.model)
            .join(SessionModel, SessionModel.id == self.model.session_id)
            .filter(
                SessionModel.event_id == event_id,
                SessionModel.is_active == True,
                self.model.status.in_(SessionRegistrationStatus.active_values()),
            )
            .all()
        )

    def get_attendee_ids_by_session(self, db: Session, *, session_ids: List[str]) -> Dict[str, set]:
        if not session_ids:
            return {}
        rows = (
            db.query(self.model.session_id, self.model.registration_id)
            .filter(
                self.model.session_id.in_(session_ids),
                self.model.status.in_(SessionRegistrationStatus.active_values()),
            )
            .all()
        )
        attendees: Dict[str, set] = {session_id: set() for session_id in session_ids}
        for session_id, registration_id in rows:
            attendees[session_id].add(registration_id)
        return attendees

    def count_by_status_for_sessions(
        self, db: Session, *, session_ids: List[str]
    ) -> Dict[str, Dict[SessionRegistrationStatus, int]]:
        if not session_ids:
            return {}
        rows = (
            db.query(self.model.session_id, self.model.status, func.count(self.model.id))
            .filter(self.model.session_id.in_(session_ids))
            .group_by(self.model.session_id, self.model.status)
            .all()
        )
        result = {
            session_id: {status: 0 for status in SessionRegistrationStatus}
            for session_id in session_ids
        }
        for session_id, status, count in rows:
            result[session_id][status] = count
        return result


session_registration = CRUDSessionRegistration(SessionRegistration)
