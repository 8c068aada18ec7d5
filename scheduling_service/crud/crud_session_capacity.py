# scheduling_service/crud/crud_session_capacity.py
"""
CRUD operations for Session Capacity management.

Counter changes are conditional UPDATE statements evaluated by the
database (`... WHERE current_registered < ceiling`), so two writers can
never both take the last seat. They flush but do not commit: the
capacity service commits them together with the registration change.
"""

from typing import Dict, List, Optional, Union
from sqlalchemy.orm import Session
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.sql.elements import ColumnElement

from scheduling_service.models.session_capacity import SessionCapacity
from scheduling_service.schemas.capacity import SessionCapacityCreate
from scheduling_service.utils.intervals import utcnow


class CRUDSessionCapacity:
    """CRUD operations for Session Capacity management."""

    def get_by_session(self, db: Session, session_id: str) -> Optional[SessionCapacity]:
        """Get capacity settings for a specific session."""
        return db.query(SessionCapacity).filter(SessionCapacity.session_id == session_id).first()

    def get_for_update(self, db: Session, session_id: str) -> Optional[SessionCapacity]:
        """Re-read the capacity row with a row lock, discarding stale identity-map state."""
        return (
            db.query(SessionCapacity)
            .filter(SessionCapacity.session_id == session_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def get_by_sessions(self, db: Session, session_ids: List[str]) -> Dict[str, SessionCapacity]:
        if not session_ids:
            return {}
        rows = db.query(SessionCapacity).filter(SessionCapacity.session_id.in_(session_ids)).all()
        return {row.session_id: row for row in rows}

    def get_or_create(self, db: Session, session_id: str, default_capacity: int = 100) -> SessionCapacity:
        """
        Get existing capacity or create with default values.
        Sessions that were never configured get a plain FIXED capacity without waitlist.
        """
        capacity = self.get_by_session(db, session_id)
        if not capacity:
            capacity = SessionCapacity(
                session_id=session_id,
                maximum_capacity=default_capacity,
                current_registered=0,
                current_waitlisted=0,
                current_pending=0,
                enable_waitlist=False,
                waitlist_capacity=0,
            )
            db.add(capacity)
            try:
                db.commit()
            except IntegrityError:
                # Created concurrently by another request
                db.rollback()
                return self.get_by_session(db, session_id)
            db.refresh(capacity)
        return capacity

    def create(
        self,
        db: Session,
        session_id: str,
        obj_in: SessionCapacityCreate,
        counts: Optional[Dict[str, int]] = None,
    ) -> SessionCapacity:
        """Create a new session capacity entry, seeding counters from `counts`."""
        counts = counts or {}
        capacity = SessionCapacity(
            session_id=session_id,
            **obj_in.model_dump(),
            current_registered=counts.get("registered", 0),
            current_waitlisted=counts.get("waitlisted", 0),
            current_pending=counts.get("pending", 0),
            last_waitlist_position=counts.get("last_waitlist_position", 0),
        )
        db.add(capacity)
        db.commit()
        db.refresh(capacity)
        return capacity

    def get_auto_promotable(self, db: Session) -> List[SessionCapacity]:
        """Capacities with people waiting and auto-promotion switched on."""
        return (
            db.query(SessionCapacity)
            .filter(
                SessionCapacity.auto_promote_from_waitlist == True,
                SessionCapacity.enable_waitlist == True,
                SessionCapacity.current_waitlisted > 0,
            )
            .all()
        )

    def try_increment_registered(
        self, db: Session, session_id: str, ceiling: Union[int, ColumnElement]
    ) -> bool:
        """Take one confirmed seat if the count is still below `ceiling`."""
        result = db.execute(
            update(SessionCapacity)
            .where(
                SessionCapacity.session_id == session_id,
                SessionCapacity.current_registered < ceiling,
            )
            .values(
                current_registered=SessionCapacity.current_registered + 1,
                last_capacity_update=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def try_increment_waitlisted(self, db: Session, session_id: str) -> Optional[int]:
        """
        Take one waitlist slot and hand out the next waitlist position.
        Returns the new position, or None if the waitlist is off or full.
        """
        result = db.execute(
            update(SessionCapacity)
            .where(
                SessionCapacity.session_id == session_id,
                SessionCapacity.enable_waitlist == True,
                SessionCapacity.current_waitlisted < SessionCapacity.waitlist_capacity,
            )
            .values(
                current_waitlisted=SessionCapacity.current_waitlisted + 1,
                last_waitlist_position=SessionCapacity.last_waitlist_position + 1,
                last_capacity_update=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        return (
            db.query(SessionCapacity.last_waitlist_position)
            .filter(SessionCapacity.session_id == session_id)
            .scalar()
        )

    def decrement_registered(self, db: Session, session_id: str) -> bool:
        result = db.execute(
            update(SessionCapacity)
            .where(SessionCapacity.session_id == session_id, SessionCapacity.current_registered > 0)
            .values(current_registered=SessionCapacity.current_registered - 1, last_capacity_update=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def decrement_waitlisted(self, db: Session, session_id: str) -> bool:
        result = db.execute(
            update(SessionCapacity)
            .where(SessionCapacity.session_id == session_id, SessionCapacity.current_waitlisted > 0)
            .values(current_waitlisted=SessionCapacity.current_waitlisted - 1, last_capacity_update=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def promote_counts(
        self, db: Session, session_id: str, ceiling: Union[int, ColumnElement]
    ) -> bool:
        """Move one person from the waitlist counter to the confirmed counter."""
        result = db.execute(
            update(SessionCapacity)
            .where(
                SessionCapacity.session_id == session_id,
                SessionCapacity.current_waitlisted > 0,
                SessionCapacity.current_registered < ceiling,
            )
            .values(
                current_waitlisted=SessionCapacity.current_waitlisted - 1,
                current_registered=SessionCapacity.current_registered + 1,
                last_capacity_update=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def set_counts(
        self,
        db: Session,
        session_id: str,
        *,
        registered: int,
        waitlisted: int,
        pending: int,
        last_waitlist_position: int,
    ) -> None:
        db.execute(
            update(SessionCapacity)
            .where(SessionCapacity.session_id == session_id)
            .values(
                current_registered=registered,
                current_waitlisted=waitlisted,
                current_pending=pending,
                last_waitlist_position=last_waitlist_position,
                last_capacity_update=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )


# Singleton instance
session_capacity_crud = CRUDSessionCapacity()
