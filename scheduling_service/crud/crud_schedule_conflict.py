# scheduling_service/crud/crud_schedule_conflict.py
from typing import Any, List, Optional, Tuple
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .base import CRUDBase
from scheduling_service.models.schedule_conflict import (
    ScheduleConflict,
    ConflictResolution,
    ConflictResolutionStatus,
    RESOLVED_STATUSES,
)
from scheduling_service.schemas.conflict import (
    ScheduleConflict as ScheduleConflictSchema,
    ConflictResolutionCreate,
)
from scheduling_service.utils.intervals import utcnow


class CRUDScheduleConflict(CRUDBase[ScheduleConflict, ScheduleConflictSchema, ScheduleConflictSchema]):
    def get_by_key(self, db: Session, *, conflict_key: str) -> Optional[ScheduleConflict]:
        """The open (not yet resolved) conflict for a key, if any."""
        return (
            db.query(self.model)
            .filter(
                self.model.conflict_key == conflict_key,
                self.model.resolution_status.notin_(RESOLVED_STATUSES),
            )
            .first()
        )

    def get_history_by_key(self, db: Session, *, conflict_key: str) -> List[ScheduleConflict]:
        """Every row ever recorded for a key, oldest first."""
        return (
            db.query(self.model)
            .filter(self.model.conflict_key == conflict_key)
            .order_by(self.model.detected_at.asc(), self.model.id.asc())
            .all()
        )

    def record(self, db: Session, *, conflict_key: str, **fields: Any) -> Tuple[ScheduleConflict, bool]:
        """
        Insert a conflict unless an open one with the same key exists.

        Returns (conflict, created). An open row (UNRESOLVED, ACKNOWLEDGED
        or IGNORED) only gets its last_checked_at refreshed. Resolved rows
        are history: when the same inconsistency shows up again a new row
        is inserted. A concurrent insert of the same key is caught by the
        partial unique index and the winner's row is returned.
        Flushes only; the caller commits.
        """
        existing = self.get_by_key(db, conflict_key=conflict_key)
        if existing:
            existing.last_checked_at = utcnow()
            db.add(existing)
            return existing, False

        conflict = self.model(conflict_key=conflict_key, **fields)
        try:
            with db.begin_nested():
                db.add(conflict)
        except IntegrityError:
            existing = self.get_by_key(db, conflict_key=conflict_key)
            existing.last_checked_at = utcnow()
            return existing, False
        return conflict, True

    def get_by_event(self, db: Session, *, event_id: str, active_only: bool = True) -> List[ScheduleConflict]:
        query = db.query(self.model).filter(self.model.event_id == event_id)
        if active_only:
            query = query.filter(self.model.is_active == True)
        return query.order_by(self.model.detected_at.asc()).all()

    def get_auto_resolvable(self, db: Session, *, event_id: Optional[str] = None) -> List[ScheduleConflict]:
        """Unresolved, active conflicts flagged for automatic resolution, oldest first."""
        query = db.query(self.model).filter(
            self.model.resolution_status == ConflictResolutionStatus.UNRESOLVED,
            self.model.can_auto_resolve == True,
            self.model.is_active == True,
        )
        if event_id:
            query = query.filter(self.model.event_id == event_id)
        return query.order_by(self.model.detected_at.asc(), self.model.id.asc()).all()

    def add_resolution(
        self, db: Session, *, conflict: ScheduleConflict, obj_in: ConflictResolutionCreate
    ) -> ConflictResolution:
        """Stage a ConflictResolution for `conflict` (no commit)."""
        resolution = ConflictResolution(conflict_id=conflict.id, **obj_in.model_dump())
        db.add(resolution)
        return resolution

    def get_resolutions(self, db: Session, *, conflict_id: str) -> List[ConflictResolution]:
        return (
            db.query(ConflictResolution)
            .filter(ConflictResolution.conflict_id == conflict_id)
            .order_by(ConflictResolution.implemented_at.asc())
            .all()
        )


schedule_conflict = CRUDScheduleConflict(ScheduleConflict)
