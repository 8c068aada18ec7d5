# scheduling_service/services/conflict_resolution_service.py
"""
Manual and automatic resolution of detected schedule conflicts.

Manual resolution only records what a human did; it never touches
sessions or capacities. Automatic resolution applies one fixed policy
per conflict type and leaves the conflict unresolved whenever the policy
cannot decide (ties, missing records, no room on the waitlist).
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scheduling_service import crud
from scheduling_service.core.config import settings
from scheduling_service.core.exceptions import (
    InvalidArgumentError,
    NotFoundError,
    SchedulingServiceError,
)
from scheduling_service.models.resource import ResourceBookingStatus
from scheduling_service.models.schedule_conflict import (
    ScheduleConflict,
    ConflictType,
    ConflictResolutionStatus,
)
from scheduling_service.schemas.conflict import ConflictResolutionCreate
from scheduling_service.services.capacity_management_service import capacity_management_service
from scheduling_service.services.conflict_detection_service import capacity_limit
from scheduling_service.utils.intervals import ensure_utc, utcnow

logger = logging.getLogger(__name__)


class ConflictResolutionService:
    def __init__(self, capacity_service=None):
        self.capacity_service = capacity_service or capacity_management_service

    def _get_conflict(self, db: Session, conflict_id: str) -> ScheduleConflict:
        conflict = crud.schedule_conflict.get(db, conflict_id)
        if not conflict:
            raise NotFoundError("ScheduleConflict", conflict_id)
        return conflict

    def resolve_conflict(
        self, db: Session, conflict_id: str, resolution: ConflictResolutionCreate
    ) -> ScheduleConflict:
        """Record a manual resolution and mark the conflict RESOLVED."""
        conflict = self._get_conflict(db, conflict_id)
        if conflict.resolved:
            raise InvalidArgumentError(
                f"Conflict {conflict_id} is already {conflict.resolution_status.value}",
                conflict_id=conflict_id,
            )

        crud.schedule_conflict.add_resolution(db, conflict=conflict, obj_in=resolution)
        conflict.resolution_status = ConflictResolutionStatus.RESOLVED
        conflict.resolved_by = resolution.implemented_by
        conflict.resolved_at = utcnow()
        conflict.resolution_notes = resolution.notes or resolution.description
        db.commit()
        db.refresh(conflict)

        logger.info(f"Conflict {conflict_id} resolved by {resolution.implemented_by}")
        return conflict

    def acknowledge_conflict(
        self, db: Session, conflict_id: str, acknowledged_by: str, notes: Optional[str] = None
    ) -> ScheduleConflict:
        conflict = self._get_conflict(db, conflict_id)
        if conflict.resolution_status != ConflictResolutionStatus.UNRESOLVED:
            raise InvalidArgumentError(
                f"Only unresolved conflicts can be acknowledged (status {conflict.resolution_status.value})",
                conflict_id=conflict_id,
            )
        conflict.resolution_status = ConflictResolutionStatus.ACKNOWLEDGED
        conflict.resolution_notes = notes or f"Acknowledged by {acknowledged_by}"
        db.commit()
        db.refresh(conflict)
        return conflict

    def ignore_conflict(
        self, db: Session, conflict_id: str, ignored_by: str, reason: Optional[str] = None
    ) -> ScheduleConflict:
        """Dismiss a conflict. Ignored conflicts are never auto-resolved."""
        conflict = self._get_conflict(db, conflict_id)
        if conflict.resolved:
            raise InvalidArgumentError(
                f"Conflict {conflict_id} is already {conflict.resolution_status.value}",
                conflict_id=conflict_id,
            )
        conflict.resolution_status = ConflictResolutionStatus.IGNORED
        conflict.resolved_by = ignored_by
        conflict.resolution_notes = reason
        db.commit()
        db.refresh(conflict)
        logger.info(f"Conflict {conflict_id} ignored by {ignored_by}")
        return conflict

    def auto_resolve_conflicts(self, db: Session, event_id: Optional[str] = None) -> List[ScheduleConflict]:
        """
        Apply the automatic policy to every unresolved, auto-resolvable conflict
        (of one event, or of all events). A failure on one conflict is logged
        and rolled back; the rest of the batch still runs.
        """
        resolved = []
        for conflict in crud.schedule_conflict.get_auto_resolvable(db, event_id=event_id):
            conflict_id = conflict.id
            try:
                outcome = self._apply_policy(db, conflict)
                if outcome is None:
                    db.rollback()
                    logger.info(f"Conflict {conflict_id} left unresolved by automatic policy")
                    continue

                conflict = self._get_conflict(db, conflict_id)
                crud.schedule_conflict.add_resolution(db, conflict=conflict, obj_in=outcome)
                conflict.resolution_status = ConflictResolutionStatus.AUTO_RESOLVED
                conflict.resolved_by = settings.AUTO_RESOLVE_ACTOR
                conflict.resolved_at = utcnow()
                conflict.resolution_notes = outcome.description
                db.commit()
                db.refresh(conflict)
                resolved.append(conflict)
                logger.info(f"Auto-resolved conflict {conflict_id} ({conflict.type.value})")
            except (SchedulingServiceError, SQLAlchemyError) as e:
                logger.error(f"Failed to auto-resolve conflict {conflict_id}: {e}", exc_info=True)
                db.rollback()
                continue
        return resolved

    def _apply_policy(self, db: Session, conflict: ScheduleConflict) -> Optional[ConflictResolutionCreate]:
        if conflict.type == ConflictType.USER_CONFLICT:
            return self._resolve_user_conflict(db, conflict)
        if conflict.type == ConflictType.RESOURCE_CONFLICT:
            return self._resolve_resource_conflict(db, conflict)
        if conflict.type == ConflictType.CAPACITY_CONFLICT:
            return self._resolve_capacity_conflict(db, conflict)
        return None

    def _resolve_user_conflict(self, db: Session, conflict: ScheduleConflict) -> Optional[ConflictResolutionCreate]:
        """Keep the earlier registration, flag the later one for rescheduling."""
        if not conflict.registration_id or not conflict.secondary_session_id:
            return None
        registrations = [
            crud.session_registration.get_active_for(
                db, session_id=session_id, registration_id=conflict.registration_id
            )
            for session_id in (conflict.primary_session_id, conflict.secondary_session_id)
        ]
        if None in registrations:
            return None
        first, second = registrations
        if ensure_utc(first.registered_at) == ensure_utc(second.registered_at):
            return None

        later = max(registrations, key=lambda r: ensure_utc(r.registered_at))
        later.needs_reschedule = True
        later.append_note(f"Overlaps another session registration (conflict {conflict.id}).")
        return ConflictResolutionCreate(
            resolution_type="KEEP_EARLIEST_REGISTRATION",
            description=f"Flagged session registration {later.id} for rescheduling",
            implemented_by=settings.AUTO_RESOLVE_ACTOR,
            changes_summary=f"needs_reschedule set on {later.id}",
            affected_registrations=1,
        )

    def _resolve_resource_conflict(self, db: Session, conflict: ScheduleConflict) -> Optional[ConflictResolutionCreate]:
        """Keep the booking of the earlier session; the later one needs reallocation."""
        if not conflict.resource_id or not conflict.secondary_session_id:
            return None
        sessions = crud.session.get_by_ids(db, [conflict.primary_session_id, conflict.secondary_session_id])
        if len(sessions) < 2:
            return None
        first, second = sessions[conflict.primary_session_id], sessions[conflict.secondary_session_id]
        if ensure_utc(first.start_time) == ensure_utc(second.start_time):
            return None
        later = max((first, second), key=lambda s: ensure_utc(s.start_time))

        bookings = crud.session_resource.get_by_session_and_resource(
            db, session_id=later.id, resource_id=conflict.resource_id
        )
        if not bookings:
            return None
        for booking in bookings:
            booking.status = ResourceBookingStatus.CONFLICT
            booking.notes = f"{booking.notes or ''} Needs reallocation (conflict {conflict.id}).".strip()
        return ConflictResolutionCreate(
            resolution_type="REALLOCATE_LATER_BOOKING",
            description=f"Released resource {conflict.resource_id} from session '{later.title}'",
            implemented_by=settings.AUTO_RESOLVE_ACTOR,
            changes_summary=f"{len(bookings)} booking(s) of session {later.id} marked CONFLICT",
            affected_sessions=1,
            affected_resources=len(bookings),
        )

    def _resolve_capacity_conflict(self, db: Session, conflict: ScheduleConflict) -> Optional[ConflictResolutionCreate]:
        """Move the latest excess confirmations to the waitlist."""
        session = crud.session.get(db, conflict.primary_session_id)
        if not session:
            return None
        capacity = crud.session_capacity_crud.get_by_session(db, session.id)
        limit = capacity_limit(session, capacity)
        if limit is None:
            return None

        moved = self.capacity_service.move_excess_to_waitlist(db, session.id, limit)
        if not moved:
            return None
        return ConflictResolutionCreate(
            resolution_type="AUTO_CAPACITY_ADJUSTMENT",
            description=f"Moved {len(moved)} excess registrations to waitlist",
            implemented_by=settings.AUTO_RESOLVE_ACTOR,
            changes_summary=", ".join(r.id for r in moved),
            affected_sessions=1,
            affected_registrations=len(moved),
        )


conflict_resolution_service = ConflictResolutionService()
