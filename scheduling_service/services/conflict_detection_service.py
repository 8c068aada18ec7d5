# scheduling_service/services/conflict_detection_service.py
"""
Conflict detection for the sessions of one event.

Four independent scans (time overlap, resource double-booking, capacity
overrun, registrant double-booking) run over the active sessions of an
event. Every finding is persisted through the conflict CRUD, keyed by its
conflict_key, so a repeated scan returns the open rows instead of
inserting duplicates; an inconsistency that reappears after its conflict
was resolved is recorded again as a new row. Detection takes no locks and
never raises for an empty event.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from scheduling_service import crud
from scheduling_service.models.schedule_conflict import (
    ScheduleConflict,
    ConflictType,
    ConflictSeverity,
    ConflictResolutionStatus,
    build_conflict_key,
)
from scheduling_service.models.session import Session as SessionModel
from scheduling_service.models.session_capacity import SessionCapacity
from scheduling_service.models.session_registration import SessionRegistrationStatus
from scheduling_service.schemas.conflict import ConflictSummary
from scheduling_service.utils.intervals import (
    ensure_utc,
    find_overlapping_pairs,
    overlap_window,
)

logger = logging.getLogger(__name__)


def capacity_limit(session: SessionModel, capacity: Optional[SessionCapacity]) -> Optional[int]:
    """Smallest of the room capacity and the admission ceiling, if either is set."""
    limits = []
    if session.capacity is not None:
        limits.append(session.capacity)
    if capacity is not None:
        limits.append(capacity.admission_ceiling)
    return min(limits) if limits else None


class ConflictDetectionService:
    """Detects and persists scheduling conflicts for an event."""

    def detect_all_conflicts(self, db: Session, event_id: str) -> List[ScheduleConflict]:
        conflicts: List[ScheduleConflict] = []
        conflicts.extend(self.detect_time_overlap_conflicts(db, event_id))
        conflicts.extend(self.detect_resource_conflicts(db, event_id))
        conflicts.extend(self.detect_capacity_conflicts(db, event_id))
        conflicts.extend(self.detect_user_conflicts(db, event_id))
        logger.info(f"Detected {len(conflicts)} conflicts for event {event_id}")
        return conflicts

    def detect_time_overlap_conflicts(self, db: Session, event_id: str) -> List[ScheduleConflict]:
        """
        Pairs of sessions whose [start, end) windows intersect.

        Severity is ERROR when both sessions hold a booking of the same
        resource, WARNING when they share attendees and INFO otherwise.
        Time overlaps are informational and never auto-resolved.
        """
        sessions = crud.session.get_active_by_event(db, event_id=event_id)
        pairs = find_overlapping_pairs(sessions, lambda s: s.start_time, lambda s: s.end_time)
        if not pairs:
            return []

        session_ids = [s.id for s in sessions]
        resources_by_session: Dict[str, set] = defaultdict(set)
        for booking in crud.session_resource.get_active_by_sessions(db, session_ids=session_ids):
            resources_by_session[booking.session_id].add(booking.resource_id)
        attendees = crud.session_registration.get_attendee_ids_by_session(db, session_ids=session_ids)

        conflicts = []
        for first, second in pairs:
            window = overlap_window(first.start_time, first.end_time, second.start_time, second.end_time)
            shared_attendees = attendees.get(first.id, set()) & attendees.get(second.id, set())
            if resources_by_session[first.id] & resources_by_session[second.id]:
                severity = ConflictSeverity.ERROR
            elif shared_attendees:
                severity = ConflictSeverity.WARNING
            else:
                severity = ConflictSeverity.INFO

            conflict, _ = crud.schedule_conflict.record(
                db,
                conflict_key=build_conflict_key(ConflictType.TIME_OVERLAP, first.id, second.id),
                event_id=event_id,
                type=ConflictType.TIME_OVERLAP,
                severity=severity,
                title="Session Time Overlap",
                description=(
                    f"Sessions '{first.title}' and '{second.title}' overlap for {window.minutes} minutes"
                ),
                primary_session_id=first.id,
                secondary_session_id=second.id,
                conflict_start=window.start,
                conflict_end=window.end,
                affected_count=len(shared_attendees),
                can_auto_resolve=False,
            )
            conflicts.append(conflict)

        db.commit()
        return conflicts

    def detect_resource_conflicts(self, db: Session, event_id: str) -> List[ScheduleConflict]:
        """Overlapping bookings of one resource by two different sessions."""
        sessions = {s.id: s for s in crud.session.get_active_by_event(db, event_id=event_id)}
        bookings = crud.session_resource.get_active_by_sessions(db, session_ids=list(sessions))
        if not bookings:
            return []

        by_resource = defaultdict(list)
        for booking in bookings:
            by_resource[booking.resource_id].append(booking)
        resources = crud.resource.get_by_ids(db, list(by_resource))

        def booking_start(booking):
            return booking.booking_start or sessions[booking.session_id].start_time

        def booking_end(booking):
            return booking.booking_end or sessions[booking.session_id].end_time

        conflicts = []
        seen_keys = set()
        for resource_id, resource_bookings in by_resource.items():
            if len(resource_bookings) < 2:
                continue
            resource = resources.get(resource_id)
            resource_name = resource.name if resource else resource_id
            for first, second in find_overlapping_pairs(resource_bookings, booking_start, booking_end):
                if first.session_id == second.session_id:
                    continue
                key = build_conflict_key(
                    ConflictType.RESOURCE_CONFLICT, first.session_id, second.session_id, resource_id
                )
                # Several bookings of one resource by the same pair collapse into one conflict
                if key in seen_keys:
                    continue
                seen_keys.add(key)
                first_session = sessions[first.session_id]
                second_session = sessions[second.session_id]
                window = overlap_window(
                    booking_start(first), booking_end(first), booking_start(second), booking_end(second)
                )
                conflict, _ = crud.schedule_conflict.record(
                    db,
                    conflict_key=key,
                    event_id=event_id,
                    type=ConflictType.RESOURCE_CONFLICT,
                    severity=ConflictSeverity.ERROR,
                    title="Resource Double-Booking",
                    description=(
                        f"Resource '{resource_name}' is double-booked between sessions "
                        f"'{first_session.title}' and '{second_session.title}'"
                    ),
                    primary_session_id=first.session_id,
                    secondary_session_id=second.session_id,
                    resource_id=resource_id,
                    conflict_start=window.start,
                    conflict_end=window.end,
                    affected_count=2,
                    can_auto_resolve=True,
                    auto_resolution_strategy="REALLOCATE_LATER_BOOKING",
                )
                conflicts.append(conflict)

        db.commit()
        return conflicts

    def detect_capacity_conflicts(self, db: Session, event_id: str) -> List[ScheduleConflict]:
        """
        Sessions with more confirmed registrations than they can hold.

        The limit is the smaller of the room capacity on the session and the
        admission ceiling of its capacity configuration; sessions with
        neither are skipped.
        """
        sessions = crud.session.get_active_by_event(db, event_id=event_id)
        if not sessions:
            return []
        session_ids = [s.id for s in sessions]
        capacities = crud.session_capacity_crud.get_by_sessions(db, session_ids)
        counts = crud.session_registration.count_by_status_for_sessions(db, session_ids=session_ids)

        conflicts = []
        for session in sessions:
            limit = capacity_limit(session, capacities.get(session.id))
            if limit is None:
                continue
            confirmed = counts[session.id][SessionRegistrationStatus.CONFIRMED]
            if confirmed <= limit:
                continue

            conflict, created = crud.schedule_conflict.record(
                db,
                conflict_key=build_conflict_key(ConflictType.CAPACITY_CONFLICT, session.id),
                event_id=event_id,
                type=ConflictType.CAPACITY_CONFLICT,
                severity=ConflictSeverity.ERROR,
                title="Session Capacity Exceeded",
                description=(
                    f"Session '{session.title}' has {confirmed} registrations "
                    f"but capacity is only {limit}"
                ),
                primary_session_id=session.id,
                conflict_start=session.start_time,
                conflict_end=session.end_time,
                affected_count=confirmed - limit,
                can_auto_resolve=True,
                auto_resolution_strategy="MOVE_EXCESS_TO_WAITLIST",
            )
            if not created:
                conflict.affected_count = confirmed - limit
            conflicts.append(conflict)

        db.commit()
        return conflicts

    def detect_user_conflicts(self, db: Session, event_id: str) -> List[ScheduleConflict]:
        """
        Registrants holding active registrations for overlapping sessions.

        Registrations already flagged for rescheduling are left out.
        """
        active = crud.session_registration.get_active_by_event(db, event_id=event_id)
        by_registrant = defaultdict(list)
        for session_registration in active:
            if session_registration.needs_reschedule:
                continue
            by_registrant[session_registration.registration_id].append(session_registration)

        candidates = {rid: regs for rid, regs in by_registrant.items() if len(regs) > 1}
        if not candidates:
            return []

        session_ids = {r.session_id for regs in candidates.values() for r in regs}
        sessions = crud.session.get_by_ids(db, list(session_ids))
        registrants = crud.registration.get_by_ids(db, list(candidates))

        conflicts = []
        for registration_id, regs in candidates.items():
            registrant = registrants.get(registration_id)
            who = (registrant.user_name or registrant.user_email) if registrant else None
            who = who or registration_id
            user_sessions = [sessions[r.session_id] for r in regs]
            pairs = find_overlapping_pairs(user_sessions, lambda s: s.start_time, lambda s: s.end_time)
            for first, second in pairs:
                window = overlap_window(first.start_time, first.end_time, second.start_time, second.end_time)
                conflict, _ = crud.schedule_conflict.record(
                    db,
                    conflict_key=build_conflict_key(
                        ConflictType.USER_CONFLICT, first.id, second.id, registration_id
                    ),
                    event_id=event_id,
                    type=ConflictType.USER_CONFLICT,
                    severity=ConflictSeverity.WARNING,
                    title="User Double-Booking",
                    description=(
                        f"User {who} is registered for overlapping sessions "
                        f"'{first.title}' and '{second.title}'"
                    ),
                    primary_session_id=first.id,
                    secondary_session_id=second.id,
                    registration_id=registration_id,
                    conflict_start=window.start,
                    conflict_end=window.end,
                    affected_count=1,
                    can_auto_resolve=True,
                    auto_resolution_strategy="KEEP_EARLIEST_REGISTRATION",
                )
                conflicts.append(conflict)

        db.commit()
        return conflicts

    def get_conflict_summary(self, db: Session, event_id: str) -> ConflictSummary:
        conflicts = crud.schedule_conflict.get_by_event(db, event_id=event_id)
        unresolved = [
            c for c in conflicts if c.resolution_status == ConflictResolutionStatus.UNRESOLVED
        ]

        by_type: Dict[ConflictType, int] = defaultdict(int)
        by_severity: Dict[ConflictSeverity, int] = defaultdict(int)
        for conflict in conflicts:
            by_type[conflict.type] += 1
            by_severity[conflict.severity] += 1

        resolution_hours = [
            (ensure_utc(c.resolved_at) - ensure_utc(c.detected_at)).total_seconds() / 3600
            for c in conflicts
            if c.resolved and c.resolved_at
        ]

        return ConflictSummary(
            event_id=event_id,
            total_conflicts=len(conflicts),
            unresolved_conflicts=len(unresolved),
            critical_conflicts=sum(1 for c in conflicts if c.severity == ConflictSeverity.CRITICAL),
            auto_resolvable_conflicts=sum(1 for c in unresolved if c.can_auto_resolve),
            conflicts_by_type=dict(by_type),
            conflicts_by_severity=dict(by_severity),
            oldest_unresolved_conflict=min((ensure_utc(c.detected_at) for c in unresolved), default=None),
            average_resolution_time_hours=(
                sum(resolution_hours) / len(resolution_hours) if resolution_hours else 0.0
            ),
        )


conflict_detection_service = ConflictDetectionService()
