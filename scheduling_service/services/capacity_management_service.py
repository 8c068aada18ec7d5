# scheduling_service/services/capacity_management_service.py
"""
Capacity arbitration for sessions: admission, cancellation, waitlist
promotion and counter reconciliation.

All counter mutations for one session run under that session's lock
(see core/locks.py) and go through conditional UPDATE statements, so two
concurrent admissions can never both take the last seat. Each mutation
is a single transaction: it either commits the registration change and
the counter change together or rolls both back.
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from scheduling_service import crud
from scheduling_service.core.config import settings
from scheduling_service.core.exceptions import (
    CapacityExceededError,
    InvalidArgumentError,
    NotFoundError,
    SchedulingServiceError,
    ValidationFailedError,
)
from scheduling_service.core.locks import get_lock_manager
from scheduling_service.models.session_capacity import SessionCapacity, CapacityType
from scheduling_service.models.session_registration import (
    SessionRegistration,
    SessionRegistrationStatus,
)
from scheduling_service.schemas import capacity as capacity_schemas
from scheduling_service.schemas.capacity import (
    CapacityAnalytics,
    CapacityAvailability,
    CapacityOptimizationSuggestion,
    OptimizationType,
    SessionCapacityCreate,
    SessionCapacityUpdate,
    SuggestionPriority,
)
from scheduling_service.services.prerequisite_validation_service import (
    prerequisite_validation_service,
    RECOMMENDATION_PREFIX,
)
from scheduling_service.utils.intervals import utcnow

logger = logging.getLogger(__name__)

_PRIORITY_RANK = {
    SuggestionPriority.HIGH: 3,
    SuggestionPriority.MEDIUM: 2,
    SuggestionPriority.LOW: 1,
}

# Transient database errors (lock contention, dropped connections) are retried
_retry_transient = retry(
    stop=stop_after_attempt(settings.CAPACITY_UPDATE_MAX_ATTEMPTS),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
    retry=retry_if_exception_type(OperationalError),
    reraise=True,
)


class CapacityManagementService:
    """Service for session capacity admission control."""

    def __init__(self, lock_manager=None):
        self._lock_manager = lock_manager

    @property
    def lock_manager(self):
        if self._lock_manager is None:
            self._lock_manager = get_lock_manager()
        return self._lock_manager

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def create_session_capacity(
        self, db: Session, session_id: str, config: SessionCapacityCreate
    ) -> SessionCapacity:
        """
        Create the capacity configuration of a session.

        Counters start from the registrations already recorded for the
        session, so configuring a session late does not lose anyone.
        """
        if not crud.session.get(db, session_id):
            raise NotFoundError("Session", session_id)
        if crud.session_capacity_crud.get_by_session(db, session_id):
            raise InvalidArgumentError(
                "Capacity configuration already exists for this session", session_id=session_id
            )

        counts = crud.session_registration.count_by_status(db, session_id=session_id)
        waitlisted = counts[SessionRegistrationStatus.WAITLISTED]
        if waitlisted > config.waitlist_capacity:
            raise InvalidArgumentError(
                f"Waitlist capacity {config.waitlist_capacity} is below the "
                f"{waitlisted} registrations already waitlisted",
                session_id=session_id,
            )

        capacity = crud.session_capacity_crud.create(
            db,
            session_id,
            config,
            counts={
                "registered": counts[SessionRegistrationStatus.CONFIRMED],
                "waitlisted": waitlisted,
                "pending": counts[SessionRegistrationStatus.PENDING],
                "last_waitlist_position": crud.session_registration.max_waitlist_position(
                    db, session_id=session_id
                ),
            },
        )
        logger.info(
            f"Created capacity for session {session_id}: "
            f"max={capacity.maximum_capacity}, waitlist={capacity.waitlist_capacity}"
        )
        return capacity

    def update_session_capacity(
        self, db: Session, session_id: str, update: SessionCapacityUpdate
    ) -> SessionCapacity:
        """
        Change a capacity configuration.

        The new limits must still hold the registrations already placed.
        When auto-promotion is on and the admission ceiling grows, waitlisted
        registrations are promoted into the new seats in FIFO order.
        """
        if not crud.session_capacity_crud.get_by_session(db, session_id):
            raise NotFoundError("SessionCapacity", session_id)

        data = update.model_dump(exclude_unset=True)
        reason = data.pop("reason", None)

        with self.lock_manager.hold(session_id):
            capacity, promoted = self._apply_capacity_update(db, session_id, data)

        logger.info(
            f"Updated capacity for session {session_id} "
            f"(max={capacity.maximum_capacity}, promoted={len(promoted)}, reason={reason or 'n/a'})"
        )
        return capacity

    @_retry_transient
    def _apply_capacity_update(self, db: Session, session_id: str, data: dict):
        try:
            capacity = crud.session_capacity_crud.get_for_update(db, session_id)
            old_ceiling = capacity.admission_ceiling

            new_max = data.get("maximum_capacity", capacity.maximum_capacity)
            new_type = data.get("capacity_type", capacity.capacity_type)
            new_overbooking = data.get("allow_overbooking", capacity.allow_overbooking)
            overbooking_in_effect = bool(new_overbooking) and new_type == CapacityType.DYNAMIC
            if new_max < capacity.current_registered and not overbooking_in_effect:
                raise InvalidArgumentError(
                    f"Maximum capacity {new_max} is below the "
                    f"{capacity.current_registered} confirmed registrations",
                    session_id=session_id,
                )
            new_waitlist_capacity = data.get("waitlist_capacity", capacity.waitlist_capacity)
            if new_waitlist_capacity < capacity.current_waitlisted:
                raise InvalidArgumentError(
                    f"Waitlist capacity {new_waitlist_capacity} is below the "
                    f"{capacity.current_waitlisted} waitlisted registrations",
                    session_id=session_id,
                )

            for field, value in data.items():
                setattr(capacity, field, value)
            capacity.last_capacity_update = utcnow()
            db.flush()

            promoted: List[SessionRegistration] = []
            if (
                capacity.auto_promote_from_waitlist
                and capacity.admission_ceiling > old_ceiling
                and capacity.current_waitlisted > 0
            ):
                promoted = self._promote_waitlisted(db, capacity)

            db.commit()
            db.refresh(capacity)
            return capacity, promoted
        except (SchedulingServiceError, SQLAlchemyError):
            db.rollback()
            raise

    def get_session_capacity(self, db: Session, session_id: str) -> SessionCapacity:
        capacity = crud.session_capacity_crud.get_by_session(db, session_id)
        if not capacity:
            raise NotFoundError("SessionCapacity", session_id)
        return capacity

    def check_availability(self, db: Session, session_id: str) -> CapacityAvailability:
        """
        Current availability of a session. Sessions without a configuration
        get the default one first.
        """
        if not crud.session.get(db, session_id):
            raise NotFoundError("Session", session_id)
        capacity = crud.session_capacity_crud.get_or_create(
            db, session_id, default_capacity=settings.DEFAULT_SESSION_CAPACITY
        )
        remaining = capacity.admission_ceiling - capacity.current_registered
        return CapacityAvailability(
            session_id=session_id,
            available=remaining > 0,
            available_slots=capacity.available_slots,
            waitlist_slots=capacity.waitlist_slots,
            maximum_capacity=capacity.maximum_capacity,
            current_registered=capacity.current_registered,
            current_waitlisted=capacity.current_waitlisted,
            waitlist_enabled=capacity.enable_waitlist,
            is_low_capacity=0 < remaining <= capacity.low_capacity_threshold,
            is_high_demand=capacity.utilization >= capacity.high_demand_threshold,
        )

    # ------------------------------------------------------------------
    # Admission & cancellation
    # ------------------------------------------------------------------

    def admit_registration(
        self,
        db: Session,
        session_id: str,
        registration_id: str,
        admin_override: bool = False,
    ) -> SessionRegistration:
        """
        Place a registrant into a session.

        Prerequisites and strict dependencies are checked first. Then, under
        the session lock, a registrant who already holds an active
        registration for the session is refused with InvalidArgumentError,
        and otherwise the registration is confirmed if a seat is free,
        otherwise waitlisted at the next waitlist position, otherwise
        CapacityExceededError is raised and nothing is written.
        """
        session = crud.session.get(db, session_id)
        if not session:
            raise NotFoundError("Session", session_id)
        if not session.is_active:
            raise InvalidArgumentError(f"Session {session_id} is not active", session_id=session_id)
        if not crud.registration.get(db, registration_id):
            raise NotFoundError("Registration", registration_id)

        validation = prerequisite_validation_service.validate_prerequisites(
            db, session_id, registration_id, admin_override=admin_override
        )
        if not validation.valid:
            logger.warning(
                f"Admission of {registration_id} to session {session_id} refused: "
                f"{validation.failure_reasons}"
            )
            raise ValidationFailedError(
                "; ".join(validation.failure_reasons) or "Prerequisites not met",
                unmet=[check.model_dump() for check in validation.unmet_prerequisites],
            )

        violations = [
            v
            for v in prerequisite_validation_service.validate_session_dependencies(
                db, session_id, registration_id
            )
            if not v.startswith(RECOMMENDATION_PREFIX)
        ]
        if violations:
            logger.warning(
                f"Admission of {registration_id} to session {session_id} refused: {violations}"
            )
            raise ValidationFailedError("Session dependencies not met", violations=violations)

        crud.session_capacity_crud.get_or_create(
            db, session_id, default_capacity=settings.DEFAULT_SESSION_CAPACITY
        )
        with self.lock_manager.hold(session_id):
            session_registration = self._place_registration(db, session_id, registration_id)

        logger.info(
            f"Registration {registration_id} admitted to session {session_id} "
            f"as {session_registration.status.value}"
        )
        return session_registration

    @_retry_transient
    def _place_registration(self, db: Session, session_id: str, registration_id: str) -> SessionRegistration:
        try:
            capacity = crud.session_capacity_crud.get_for_update(db, session_id)
            if crud.session_registration.get_active_for(
                db, session_id=session_id, registration_id=registration_id
            ):
                raise InvalidArgumentError(
                    "Registrant is already registered for this session",
                    session_id=session_id,
                    registration_id=registration_id,
                )
            session_registration = crud.session_registration.create_pending(
                db, session_id=session_id, registration_id=registration_id
            )
            now = utcnow()

            if crud.session_capacity_crud.try_increment_registered(
                db, session_id, capacity.admission_ceiling
            ):
                session_registration.status = SessionRegistrationStatus.CONFIRMED
            else:
                position = crud.session_capacity_crud.try_increment_waitlisted(db, session_id)
                if position is None:
                    logger.warning(f"Capacity exceeded for session {session_id}")
                    raise CapacityExceededError(
                        session_id,
                        available_slots=max(0, capacity.available_slots),
                        waitlist_slots=capacity.waitlist_slots,
                    )
                session_registration.status = SessionRegistrationStatus.WAITLISTED
                session_registration.waitlist_position = position
                session_registration.waitlisted_at = now

            db.commit()
            db.refresh(session_registration)
            return session_registration
        except (SchedulingServiceError, SQLAlchemyError):
            db.rollback()
            raise

    def cancel_registration(
        self, db: Session, session_registration_id: str
    ) -> Optional[SessionRegistration]:
        """
        Cancel a session registration and free its seat.

        Returns the registration promoted from the waitlist into the freed
        seat, or None when nobody was promoted.
        """
        session_registration = crud.session_registration.get(db, session_registration_id)
        if not session_registration:
            raise NotFoundError("SessionRegistration", session_registration_id)
        session_id = session_registration.session_id

        with self.lock_manager.hold(session_id):
            promoted = self._cancel(db, session_id, session_registration_id)

        if promoted:
            logger.info(
                f"Cancelled {session_registration_id}; promoted {promoted.id} "
                f"from waitlist of session {session_id}"
            )
        else:
            logger.info(f"Cancelled {session_registration_id} in session {session_id}")
        return promoted

    @_retry_transient
    def _cancel(self, db: Session, session_id: str, session_registration_id: str) -> Optional[SessionRegistration]:
        try:
            # Status may have changed while waiting for the lock
            session_registration = crud.session_registration.get_for_update(db, session_registration_id)
            previous_status = session_registration.status
            if previous_status == SessionRegistrationStatus.CANCELLED:
                raise InvalidArgumentError(
                    "Registration is already cancelled",
                    session_registration_id=session_registration_id,
                )

            session_registration.status = SessionRegistrationStatus.CANCELLED
            session_registration.cancelled_at = utcnow()
            session_registration.waitlist_position = None
            db.flush()

            promoted = None
            capacity = crud.session_capacity_crud.get_for_update(db, session_id)
            if capacity is not None:
                if previous_status == SessionRegistrationStatus.CONFIRMED:
                    crud.session_capacity_crud.decrement_registered(db, session_id)
                    db.refresh(capacity)
                    if capacity.auto_promote_from_waitlist:
                        promoted_list = self._promote_waitlisted(db, capacity, limit=1)
                        promoted = promoted_list[0] if promoted_list else None
                elif previous_status == SessionRegistrationStatus.WAITLISTED:
                    crud.session_capacity_crud.decrement_waitlisted(db, session_id)

            db.commit()
            if promoted:
                db.refresh(promoted)
            return promoted
        except (SchedulingServiceError, SQLAlchemyError):
            db.rollback()
            raise

    # ------------------------------------------------------------------
    # Waitlist promotion
    # ------------------------------------------------------------------

    def _promote_waitlisted(
        self, db: Session, capacity: SessionCapacity, limit: Optional[int] = None
    ) -> List[SessionRegistration]:
        """
        Promote waitlisted registrations in position order while seats remain.
        Caller holds the session lock and commits.
        """
        promoted = []
        now = utcnow()
        candidates = crud.session_registration.get_waitlisted_ordered(
            db, session_id=capacity.session_id, limit=limit
        )
        for session_registration in candidates:
            if not crud.session_capacity_crud.promote_counts(
                db, capacity.session_id, capacity.admission_ceiling
            ):
                break
            position = session_registration.waitlist_position
            session_registration.status = SessionRegistrationStatus.CONFIRMED
            session_registration.waitlist_position = None
            session_registration.promoted_at = now
            session_registration.append_note(f"Promoted from waitlist position {position}.")
            promoted.append(session_registration)
        db.flush()
        return promoted

    def promote_from_waitlist(
        self, db: Session, session_id: str, limit: Optional[int] = None
    ) -> List[SessionRegistration]:
        """Fill free seats from the waitlist, smallest position first."""
        if not crud.session_capacity_crud.get_by_session(db, session_id):
            raise NotFoundError("SessionCapacity", session_id)
        if limit is not None and limit < 0:
            raise InvalidArgumentError("limit must not be negative", limit=limit)

        with self.lock_manager.hold(session_id):
            promoted = self._promote(db, session_id, limit)

        if promoted:
            logger.info(f"Promoted {len(promoted)} registrations from waitlist of session {session_id}")
        return promoted

    @_retry_transient
    def _promote(self, db: Session, session_id: str, limit: Optional[int]) -> List[SessionRegistration]:
        try:
            capacity = crud.session_capacity_crud.get_for_update(db, session_id)
            promoted = self._promote_waitlisted(db, capacity, limit=limit)
            db.commit()
            for session_registration in promoted:
                db.refresh(session_registration)
            return promoted
        except SQLAlchemyError:
            db.rollback()
            raise

    def auto_promote_waitlisted_users(self, db: Session) -> List[SessionCapacity]:
        """
        Promote from every waitlist that has auto-promotion enabled.
        Returns the capacities that promoted at least one registration.
        """
        updated = []
        for capacity in crud.session_capacity_crud.get_auto_promotable(db):
            session_id = capacity.session_id
            try:
                if self.promote_from_waitlist(db, session_id):
                    updated.append(crud.session_capacity_crud.get_by_session(db, session_id))
            except (SchedulingServiceError, SQLAlchemyError) as e:
                logger.error(f"Failed to auto-promote for session {session_id}: {e}", exc_info=True)
                db.rollback()
                continue
        return updated

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def update_capacity_counts(self, db: Session, session_id: str) -> SessionCapacity:
        """Recompute the counters from the session registration table."""
        if not crud.session_capacity_crud.get_by_session(db, session_id):
            raise NotFoundError("SessionCapacity", session_id)

        with self.lock_manager.hold(session_id):
            capacity = self._reconcile(db, session_id)
        logger.info(
            f"Reconciled capacity for session {session_id}: "
            f"registered={capacity.current_registered}, waitlisted={capacity.current_waitlisted}"
        )
        return capacity

    @_retry_transient
    def _reconcile(self, db: Session, session_id: str) -> SessionCapacity:
        try:
            capacity = crud.session_capacity_crud.get_for_update(db, session_id)
            self._write_counts_from_table(db, capacity)
            db.commit()
            db.refresh(capacity)
            return capacity
        except SQLAlchemyError:
            db.rollback()
            raise

    def _write_counts_from_table(self, db: Session, capacity: SessionCapacity) -> None:
        session_id = capacity.session_id
        counts = crud.session_registration.count_by_status(db, session_id=session_id)
        crud.session_capacity_crud.set_counts(
            db,
            session_id,
            registered=counts[SessionRegistrationStatus.CONFIRMED],
            waitlisted=counts[SessionRegistrationStatus.WAITLISTED],
            pending=counts[SessionRegistrationStatus.PENDING],
            last_waitlist_position=max(
                capacity.last_waitlist_position,
                crud.session_registration.max_waitlist_position(db, session_id=session_id),
            ),
        )

    def move_excess_to_waitlist(
        self, db: Session, session_id: str, limit: int
    ) -> List[SessionRegistration]:
        """
        Move the most recently confirmed registrations beyond `limit` to the
        end of the waitlist.

        All or nothing: when the waitlist is disabled or cannot take every
        excess registration, nothing changes and an empty list is returned.
        """
        if not crud.session.get(db, session_id):
            raise NotFoundError("Session", session_id)
        crud.session_capacity_crud.get_or_create(
            db, session_id, default_capacity=settings.DEFAULT_SESSION_CAPACITY
        )

        with self.lock_manager.hold(session_id):
            moved = self._move_excess(db, session_id, limit)

        if moved:
            logger.info(f"Moved {len(moved)} excess registrations of session {session_id} to waitlist")
        return moved

    @_retry_transient
    def _move_excess(self, db: Session, session_id: str, limit: int) -> List[SessionRegistration]:
        try:
            capacity = crud.session_capacity_crud.get_for_update(db, session_id)
            counts = crud.session_registration.count_by_status(db, session_id=session_id)
            excess = counts[SessionRegistrationStatus.CONFIRMED] - limit
            if excess <= 0:
                return []
            waitlisted = counts[SessionRegistrationStatus.WAITLISTED]
            if not capacity.enable_waitlist or waitlisted + excess > capacity.waitlist_capacity:
                logger.warning(
                    f"Waitlist of session {session_id} cannot absorb {excess} excess registrations"
                )
                return []

            next_position = max(
                capacity.last_waitlist_position,
                crud.session_registration.max_waitlist_position(db, session_id=session_id),
            )
            # Latest confirmations move first; queue them in registration order
            to_move = crud.session_registration.get_confirmed_latest_first(
                db, session_id=session_id, limit=excess
            )
            now = utcnow()
            for session_registration in reversed(to_move):
                next_position += 1
                session_registration.status = SessionRegistrationStatus.WAITLISTED
                session_registration.waitlist_position = next_position
                session_registration.waitlisted_at = now
                session_registration.append_note("Moved to waitlist: session over capacity.")
            db.flush()

            self._write_counts_from_table(db, capacity)
            db.commit()
            for session_registration in to_move:
                db.refresh(session_registration)
            return list(reversed(to_move))
        except SQLAlchemyError:
            db.rollback()
            raise

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def get_capacity_optimization_suggestions(
        self, db: Session, event_id: str
    ) -> List[CapacityOptimizationSuggestion]:
        """
        Read-only pass flagging chronically over- or under-subscribed sessions.
        Thresholds come from settings.
        """
        sessions = crud.session.get_active_by_event(db, event_id=event_id)
        session_ids = [s.id for s in sessions]
        capacities = crud.session_capacity_crud.get_by_sessions(db, session_ids)
        status_counts = crud.session_registration.count_by_status_for_sessions(
            db, session_ids=list(capacities)
        )

        suggestions: List[CapacityOptimizationSuggestion] = []
        for session in sessions:
            capacity = capacities.get(session.id)
            if not capacity:
                continue

            def suggest(suggested, kind, reason, impact, priority):
                suggestions.append(
                    CapacityOptimizationSuggestion(
                        session_id=session.id,
                        session_title=session.title,
                        current_capacity=capacity.maximum_capacity,
                        current_registrations=capacity.current_registered,
                        current_waitlisted=capacity.current_waitlisted,
                        suggested_capacity=suggested,
                        optimization_type=kind,
                        reason=reason,
                        potential_impact=impact,
                        priority=priority,
                    )
                )

            utilization = capacity.utilization
            waitlisted = capacity.current_waitlisted
            if utilization >= 1.0 and waitlisted > 0:
                suggest(
                    capacity.maximum_capacity + waitlisted,
                    OptimizationType.INCREASE,
                    f"Session is full with {waitlisted} people waitlisted",
                    "Accommodate all waitlisted attendees",
                    SuggestionPriority.HIGH
                    if waitlisted > settings.OPTIMIZATION_HIGH_PRIORITY_WAITLIST
                    else SuggestionPriority.MEDIUM,
                )
            elif (
                utilization < settings.OPTIMIZATION_LOW_UTILIZATION_RATIO
                and capacity.current_registered < capacity.minimum_capacity
            ):
                suggest(
                    max(capacity.minimum_capacity, capacity.current_registered + 5),
                    OptimizationType.DECREASE,
                    f"Low utilization ({utilization * 100:.1f}%) and below minimum capacity",
                    "Reduce costs and create more intimate setting",
                    SuggestionPriority.MEDIUM,
                )
            elif waitlisted > capacity.maximum_capacity * settings.OPTIMIZATION_HIGH_WAITLIST_RATIO:
                suggest(
                    int(capacity.maximum_capacity * 1.2),
                    OptimizationType.INCREASE,
                    f"High waitlist demand ({waitlisted} waiting)",
                    "Accommodate more interested attendees",
                    SuggestionPriority.HIGH,
                )

            counts = status_counts.get(session.id, {})
            total = sum(counts.values())
            cancelled = counts.get(SessionRegistrationStatus.CANCELLED, 0)
            if (
                total >= settings.OPTIMIZATION_MIN_SAMPLE_SIZE
                and cancelled / total >= settings.OPTIMIZATION_HIGH_CANCELLATION_RATIO
            ):
                suggest(
                    capacity.maximum_capacity,
                    OptimizationType.REVIEW,
                    f"High cancellation rate ({cancelled} of {total} registrations cancelled)",
                    "Check scheduling or content before changing capacity",
                    SuggestionPriority.LOW,
                )

        return sorted(suggestions, key=lambda s: _PRIORITY_RANK[s.priority], reverse=True)

    def get_event_capacity_analytics(self, db: Session, event_id: str) -> CapacityAnalytics:
        sessions = crud.session.get_active_by_event(db, event_id=event_id)
        capacities = list(
            crud.session_capacity_crud.get_by_sessions(db, [s.id for s in sessions]).values()
        )
        if not capacities:
            return CapacityAnalytics(event_id=event_id, total_sessions=len(sessions))

        return CapacityAnalytics(
            event_id=event_id,
            total_sessions=len(sessions),
            configured_sessions=len(capacities),
            average_utilization=sum(c.utilization for c in capacities) / len(capacities),
            full_sessions_count=sum(
                1 for c in capacities if c.current_registered >= c.maximum_capacity
            ),
            under_capacity_sessions_count=sum(
                1 for c in capacities if c.utilization < settings.OPTIMIZATION_LOW_UTILIZATION_RATIO
            ),
            overbooked_sessions_count=sum(
                1 for c in capacities if c.current_registered > c.maximum_capacity
            ),
            total_registered=sum(c.current_registered for c in capacities),
            total_waitlisted=sum(c.current_waitlisted for c in capacities),
            waitlist_by_session={c.session_id: c.current_waitlisted for c in capacities},
            session_capacities=[
                capacity_schemas.SessionCapacity.model_validate(c) for c in capacities
            ],
        )


capacity_management_service = CapacityManagementService()
