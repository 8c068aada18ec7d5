import pytest

from scheduling_service import crud
from scheduling_service.core.exceptions import (
    CapacityExceededError,
    InvalidArgumentError,
    NotFoundError,
    ValidationFailedError,
)
from scheduling_service.models.session_capacity import CapacityType
from scheduling_service.models.session_prerequisite import DependencyType, PrerequisiteType
from scheduling_service.models.session_registration import SessionRegistrationStatus
from scheduling_service.schemas.capacity import (
    OptimizationType,
    SessionCapacityCreate,
    SessionCapacityUpdate,
    SuggestionPriority,
)
from scheduling_service.schemas.prerequisite import DependencyCreate, PrerequisiteCreate
from scheduling_service.services.prerequisite_validation_service import prerequisite_validation_service
from tests.utils.capacity import configure_capacity
from tests.utils.registration import add_session_registration, create_random_registration
from tests.utils.session import at, create_random_session


def _registrants(db_session, event_id, count):
    return [create_random_registration(db_session, event_id) for _ in range(count)]


class TestAdmissionScenario:
    def test_confirm_waitlist_reject_and_promote(self, db_session, event_id, capacity_service):
        """
        Session X: capacity 2, waitlist 1. R1, R2 confirmed; R3 waitlisted at
        position 1; R4 rejected; cancelling R1 promotes R3.
        """
        session = create_random_session(db_session, event_id, title="X")
        configure_capacity(db_session, session.id, maximum_capacity=2, waitlist_capacity=1)
        r1, r2, r3, r4 = _registrants(db_session, event_id, 4)

        sr1 = capacity_service.admit_registration(db_session, session.id, r1.id)
        sr2 = capacity_service.admit_registration(db_session, session.id, r2.id)
        sr3 = capacity_service.admit_registration(db_session, session.id, r3.id)
        assert sr1.status == SessionRegistrationStatus.CONFIRMED
        assert sr2.status == SessionRegistrationStatus.CONFIRMED
        assert sr3.status == SessionRegistrationStatus.WAITLISTED
        assert sr3.waitlist_position == 1

        with pytest.raises(CapacityExceededError) as exc_info:
            capacity_service.admit_registration(db_session, session.id, r4.id)
        assert exc_info.value.available_slots == 0
        assert exc_info.value.waitlist_slots == 0
        assert crud.session_registration.get_active_for(
            db_session, session_id=session.id, registration_id=r4.id
        ) is None

        promoted = capacity_service.cancel_registration(db_session, sr1.id)

        assert promoted.id == sr3.id
        assert promoted.status == SessionRegistrationStatus.CONFIRMED
        assert promoted.waitlist_position is None
        assert promoted.promoted_at is not None
        capacity = capacity_service.get_session_capacity(db_session, session.id)
        assert capacity.current_registered == 2
        assert capacity.current_waitlisted == 0

    def test_rejection_leaves_counters_untouched(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id)
        configure_capacity(db_session, session.id, maximum_capacity=1)
        first, second = _registrants(db_session, event_id, 2)
        capacity_service.admit_registration(db_session, session.id, first.id)

        with pytest.raises(CapacityExceededError):
            capacity_service.admit_registration(db_session, session.id, second.id)

        capacity = capacity_service.get_session_capacity(db_session, session.id)
        assert capacity.current_registered == 1
        assert capacity.current_waitlisted == 0
        counts = crud.session_registration.count_by_status(db_session, session_id=session.id)
        assert counts[SessionRegistrationStatus.PENDING] == 0


class TestWaitlistOrdering:
    def test_promotions_follow_waitlist_positions(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id)
        configure_capacity(db_session, session.id, maximum_capacity=3, waitlist_capacity=5)
        registrants = _registrants(db_session, event_id, 7)
        placed = [
            capacity_service.admit_registration(db_session, session.id, r.id) for r in registrants
        ]
        confirmed, waitlisted = placed[:3], placed[3:]
        assert [w.waitlist_position for w in waitlisted] == [1, 2, 3, 4]

        promoted = [
            capacity_service.cancel_registration(db_session, confirmed[0].id),
            capacity_service.cancel_registration(db_session, confirmed[1].id),
        ]

        assert [p.id for p in promoted] == [waitlisted[0].id, waitlisted[1].id]

    def test_cancelling_waitlisted_keeps_other_positions(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id)
        configure_capacity(db_session, session.id, maximum_capacity=1, waitlist_capacity=3)
        registrants = _registrants(db_session, event_id, 4)
        placed = [capacity_service.admit_registration(db_session, session.id, r.id) for r in registrants]

        assert capacity_service.cancel_registration(db_session, placed[1].id) is None

        remaining = crud.session_registration.get_waitlisted_ordered(db_session, session_id=session.id)
        assert [r.waitlist_position for r in remaining] == [2, 3]
        capacity = capacity_service.get_session_capacity(db_session, session.id)
        assert capacity.current_waitlisted == 2
        assert capacity.current_registered == 1

    def test_positions_are_not_reused(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id)
        configure_capacity(db_session, session.id, maximum_capacity=0, waitlist_capacity=2)
        first, second, third = _registrants(db_session, event_id, 3)
        placed = capacity_service.admit_registration(db_session, session.id, first.id)
        capacity_service.admit_registration(db_session, session.id, second.id)
        capacity_service.cancel_registration(db_session, placed.id)

        latest = capacity_service.admit_registration(db_session, session.id, third.id)
        assert latest.waitlist_position == 3

    def test_no_promotion_without_auto_promote(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id)
        configure_capacity(
            db_session, session.id, maximum_capacity=1, waitlist_capacity=2,
            auto_promote_from_waitlist=False,
        )
        first, second = _registrants(db_session, event_id, 2)
        confirmed = capacity_service.admit_registration(db_session, session.id, first.id)
        waiting = capacity_service.admit_registration(db_session, session.id, second.id)

        assert capacity_service.cancel_registration(db_session, confirmed.id) is None
        db_session.refresh(waiting)
        assert waiting.status == SessionRegistrationStatus.WAITLISTED

        promoted = capacity_service.promote_from_waitlist(db_session, session.id)
        assert [p.id for p in promoted] == [waiting.id]

    def test_auto_promote_waitlisted_users(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id)
        configure_capacity(
            db_session, session.id, maximum_capacity=1, waitlist_capacity=2,
            auto_promote_from_waitlist=False,
        )
        first, second = _registrants(db_session, event_id, 2)
        confirmed = capacity_service.admit_registration(db_session, session.id, first.id)
        waiting = capacity_service.admit_registration(db_session, session.id, second.id)
        capacity_service.cancel_registration(db_session, confirmed.id)
        capacity_service.update_session_capacity(
            db_session, session.id, SessionCapacityUpdate(auto_promote_from_waitlist=True)
        )

        updated = capacity_service.auto_promote_waitlisted_users(db_session)

        assert [c.session_id for c in updated] == [session.id]
        db_session.refresh(waiting)
        assert waiting.status == SessionRegistrationStatus.CONFIRMED
        assert capacity_service.auto_promote_waitlisted_users(db_session) == []


class TestAdmissionValidation:
    def test_unknown_ids(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id)
        registrant = create_random_registration(db_session, event_id)

        with pytest.raises(NotFoundError):
            capacity_service.admit_registration(db_session, "ses_missing", registrant.id)
        with pytest.raises(NotFoundError):
            capacity_service.admit_registration(db_session, session.id, "reg_missing")

    def test_inactive_session(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id, is_active=False)
        registrant = create_random_registration(db_session, event_id)

        with pytest.raises(InvalidArgumentError):
            capacity_service.admit_registration(db_session, session.id, registrant.id)

    def test_duplicate_admission(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id)
        registrant = create_random_registration(db_session, event_id)
        capacity_service.admit_registration(db_session, session.id, registrant.id)

        with pytest.raises(InvalidArgumentError):
            capacity_service.admit_registration(db_session, session.id, registrant.id)
        capacity = crud.session_capacity_crud.get_by_session(db_session, session.id)
        db_session.refresh(capacity)
        assert capacity.current_registered == 1
        counts = crud.session_registration.count_by_status(db_session, session_id=session.id)
        assert counts[SessionRegistrationStatus.PENDING] == 0

    def test_unconfigured_session_gets_default_capacity(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id)
        registrant = create_random_registration(db_session, event_id)

        admitted = capacity_service.admit_registration(db_session, session.id, registrant.id)

        assert admitted.status == SessionRegistrationStatus.CONFIRMED
        capacity = capacity_service.get_session_capacity(db_session, session.id)
        assert capacity.maximum_capacity == 100

    def test_unmet_prerequisite_blocks_admission(self, db_session, event_id, capacity_service):
        intro = create_random_session(db_session, event_id, title="Intro", start=at(9))
        advanced = create_random_session(db_session, event_id, title="Advanced", start=at(11))
        prerequisite_validation_service.create_session_prerequisite(
            db_session,
            PrerequisiteCreate(
                session_id=advanced.id,
                type=PrerequisiteType.PREVIOUS_SESSION,
                prerequisite_session_id=intro.id,
            ),
        )
        registrant = create_random_registration(db_session, event_id)

        with pytest.raises(ValidationFailedError) as exc_info:
            capacity_service.admit_registration(db_session, advanced.id, registrant.id)
        assert exc_info.value.unmet[0]["prerequisite_session_id"] == intro.id
        assert "Intro" in exc_info.value.message

        admitted = capacity_service.admit_registration(
            db_session, advanced.id, registrant.id, admin_override=True
        )
        assert admitted.status == SessionRegistrationStatus.CONFIRMED

    def test_strict_dependency_blocks_but_recommendation_does_not(
        self, db_session, event_id, capacity_service
    ):
        parent = create_random_session(db_session, event_id, title="Part 1", start=at(9))
        strict_child = create_random_session(db_session, event_id, title="Part 2", start=at(11))
        loose_child = create_random_session(db_session, event_id, title="Side Track", start=at(13))
        prerequisite_validation_service.create_session_dependency(
            db_session,
            DependencyCreate(
                parent_session_id=parent.id,
                dependent_session_id=strict_child.id,
                dependency_type=DependencyType.PREREQUISITE,
            ),
        )
        prerequisite_validation_service.create_session_dependency(
            db_session,
            DependencyCreate(
                parent_session_id=parent.id,
                dependent_session_id=loose_child.id,
                dependency_type=DependencyType.PREREQUISITE,
                is_strict=False,
            ),
        )
        registrant = create_random_registration(db_session, event_id)

        with pytest.raises(ValidationFailedError) as exc_info:
            capacity_service.admit_registration(db_session, strict_child.id, registrant.id)
        assert "Part 1" in exc_info.value.violations[0]

        admitted = capacity_service.admit_registration(db_session, loose_child.id, registrant.id)
        assert admitted.status == SessionRegistrationStatus.CONFIRMED


class TestCancellation:
    def test_unknown_and_repeated_cancellation(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id)
        registrant = create_random_registration(db_session, event_id)
        admitted = capacity_service.admit_registration(db_session, session.id, registrant.id)

        with pytest.raises(NotFoundError):
            capacity_service.cancel_registration(db_session, "sreg_missing")

        capacity_service.cancel_registration(db_session, admitted.id)
        db_session.refresh(admitted)
        assert admitted.status == SessionRegistrationStatus.CANCELLED
        assert admitted.cancelled_at is not None

        with pytest.raises(InvalidArgumentError):
            capacity_service.cancel_registration(db_session, admitted.id)
        capacity = capacity_service.get_session_capacity(db_session, session.id)
        assert capacity.current_registered == 0

    def test_cancelled_registrant_may_register_again(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id)
        configure_capacity(db_session, session.id, maximum_capacity=1)
        registrant = create_random_registration(db_session, event_id)
        admitted = capacity_service.admit_registration(db_session, session.id, registrant.id)
        capacity_service.cancel_registration(db_session, admitted.id)

        again = capacity_service.admit_registration(db_session, session.id, registrant.id)
        assert again.status == SessionRegistrationStatus.CONFIRMED


class TestCapacityConfiguration:
    def test_create_initialises_counters_from_registrations(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id)
        first, second = _registrants(db_session, event_id, 2)
        add_session_registration(db_session, session.id, first.id)
        add_session_registration(
            db_session, session.id, second.id,
            status=SessionRegistrationStatus.WAITLISTED, waitlist_position=4,
        )

        capacity = capacity_service.create_session_capacity(
            db_session, session.id, SessionCapacityCreate(maximum_capacity=1, waitlist_capacity=3)
        )

        assert capacity.current_registered == 1
        assert capacity.current_waitlisted == 1
        assert capacity.last_waitlist_position == 4

    def test_create_rejects_unknown_session_and_duplicates(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id)
        config = SessionCapacityCreate(maximum_capacity=10)

        with pytest.raises(NotFoundError):
            capacity_service.create_session_capacity(db_session, "ses_missing", config)
        capacity_service.create_session_capacity(db_session, session.id, config)
        with pytest.raises(InvalidArgumentError):
            capacity_service.create_session_capacity(db_session, session.id, config)

    def test_update_rejects_limits_below_current_counts(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id)
        configure_capacity(db_session, session.id, maximum_capacity=2, waitlist_capacity=2)
        for registrant in _registrants(db_session, event_id, 3):
            capacity_service.admit_registration(db_session, session.id, registrant.id)

        with pytest.raises(NotFoundError):
            capacity_service.update_session_capacity(
                db_session, "ses_missing", SessionCapacityUpdate(maximum_capacity=5)
            )
        with pytest.raises(InvalidArgumentError):
            capacity_service.update_session_capacity(
                db_session, session.id, SessionCapacityUpdate(maximum_capacity=1)
            )
        with pytest.raises(InvalidArgumentError):
            capacity_service.update_session_capacity(
                db_session, session.id, SessionCapacityUpdate(waitlist_capacity=0)
            )
        capacity = capacity_service.get_session_capacity(db_session, session.id)
        assert capacity.maximum_capacity == 2
        assert capacity.waitlist_capacity == 2

    def test_raising_capacity_promotes_waitlist(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id)
        configure_capacity(db_session, session.id, maximum_capacity=1, waitlist_capacity=3)
        placed = [
            capacity_service.admit_registration(db_session, session.id, r.id)
            for r in _registrants(db_session, event_id, 4)
        ]

        capacity = capacity_service.update_session_capacity(
            db_session, session.id, SessionCapacityUpdate(maximum_capacity=3, reason="Bigger room")
        )

        assert capacity.current_registered == 3
        assert capacity.current_waitlisted == 1
        for session_registration in placed:
            db_session.refresh(session_registration)
        assert [p.status for p in placed] == [
            SessionRegistrationStatus.CONFIRMED,
            SessionRegistrationStatus.CONFIRMED,
            SessionRegistrationStatus.CONFIRMED,
            SessionRegistrationStatus.WAITLISTED,
        ]

    def test_get_session_capacity_unconfigured(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id)
        with pytest.raises(NotFoundError):
            capacity_service.get_session_capacity(db_session, session.id)


class TestAvailability:
    def test_check_availability(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id)
        configure_capacity(db_session, session.id, maximum_capacity=2, waitlist_capacity=3)
        capacity_service.admit_registration(
            db_session, session.id, create_random_registration(db_session, event_id).id
        )

        availability = capacity_service.check_availability(db_session, session.id)

        assert availability.available is True
        assert availability.available_slots == 1
        assert availability.waitlist_slots == 3

    def test_unconfigured_session_gets_default(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id)
        availability = capacity_service.check_availability(db_session, session.id)

        assert availability.available_slots == 100
        assert availability.waitlist_slots == 0
        with pytest.raises(NotFoundError):
            capacity_service.check_availability(db_session, "ses_missing")

    def test_disabled_waitlist_has_no_slots(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id)
        configure_capacity(db_session, session.id, maximum_capacity=1, waitlist_capacity=5, enable_waitlist=False)

        assert capacity_service.check_availability(db_session, session.id).waitlist_slots == 0

    def test_overbooking_for_dynamic_sessions(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id)
        configure_capacity(
            db_session, session.id, maximum_capacity=2,
            capacity_type=CapacityType.DYNAMIC, allow_overbooking=True, overbooking_percentage=50.0,
        )
        registrants = _registrants(db_session, event_id, 4)
        for registrant in registrants[:3]:
            admitted = capacity_service.admit_registration(db_session, session.id, registrant.id)
            assert admitted.status == SessionRegistrationStatus.CONFIRMED

        availability = capacity_service.check_availability(db_session, session.id)
        assert availability.available_slots == -1
        assert availability.available is False
        with pytest.raises(CapacityExceededError):
            capacity_service.admit_registration(db_session, session.id, registrants[3].id)


class TestReconciliation:
    def test_update_capacity_counts(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id)
        configure_capacity(db_session, session.id, maximum_capacity=5, waitlist_capacity=5)
        first, second, third = _registrants(db_session, event_id, 3)
        add_session_registration(db_session, session.id, first.id)
        add_session_registration(db_session, session.id, second.id)
        add_session_registration(
            db_session, session.id, third.id,
            status=SessionRegistrationStatus.WAITLISTED, waitlist_position=7,
        )

        capacity = capacity_service.update_capacity_counts(db_session, session.id)

        assert capacity.current_registered == 2
        assert capacity.current_waitlisted == 1
        assert capacity.last_waitlist_position == 7
        with pytest.raises(NotFoundError):
            capacity_service.update_capacity_counts(db_session, "ses_missing")

    def test_move_excess_to_waitlist(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id)
        configure_capacity(db_session, session.id, maximum_capacity=2, waitlist_capacity=3)
        placed = []
        for minute, registrant in enumerate(_registrants(db_session, event_id, 4)):
            placed.append(
                add_session_registration(db_session, session.id, registrant.id, registered_at=at(8, minute))
            )

        moved = capacity_service.move_excess_to_waitlist(db_session, session.id, limit=2)

        assert [m.id for m in moved] == [placed[2].id, placed[3].id]
        assert [m.waitlist_position for m in moved] == [1, 2]
        capacity = capacity_service.get_session_capacity(db_session, session.id)
        assert capacity.current_registered == 2
        assert capacity.current_waitlisted == 2

    def test_move_excess_is_all_or_nothing(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id)
        configure_capacity(db_session, session.id, maximum_capacity=1, waitlist_capacity=1)
        for registrant in _registrants(db_session, event_id, 4):
            add_session_registration(db_session, session.id, registrant.id)

        assert capacity_service.move_excess_to_waitlist(db_session, session.id, limit=1) == []
        counts = crud.session_registration.count_by_status(db_session, session_id=session.id)
        assert counts[SessionRegistrationStatus.CONFIRMED] == 4


class TestAnalytics:
    def test_optimization_suggestions(self, db_session, event_id, capacity_service):
        full = create_random_session(db_session, event_id, title="Full")
        configure_capacity(db_session, full.id, maximum_capacity=1, waitlist_capacity=2)
        for registrant in _registrants(db_session, event_id, 2):
            capacity_service.admit_registration(db_session, full.id, registrant.id)

        quiet = create_random_session(db_session, event_id, title="Quiet")
        configure_capacity(db_session, quiet.id, maximum_capacity=100, minimum_capacity=20)

        churn = create_random_session(db_session, event_id, title="Churn")
        for index, registrant in enumerate(_registrants(db_session, event_id, 5)):
            add_session_registration(
                db_session, churn.id, registrant.id,
                status=SessionRegistrationStatus.CANCELLED if index < 2 else SessionRegistrationStatus.CONFIRMED,
            )
        capacity_service.create_session_capacity(
            db_session, churn.id, SessionCapacityCreate(maximum_capacity=4)
        )

        suggestions = capacity_service.get_capacity_optimization_suggestions(db_session, event_id)
        by_session = {s.session_title: s for s in suggestions}

        assert by_session["Full"].optimization_type == OptimizationType.INCREASE
        assert by_session["Full"].suggested_capacity == 2
        assert by_session["Full"].priority == SuggestionPriority.MEDIUM
        assert by_session["Quiet"].optimization_type == OptimizationType.DECREASE
        assert by_session["Quiet"].suggested_capacity == 20
        assert by_session["Churn"].optimization_type == OptimizationType.REVIEW
        assert [s.priority for s in suggestions] == sorted(
            (s.priority for s in suggestions),
            key=[SuggestionPriority.HIGH, SuggestionPriority.MEDIUM, SuggestionPriority.LOW].index,
        )

    def test_high_waitlist_ratio_suggests_increase(self, db_session, event_id, capacity_service):
        session = create_random_session(db_session, event_id, title="Hot")
        for position, registrant in enumerate(_registrants(db_session, event_id, 3), start=1):
            add_session_registration(
                db_session, session.id, registrant.id,
                status=SessionRegistrationStatus.WAITLISTED, waitlist_position=position,
            )
        capacity_service.create_session_capacity(
            db_session, session.id, SessionCapacityCreate(maximum_capacity=10, waitlist_capacity=5)
        )

        suggestions = capacity_service.get_capacity_optimization_suggestions(db_session, event_id)

        assert len(suggestions) == 1
        assert suggestions[0].suggested_capacity == 12
        assert suggestions[0].priority == SuggestionPriority.HIGH

    def test_event_capacity_analytics(self, db_session, event_id, capacity_service):
        full = create_random_session(db_session, event_id)
        configure_capacity(db_session, full.id, maximum_capacity=1, waitlist_capacity=1)
        for registrant in _registrants(db_session, event_id, 2):
            capacity_service.admit_registration(db_session, full.id, registrant.id)
        empty = create_random_session(db_session, event_id)
        configure_capacity(db_session, empty.id, maximum_capacity=10)
        create_random_session(db_session, event_id)

        analytics = capacity_service.get_event_capacity_analytics(db_session, event_id)

        assert analytics.total_sessions == 3
        assert analytics.configured_sessions == 2
        assert analytics.full_sessions_count == 1
        assert analytics.under_capacity_sessions_count == 1
        assert analytics.total_registered == 1
        assert analytics.total_waitlisted == 1
        assert analytics.average_utilization == pytest.approx(0.5)
        assert analytics.waitlist_by_session[full.id] == 1
