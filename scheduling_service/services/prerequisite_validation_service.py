# scheduling_service/services/prerequisite_validation_service.py
"""
Prerequisite and dependency validation between sessions.

Prerequisites gate a single registrant ("must have attended the intro
session"); dependencies are edges between sessions used for ordering and
structure analysis. Validation is read-only; only the create/delete
methods here change the dependency graph.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from scheduling_service import crud
from scheduling_service.core.exceptions import InvalidArgumentError, NotFoundError
from scheduling_service.models.session_prerequisite import (
    DependencyType,
    PrerequisiteOperator,
    PrerequisiteType,
    SessionDependency,
    SessionPrerequisite,
)
from scheduling_service.schemas.prerequisite import (
    CircularDependency,
    DependencyAnalysis,
    DependencyCreate,
    NodeDegree,
    PrerequisiteCheck,
    PrerequisiteCreate,
    PrerequisiteValidation,
    SessionPath,
    ValidationStatus,
)
from scheduling_service.utils import dependency_graph
from scheduling_service.utils.intervals import ensure_utc, utcnow

logger = logging.getLogger(__name__)

# Violations of non-strict edges start with this and never block admission
RECOMMENDATION_PREFIX = "Recommended:"


class PrerequisiteValidationService:
    """Validates prerequisites and analyses the session dependency graph."""

    # ------------------------------------------------------------------
    # Prerequisites
    # ------------------------------------------------------------------

    def validate_prerequisites(
        self,
        db: Session,
        session_id: str,
        registration_id: str,
        admin_override: bool = False,
        now: Optional[datetime] = None,
    ) -> PrerequisiteValidation:
        """
        Evaluate every active prerequisite of a session for one registrant.

        Prerequisites are combined per group_id (ungrouped ones stand alone)
        with the operator of the group's lowest-priority member: AND needs
        every required member, OR needs any member. Unmet members inside a
        grace period, or not required, are reported as warnings. With
        admin_override, unmet members that allow it move to `overridden`.
        Unknown ids give an invalid result instead of raising.
        """
        validation = PrerequisiteValidation(session_id=session_id, registration_id=registration_id)
        session = crud.session.get(db, session_id)
        if not session:
            validation.failure_reasons = [f"Session {session_id} not found"]
            return validation
        if not crud.registration.get(db, registration_id):
            validation.failure_reasons = [f"Registration {registration_id} not found"]
            return validation

        now = ensure_utc(now or utcnow())
        prerequisites = crud.session_prerequisite.get_by_session(db, session_id=session_id)

        groups: Dict[str, List[SessionPrerequisite]] = defaultdict(list)
        checks: Dict[str, PrerequisiteCheck] = {}
        for prerequisite in prerequisites:
            groups[prerequisite.group_id or f"single:{prerequisite.id}"].append(prerequisite)
            checks[prerequisite.id] = self._check_prerequisite(
                db, prerequisite, registration_id, ensure_utc(session.start_time), now
            )

        unmet: List[PrerequisiteCheck] = []
        warnings: List[PrerequisiteCheck] = []
        for members in groups.values():
            members.sort(key=lambda p: p.priority)
            group_checks = [checks[p.id] for p in members]
            group_unmet, group_warnings = self._evaluate_group(members[0].operator, group_checks)
            unmet.extend(group_unmet)
            warnings.extend(group_warnings)

        overridden: List[PrerequisiteCheck] = []
        if admin_override:
            overridden = [c for c in unmet if c.can_be_overridden]
            unmet = [c for c in unmet if not c.can_be_overridden]
            if overridden:
                logger.info(
                    f"Admin override of {len(overridden)} prerequisites for "
                    f"registration {registration_id} in session {session_id}"
                )

        validation.results = [checks[p.id] for p in prerequisites]
        validation.unmet_prerequisites = unmet
        validation.warnings = warnings
        validation.overridden = overridden
        validation.failure_reasons = [c.message for c in unmet if c.message]
        validation.valid = not unmet
        validation.can_admin_override = bool(unmet) and all(c.can_be_overridden for c in unmet)

        if unmet:
            validation.overall_status = (
                ValidationStatus.FAILED_OVERRIDABLE
                if validation.can_admin_override
                else ValidationStatus.FAILED
            )
        elif overridden:
            validation.overall_status = ValidationStatus.OVERRIDDEN
        elif warnings:
            validation.overall_status = ValidationStatus.PASSED_WITH_WARNINGS
        else:
            validation.overall_status = ValidationStatus.PASSED
        return validation

    def _check_prerequisite(
        self,
        db: Session,
        prerequisite: SessionPrerequisite,
        registration_id: str,
        session_start: datetime,
        now: datetime,
    ) -> PrerequisiteCheck:
        required_session_id = prerequisite.prerequisite_session_id
        required_session = crud.session.get(db, required_session_id) if required_session_id else None
        title = required_session.title if required_session else required_session_id

        if required_session is None:
            is_passed = False
            default_message = "Prerequisite does not reference an existing session"
        elif prerequisite.type == PrerequisiteType.CHECKIN_REQUIRED:
            is_passed = self._has_attended(db, registration_id, required_session_id)
            default_message = f"Must check in to '{title}' first"
        else:
            is_passed = (
                crud.session_registration.get_active_for(
                    db, session_id=required_session_id, registration_id=registration_id
                )
                is not None
            )
            default_message = f"Must be registered for '{title}' first"

        in_grace_period = False
        if not is_passed and prerequisite.allow_grace_period:
            grace_end = session_start + timedelta(hours=prerequisite.grace_period_hours)
            in_grace_period = now < grace_end

        return PrerequisiteCheck(
            prerequisite_id=prerequisite.id,
            type=prerequisite.type,
            prerequisite_session_id=required_session_id,
            group_id=prerequisite.group_id,
            priority=prerequisite.priority,
            is_passed=is_passed,
            is_required=prerequisite.is_required,
            in_grace_period=in_grace_period,
            can_be_overridden=prerequisite.allow_admin_override,
            message=None if is_passed else (prerequisite.error_message or default_message),
        )

    @staticmethod
    def _evaluate_group(operator: PrerequisiteOperator, checks: List[PrerequisiteCheck]):
        """Return (unmet, warnings) for one prerequisite group."""
        failed = [c for c in checks if not c.is_passed]
        if operator == PrerequisiteOperator.OR:
            if len(failed) < len(checks):
                return [], []
            in_grace = [c for c in failed if c.in_grace_period]
            if in_grace:
                return [], in_grace
            required = [c for c in failed if c.is_required]
            if not required:
                return [], failed
            return required, [c for c in failed if not c.is_required]

        unmet = [c for c in failed if c.is_required and not c.in_grace_period]
        warnings = [c for c in failed if not c.is_required or c.in_grace_period]
        return unmet, warnings

    def _has_attended(self, db: Session, registration_id: str, session_id: str) -> bool:
        if crud.check_in.has_session_check_in(db, registration_id=registration_id, session_id=session_id):
            return True
        session_registration = crud.session_registration.get_active_for(
            db, session_id=session_id, registration_id=registration_id
        )
        return bool(session_registration and session_registration.checked_in_at)

    def validate_session_dependencies(
        self, db: Session, session_id: str, registration_id: str
    ) -> List[str]:
        """
        Human-readable violations of the dependency edges pointing at a session.
        Violations of non-strict edges and PARALLEL edges are recommendations.
        """
        session = crud.session.get(db, session_id)
        if not session or not crud.registration.get(db, registration_id):
            return []

        dependencies = crud.session_dependency.get_by_dependent(db, session_id=session_id)
        parents = crud.session.get_by_ids(db, [d.parent_session_id for d in dependencies])
        violations = []
        for dependency in dependencies:
            parent = parents.get(dependency.parent_session_id)
            if not parent:
                continue
            registered = (
                crud.session_registration.get_active_for(
                    db, session_id=parent.id, registration_id=registration_id
                )
                is not None
            )

            messages = []
            if dependency.dependency_type == DependencyType.SEQUENCE:
                if not self._has_attended(db, registration_id, parent.id):
                    messages.append(f"Must complete '{parent.title}' before registering for this session")
                if dependency.timing_gap_minutes:
                    gap = ensure_utc(session.start_time) - ensure_utc(parent.end_time)
                    if gap < timedelta(minutes=dependency.timing_gap_minutes):
                        messages.append(
                            f"Session must start at least {dependency.timing_gap_minutes} minutes "
                            f"after '{parent.title}' ends"
                        )
            elif dependency.dependency_type == DependencyType.PREREQUISITE:
                if not registered:
                    messages.append(f"Must be registered for '{parent.title}' to register for this session")
            elif dependency.dependency_type == DependencyType.EXCLUSIVE:
                if registered:
                    messages.append(f"Cannot register for this session if registered for '{parent.title}'")
            elif dependency.dependency_type == DependencyType.PARALLEL:
                if not registered:
                    violations.append(f"{RECOMMENDATION_PREFIX} also register for '{parent.title}'")

            for message in messages:
                violations.append(message if dependency.is_strict else f"{RECOMMENDATION_PREFIX} {message}")
        return violations

    # ------------------------------------------------------------------
    # Dependency graph analysis
    # ------------------------------------------------------------------

    def _event_graph(self, db: Session, event_id: str):
        edges = crud.session_dependency.get_by_event(db, event_id=event_id)
        return dependency_graph.build_dependency_graph(
            (e.parent_session_id, e.dependent_session_id) for e in edges
        ), edges

    def detect_circular_dependencies(self, db: Session, event_id: str) -> List[CircularDependency]:
        """Every dependency cycle of an event, as ordered session id lists."""
        graph, _ = self._event_graph(db, event_id)
        cycles = dependency_graph.find_cycles(graph)
        if not cycles:
            return []

        sessions = crud.session.get_by_ids(db, list({sid for cycle in cycles for sid in cycle}))
        result = []
        for cycle in cycles:
            titles = [sessions[sid].title if sid in sessions else sid for sid in cycle]
            result.append(
                CircularDependency(
                    session_ids=cycle,
                    session_titles=titles,
                    dependency_chain=" -> ".join(titles + titles[:1]),
                )
            )
        logger.warning(f"Found {len(result)} dependency cycles in event {event_id}")
        return result

    def get_session_dependency_path(self, db: Session, from_session_id: str, to_session_id: str) -> SessionPath:
        """Shortest parent -> dependent path between two sessions."""
        result = SessionPath(start_session_id=from_session_id, end_session_id=to_session_id)
        start = crud.session.get(db, from_session_id)
        if not start or not crud.session.get(db, to_session_id):
            return result

        graph, _ = self._event_graph(db, start.event_id)
        graph.add_node(from_session_id)
        path = dependency_graph.shortest_path(graph, from_session_id, to_session_id)
        if path is None:
            return result
        result.found = True
        result.session_ids = path
        result.length = len(path) - 1
        return result

    def analyze_dependency_structure(self, db: Session, event_id: str) -> DependencyAnalysis:
        sessions = crud.session.get_active_by_event(db, event_id=event_id)
        graph, edges = self._event_graph(db, event_id)
        for session in sessions:
            graph.add_node(session.id)
        prerequisites = crud.session_prerequisite.get_by_event(db, event_id=event_id)

        dependency_map: Dict[str, List[str]] = defaultdict(list)
        for edge in edges:
            dependency_map[edge.dependent_session_id].append(edge.parent_session_id)
        prerequisite_map: Dict[str, List[str]] = defaultdict(list)
        for prerequisite in prerequisites:
            if prerequisite.prerequisite_session_id:
                prerequisite_map[prerequisite.session_id].append(prerequisite.prerequisite_session_id)

        roots, leaves, isolated = dependency_graph.roots_and_leaves(graph)
        chain = dependency_graph.longest_chain(graph)
        cycles = self.detect_circular_dependencies(db, event_id)

        return DependencyAnalysis(
            event_id=event_id,
            total_sessions=len(sessions),
            sessions_with_prerequisites=len({p.session_id for p in prerequisites}),
            sessions_with_dependencies=len(dependency_map),
            degrees=[
                NodeDegree(session_id=sid, fan_in=fan_in, fan_out=fan_out)
                for sid, (fan_in, fan_out) in sorted(dependency_graph.degrees(graph).items())
            ],
            root_sessions=roots,
            leaf_sessions=leaves,
            isolated_sessions=isolated,
            longest_chain=chain,
            longest_chain_length=max(0, len(chain) - 1),
            has_cycles=bool(cycles),
            circular_dependencies=cycles,
            dependency_map=dict(dependency_map),
            prerequisite_map=dict(prerequisite_map),
        )

    # ------------------------------------------------------------------
    # Graph mutation
    # ------------------------------------------------------------------

    def create_session_prerequisite(self, db: Session, obj_in: PrerequisiteCreate) -> SessionPrerequisite:
        if not crud.session.get(db, obj_in.session_id):
            raise NotFoundError("Session", obj_in.session_id)
        if not obj_in.prerequisite_session_id:
            raise InvalidArgumentError(
                f"{obj_in.type.value} prerequisites need a prerequisite_session_id"
            )
        if obj_in.prerequisite_session_id == obj_in.session_id:
            raise InvalidArgumentError("A session cannot be its own prerequisite", session_id=obj_in.session_id)
        if not crud.session.get(db, obj_in.prerequisite_session_id):
            raise NotFoundError("Session", obj_in.prerequisite_session_id)

        prerequisite = crud.session_prerequisite.create(db, obj_in=obj_in)
        logger.info(f"Created prerequisite {prerequisite.id} for session {obj_in.session_id}")
        return prerequisite

    def create_session_dependency(self, db: Session, obj_in: DependencyCreate) -> SessionDependency:
        """
        Add a parent -> dependent edge. Self edges, duplicates and edges whose
        reverse already exists are rejected; longer cycles are left to
        detect_circular_dependencies.
        """
        parent_id, dependent_id = obj_in.parent_session_id, obj_in.dependent_session_id
        if parent_id == dependent_id:
            raise InvalidArgumentError("A session cannot depend on itself", session_id=parent_id)
        for session_id in (parent_id, dependent_id):
            if not crud.session.get(db, session_id):
                raise NotFoundError("Session", session_id)
        if crud.session_dependency.get_edge(db, parent_session_id=parent_id, dependent_session_id=dependent_id):
            raise InvalidArgumentError(
                "Dependency already exists", parent_session_id=parent_id, dependent_session_id=dependent_id
            )
        if crud.session_dependency.get_edge(db, parent_session_id=dependent_id, dependent_session_id=parent_id):
            raise InvalidArgumentError(
                "The reverse dependency already exists; adding this edge would create a cycle",
                parent_session_id=parent_id,
                dependent_session_id=dependent_id,
            )

        try:
            dependency = crud.session_dependency.create(db, obj_in=obj_in)
        except IntegrityError:
            db.rollback()
            raise InvalidArgumentError(
                "Dependency already exists", parent_session_id=parent_id, dependent_session_id=dependent_id
            )
        logger.info(f"Created dependency {parent_id} -> {dependent_id} ({obj_in.dependency_type.value})")
        return dependency

    def delete_prerequisite(self, db: Session, prerequisite_id: str) -> SessionPrerequisite:
        prerequisite = crud.session_prerequisite.remove(db, id=prerequisite_id)
        if prerequisite is None:
            raise NotFoundError("SessionPrerequisite", prerequisite_id)
        return prerequisite

    def delete_dependency(self, db: Session, dependency_id: str) -> SessionDependency:
        dependency = crud.session_dependency.remove(db, id=dependency_id)
        if dependency is None:
            raise NotFoundError("SessionDependency", dependency_id)
        logger.info(
            f"Deleted dependency {dependency.parent_session_id} -> {dependency.dependent_session_id}"
        )
        return dependency


prerequisite_validation_service = PrerequisiteValidationService()
