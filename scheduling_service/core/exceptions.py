# scheduling_service/core/exceptions.py
"""
Exception hierarchy for the scheduling integrity engine.
All exceptions inherit from SchedulingServiceError so callers can map
them to transport responses in one place.
"""

from typing import Any, List, Optional


class SchedulingServiceError(Exception):
    """Base exception for all scheduling service errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "SCHEDULING_ERROR",
        details: Optional[dict] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(SchedulingServiceError):
    """A session, registration, conflict, prerequisite or dependency id is unknown."""

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(
            message=f"{resource} {identifier} not found",
            error_code="NOT_FOUND",
            details={"resource": resource, "id": identifier},
        )


class InvalidArgumentError(SchedulingServiceError):
    """The request is well-formed but violates a precondition."""

    def __init__(self, message: str, **details: Any):
        super().__init__(message, error_code="INVALID_ARGUMENT", details=details)


class CapacityExceededError(SchedulingServiceError):
    """Admission refused: no confirmed slot and no waitlist slot left."""

    def __init__(self, session_id: str, available_slots: int = 0, waitlist_slots: int = 0):
        self.session_id = session_id
        self.available_slots = available_slots
        self.waitlist_slots = waitlist_slots
        super().__init__(
            message=(
                f"Session {session_id} is full "
                f"(available slots: {available_slots}, waitlist slots: {waitlist_slots})"
            ),
            error_code="CAPACITY_EXCEEDED",
            details={
                "session_id": session_id,
                "available_slots": available_slots,
                "waitlist_slots": waitlist_slots,
            },
        )


class ValidationFailedError(SchedulingServiceError):
    """Prerequisites or strict dependencies are not met."""

    def __init__(
        self,
        message: str,
        unmet: Optional[List[Any]] = None,
        violations: Optional[List[str]] = None,
    ):
        self.unmet = unmet or []
        self.violations = violations or []
        super().__init__(
            message,
            error_code="VALIDATION_FAILED",
            details={"unmet": self.unmet, "violations": self.violations},
        )


class SessionLockTimeoutError(SchedulingServiceError):
    """The per-session capacity lock could not be acquired in time."""

    def __init__(self, session_id: str, timeout: float):
        super().__init__(
            message=f"Timed out after {timeout}s waiting for capacity lock on session {session_id}",
            error_code="LOCK_TIMEOUT",
            details={"session_id": session_id, "timeout": timeout},
        )
